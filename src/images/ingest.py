"""Image ingestion: pull embedded and remote images out of document content.

Scans markdown image syntax and raw ``<img>`` tags for data-URL or
http(s) sources, stores each image under a deterministic filename,
optionally mirrors it into a public directory, and rewrites the
reference to point at the stored file.

Filenames depend only on the slug and the image role (``cover`` or the
1-based ordinal of the reference in the content), so re-running
ingestion on the same content overwrites rather than duplicates.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import shutil
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from inkpress.errors import ImageDecodeError, ImageFetchError, ImageIngestError, MirrorCopyError
from inkpress.images.fetch import DEFAULT_TIMEOUT, FETCH_ERRORS, FetchedImage, fetch_image
from inkpress.images.transcode import CANONICAL_EXTENSION, fallback_extension, transcode

logger = logging.getLogger(__name__)

COVER_ROLE = "cover"

IMAGE_REF_RE = re.compile(
    r"!\[([^\]]*)\]\((data:image[^)]+|https?://[^)]+)\)"
    r'|<img([^>]*?)src="(data:image[^"]+|https?://[^"]+)"([^>]*)>'
)

Fetcher = Callable[[str, float], FetchedImage]


class ImageSource(StrEnum):
    """Where an image reference's bytes come from."""

    EMBEDDED = "embedded"  # data:image/...;base64,...
    REMOTE = "remote"  # http(s) URL
    LOCAL = "local"  # already a stored path


def classify_source(url: str) -> ImageSource:
    if url.startswith("data:image"):
        return ImageSource.EMBEDDED
    if url.startswith(("http://", "https://")):
        return ImageSource.REMOTE
    return ImageSource.LOCAL


@dataclass
class ImageReference:
    """One image reference discovered in content.

    Markdown matches carry ``alt``; HTML matches carry the attribute text
    found ``before`` and ``after`` the ``src`` attribute.
    """

    start: int
    end: int
    markup: str
    url: str
    ordinal: int
    kind: ImageSource
    alt: str | None = None
    before: str | None = None
    after: str | None = None

    @property
    def is_html(self) -> bool:
        return self.before is not None

    def rewrite(self, path: str) -> str:
        """Return the markup with its source replaced by ``path``."""
        if self.is_html:
            return f'<img{self.before}src="{path}"{self.after}>'
        return f"![{self.alt}]({path})"


@dataclass
class StoredImage:
    """An image persisted under its canonical filename."""

    filename: str
    directory: Path
    data: bytes = field(repr=False)
    mirrored_to: Path | None = None

    @property
    def path(self) -> Path:
        return self.directory / self.filename


@dataclass
class IngestResult:
    """Rewritten content plus the images written while producing it."""

    content: str
    images: list[StoredImage] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


def image_filename(slug: str, role: str | int, extension: str) -> str:
    """Canonical filename for an image role.

    >>> image_filename("hello-world", 1, "webp")
    'img_hello-world_1.webp'
    >>> image_filename("hello-world", "cover", "png")
    'cover_hello-world.png'
    """
    if role == COVER_ROLE:
        return f"cover_{slug}.{extension}"
    return f"img_{slug}_{role}.{extension}"


def find_references(content: str) -> list[ImageReference]:
    """Locate image references in document order, numbering them from 1."""
    refs: list[ImageReference] = []
    for ordinal, match in enumerate(IMAGE_REF_RE.finditer(content), start=1):
        alt, md_url, before, html_url, after = match.groups()
        url = md_url if md_url is not None else html_url
        refs.append(
            ImageReference(
                start=match.start(),
                end=match.end(),
                markup=match.group(0),
                url=url,
                ordinal=ordinal,
                kind=classify_source(url),
                alt=alt,
                before=before,
                after=after,
            )
        )
    return refs


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Split a data URL into decoded bytes and its header.

    Raises:
        ImageIngestError: If the URL has no payload or is not valid base64.
    """
    header, sep, body = data_url.partition(",")
    if not sep:
        raise ImageIngestError("Invalid data URL format")
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageIngestError(f"Failed to decode base64: {exc}") from exc
    return data, header


def mirror_image(source: Path, public_dir: Path) -> Path:
    """Copy a stored image into the public directory.

    Raises:
        MirrorCopyError: If the directory cannot be created or the copy fails.
    """
    target = public_dir / source.name
    try:
        public_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
    except OSError as exc:
        raise MirrorCopyError(f"Failed to copy {source.name} to {public_dir}: {exc}") from exc
    return target


class ImageIngestor:
    """Stores a document's images under ``target_dir``.

    Args:
        target_dir: Directory images are written to.
        slug: Document slug used in filenames.
        path_prefix: URL prefix written into rewritten references.
        public_dir: Optional directory every stored image is mirrored into.
        fetcher: Callable ``(url, timeout) -> FetchedImage`` for remote images.
        timeout: Per-request timeout for remote fetches.
        max_workers: Concurrent remote fetches (1 fetches sequentially).
    """

    def __init__(
        self,
        target_dir: Path,
        slug: str,
        path_prefix: str,
        *,
        public_dir: Path | None = None,
        fetcher: Fetcher = fetch_image,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = 4,
    ) -> None:
        self.target_dir = target_dir
        self.slug = slug
        self.path_prefix = path_prefix.rstrip("/")
        self.public_dir = public_dir
        self.fetcher = fetcher
        self.timeout = timeout
        self.max_workers = max(1, max_workers)

    def public_path(self, filename: str) -> str:
        return f"{self.path_prefix}/{filename}"

    # ── Content ──────────────────────────────────────────────────

    def ingest(self, content: str) -> IngestResult:
        """Store every embedded/remote image in ``content`` and rewrite it.

        A reference that fails to resolve keeps its original markup; the
        remaining references are still processed.
        """
        refs = find_references(content)
        if not refs:
            return IngestResult(content=content)

        fetches = self._start_fetches(refs)
        result = IngestResult(content="")
        parts: list[str] = []
        last = 0

        for ref in refs:
            parts.append(content[last : ref.start])
            last = ref.end
            try:
                stored = self._resolve(ref, fetches.get(ref.ordinal))
            except ImageIngestError as exc:
                logger.warning("Failed to save inline image %d (%s): %s",
                               ref.ordinal, _describe(ref.url), exc, exc_info=True)
                result.failed.append(ref.ordinal)
                parts.append(ref.markup)
                continue
            result.images.append(stored)
            parts.append(ref.rewrite(self.public_path(stored.filename)))

        parts.append(content[last:])
        result.content = "".join(parts)
        return result

    def _start_fetches(self, refs: list[ImageReference]) -> dict[int, Future[FetchedImage]]:
        remote = [r for r in refs if r.kind is ImageSource.REMOTE]
        if not remote:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(remote))) as pool:
            return {r.ordinal: pool.submit(self.fetcher, r.url, self.timeout) for r in remote}

    def _resolve(
        self, ref: ImageReference, pending: Future[FetchedImage] | None
    ) -> StoredImage:
        if ref.kind is ImageSource.EMBEDDED:
            data, header = decode_data_url(ref.url)
            return self.store(data, ref.ordinal, content_type=header)
        if pending is None:
            raise ImageIngestError(f"No fetch scheduled for {_describe(ref.url)}")
        fetched = _fetched(pending.result, ref.url)
        return self.store(fetched.data, ref.ordinal, content_type=fetched.content_type, url=ref.url)

    # ── Cover ────────────────────────────────────────────────────

    def store_cover(self, cover: str) -> StoredImage:
        """Store an embedded or remote cover image as ``cover_<slug>.<ext>``.

        Raises:
            ImageIngestError: If the cover cannot be decoded, fetched or written.
        """
        kind = classify_source(cover)
        if kind is ImageSource.EMBEDDED:
            data, header = decode_data_url(cover)
            return self.store(data, COVER_ROLE, content_type=header)
        if kind is ImageSource.REMOTE:
            fetched = _fetched(lambda: self.fetcher(cover, self.timeout), cover)
            return self.store(fetched.data, COVER_ROLE, content_type=fetched.content_type, url=cover)
        raise ImageIngestError(f"Cover is already a local path: {cover}")

    def adopt(self, source: Path) -> StoredImage:
        """Copy an already-stored file into ``target_dir`` under its own name."""
        try:
            data = source.read_bytes()
        except OSError as exc:
            raise ImageIngestError(f"Failed to read {source}: {exc}") from exc
        return self._write(source.name, data)

    # ── Storage ──────────────────────────────────────────────────

    def store(
        self,
        data: bytes,
        role: str | int,
        *,
        content_type: str = "",
        url: str = "",
    ) -> StoredImage:
        """Transcode (or keep verbatim) and write one image."""
        try:
            payload = transcode(data)
            extension = CANONICAL_EXTENSION
        except ImageDecodeError as exc:
            logger.info("Keeping original bytes for %s image: %s", role, exc)
            payload = data
            extension = fallback_extension(content_type, url)
        return self._write(image_filename(self.slug, role, extension), payload)

    def _write(self, filename: str, payload: bytes) -> StoredImage:
        stored = StoredImage(filename=filename, directory=self.target_dir, data=payload)
        try:
            self.target_dir.mkdir(parents=True, exist_ok=True)
            stored.path.write_bytes(payload)
        except OSError as exc:
            raise ImageIngestError(f"Failed to write image {stored.path}: {exc}") from exc
        logger.debug("Stored %s (%d bytes)", stored.path, len(payload))

        if self.public_dir is not None:
            try:
                stored.mirrored_to = mirror_image(stored.path, self.public_dir)
            except MirrorCopyError as exc:
                logger.warning("%s", exc, exc_info=True)
        return stored


def _fetched(get: Callable[[], FetchedImage], url: str) -> FetchedImage:
    """Run a fetch, folding raw transport errors from custom fetchers into ImageFetchError."""
    try:
        return get()
    except FETCH_ERRORS as exc:
        raise ImageFetchError(f"Failed to download {_describe(url)}: {exc}") from exc


def _describe(url: str) -> str:
    """Short, log-safe form of an image URL (data URLs can be megabytes)."""
    if url.startswith("data:"):
        return url.split(",", 1)[0] + ",…"
    return url
