"""Image transcoding to the canonical on-site format (lossless WebP).

Every decodable image is normalized to one format regardless of source,
trading compression gain for a single predictable output type.  Callers
fall back to storing the original bytes when decoding fails, using the
extension helpers below.
"""

from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

from inkpress.errors import ImageDecodeError

logger = logging.getLogger(__name__)

CANONICAL_EXTENSION = "webp"
DEFAULT_EXTENSION = "jpg"
ACCEPTED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "bmp", "tiff", "avif"}

_MIME_EXTENSIONS: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "image/avif": "avif",
    "image/heic": "heic",
    "image/heif": "heic",
}


def transcode(data: bytes) -> bytes:
    """Decode raster image bytes and re-encode them as lossless WebP.

    Raises:
        ImageDecodeError: If the bytes are not a supported, intact image, or
            the image cannot be WebP-encoded (either side over 16383 px).
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            rgba = image.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Unsupported or corrupt image: {exc}") from exc

    buffer = io.BytesIO()
    try:
        rgba.save(buffer, format="WEBP", lossless=True)
    except (OSError, ValueError) as exc:
        raise ImageDecodeError(f"Cannot encode {rgba.width}x{rgba.height} image as WebP: {exc}") from exc
    encoded = buffer.getvalue()
    logger.debug("Transcoded %d source bytes to %d WebP bytes", len(data), len(encoded))
    return encoded


def extension_from_mime(header: str) -> str | None:
    """Map a MIME type (or data-URL header) to a file extension."""
    lowered = header.lower()
    for mime, ext in _MIME_EXTENSIONS.items():
        if mime in lowered:
            return ext
    return None


def extension_from_url(url: str) -> str | None:
    """Guess an accepted image extension from the URL path."""
    trimmed = url.split("?", 1)[0].split("#", 1)[0]
    filename = trimmed.rsplit("/", 1)[-1]
    if "." not in filename:
        return None
    ext = filename.rsplit(".", 1)[-1].lower()
    if ext in ACCEPTED_EXTENSIONS:
        return ext
    return None


def fallback_extension(content_type: str = "", url: str = "") -> str:
    """Extension for bytes stored verbatim: MIME type, then URL, then jpg."""
    return extension_from_mime(content_type) or extension_from_url(url) or DEFAULT_EXTENSION
