"""Error taxonomy for the publishing pipeline.

Fatal errors (``PathNotFoundError``, ``ExternalToolError``, ``RestoreError``)
propagate to the caller.  Per-image errors are caught inside the ingestion
pipeline, logged, and never escape it.
"""

from __future__ import annotations


class PublishError(Exception):
    """Base error for sync and publish operations."""


class PathNotFoundError(PublishError):
    """The configured repository path does not exist."""

    def __init__(self, path: object) -> None:
        super().__init__(f"Repository path does not exist: {path}")
        self.path = path


class ExternalToolError(PublishError):
    """git or the PR tool exited non-zero (or could not be started)."""

    def __init__(
        self,
        step: str,
        stderr: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(f"{step} failed: {stderr.strip()}")
        self.step = step
        self.stderr = stderr
        self.command = command or []
        self.returncode = returncode


class RestoreError(PublishError):
    """Checkout-back or stash pop failed after the main operation succeeded."""


class ImageIngestError(Exception):
    """A single image reference could not be stored."""


class ImageDecodeError(ImageIngestError):
    """Bytes are not a decodable raster image."""


class ImageFetchError(ImageIngestError):
    """A remote image could not be downloaded."""


class MirrorCopyError(Exception):
    """Copying a stored image into the public directory failed."""
