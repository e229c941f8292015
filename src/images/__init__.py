"""Image transcoding and ingestion for document content and covers."""

from inkpress.images.ingest import (
    ImageIngestor,
    ImageReference,
    ImageSource,
    IngestResult,
    StoredImage,
    find_references,
    image_filename,
)
from inkpress.images.transcode import transcode

__all__ = [
    "ImageIngestor",
    "ImageReference",
    "ImageSource",
    "IngestResult",
    "StoredImage",
    "find_references",
    "image_filename",
    "transcode",
]
