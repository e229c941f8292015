"""Draft domain — locally edited drafts and their JSON-backed store."""

from inkpress.drafts.models import Draft, DraftStatus, DraftSummary, generate_slug
from inkpress.drafts.store import DraftStore

__all__ = [
    "Draft",
    "DraftStatus",
    "DraftStore",
    "DraftSummary",
    "generate_slug",
]
