"""Draft domain models — pure Pydantic v2 data types.

A Draft is what the author edits locally.  It moves through
draft → synced → published as the orchestrator pushes it into the site
repository; the store records that status, the orchestrator never reads
or writes the store itself.
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, Field

from inkpress.publish.models import Document

FALLBACK_SLUG = "untitled"


class DraftStatus(StrEnum):
    """Lifecycle status of a draft."""

    DRAFT = "draft"  # local only
    SYNCED = "synced"  # pushed to its drafts branch
    PUBLISHED = "published"  # merged (or PR opened) into the site

    @classmethod
    def parse(cls, value: str) -> DraftStatus:
        """Unknown values map to DRAFT."""
        try:
            return cls(value)
        except ValueError:
            return cls.DRAFT


class Draft(BaseModel):
    """A locally stored draft."""

    id: str = ""
    slug: str = ""
    title: str = ""
    date: str = ""
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    cover: str = ""
    cover_position: float | None = None
    content: str = ""
    created_at: str = ""
    updated_at: str = ""
    synced_at: str | None = None
    published_at: str | None = None
    status: DraftStatus = DraftStatus.DRAFT

    @property
    def resolved_slug(self) -> str:
        return self.slug or generate_slug(self.title) or FALLBACK_SLUG

    def to_document(self) -> Document:
        """Build the orchestrator's read-only view of this draft."""
        return Document(
            slug=self.resolved_slug,
            title=self.title,
            date=self.date,
            tags=list(self.tags),
            description=self.description,
            cover=self.cover,
            cover_position=self.cover_position,
            content=self.content,
            updated_at=self.updated_at or None,
            draft_id=self.id,
        )


class DraftSummary(BaseModel):
    """Lightweight row for draft listings."""

    id: str
    title: str
    status: DraftStatus
    updated_at: str


def generate_slug(title: str) -> str:
    """Lower-case, hyphenated slug with only ``[a-z0-9-]`` characters."""
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")
