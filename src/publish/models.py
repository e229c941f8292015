"""Publish domain models — pure Pydantic v2 data types.

A Document is supplied by the caller and only ever read by the
orchestrator.  SyncResult and PublishResult are the terminal values
returned when an operation completes.
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_COVER_POSITION = 50.0

_UNSAFE_SLUG_RE = re.compile(r"[\s/\\:~^?*\[\]]")


class BranchingStrategy(StrEnum):
    """How target branches are named."""

    PER_DOCUMENT = "per-document"  # drafts/<slug> for sync and publish
    SHARED = "shared"  # one "drafts" branch; publish goes straight to base


class Document(BaseModel):
    """An in-progress document to sync or publish."""

    model_config = ConfigDict(frozen=True)

    slug: str
    title: str
    date: str
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    cover: str = ""
    cover_position: float | None = Field(default=None, ge=0, le=100)
    content: str = ""
    updated_at: str | None = None
    draft_id: str = ""

    @field_validator("slug")
    @classmethod
    def _check_slug(cls, value: str) -> str:
        if not value:
            raise ValueError("slug must not be empty")
        if value.startswith(("-", ".")) or ".." in value or _UNSAFE_SLUG_RE.search(value):
            raise ValueError(f"slug is not filesystem/branch safe: {value!r}")
        return value

    @property
    def effective_cover_position(self) -> float:
        if self.cover_position is None:
            return DEFAULT_COVER_POSITION
        return self.cover_position

    @property
    def last_updated(self) -> str:
        return self.updated_at or self.date


class SyncResult(BaseModel):
    """Outcome of syncing a document to its drafts branch."""

    success: bool = True
    message: str
    branch: str


class PublishResult(BaseModel):
    """Outcome of publishing a document.

    ``merged`` is False when the pull request was opened but could not be
    merged automatically; the operation still counts as a success.
    """

    success: bool = True
    message: str
    file_path: str | None = None
    branch: str = ""
    pr_number: str | None = None
    merged: bool = False
