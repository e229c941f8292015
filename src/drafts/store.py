"""JSON-backed draft store.

Persists all Drafts in a single JSON file, loaded on init and saved
after every write operation.  Provides CRUD plus status tracking for
the sync/publish lifecycle.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from inkpress.drafts.models import Draft, DraftStatus, DraftSummary

logger = logging.getLogger(__name__)

STORE_FILENAME = "drafts.json"

# Alias to avoid shadowing by DraftStore.list method
_list = list


class _StoreData(BaseModel):
    """Internal wrapper for JSON serialization."""

    drafts: list[Draft] = Field(default_factory=list)


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


class DraftStore:
    """JSON-backed CRUD store for drafts, keyed by opaque id.

    Loads the store file on init and saves after every mutation.
    """

    def __init__(self, data_dir: Path) -> None:
        self._path = data_dir / STORE_FILENAME
        self._data = self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ── Private helpers ──────────────────────────────────────────

    def _load(self) -> _StoreData:
        if not self._path.exists():
            return _StoreData()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return _StoreData.model_validate(raw)
        except (json.JSONDecodeError, ValueError, KeyError):
            logger.warning("Corrupt draft store at %s, starting fresh", self._path)
            return _StoreData()

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            self._data.model_dump_json(indent=2),
            encoding="utf-8",
        )

    def _find(self, draft_id: str) -> Draft | None:
        for draft in self._data.drafts:
            if draft.id == draft_id:
                return draft
        return None

    def _require(self, draft_id: str) -> Draft:
        draft = self._find(draft_id)
        if draft is None:
            raise KeyError(draft_id)
        return draft

    # ── Write operations ─────────────────────────────────────────

    def save(self, draft: Draft) -> Draft:
        """Create or update a draft.

        New drafts (empty id) get a UUID and ``created_at``; every save
        refreshes ``updated_at``.  Returns the stored copy.
        """
        now = _now()
        stored = draft.model_copy(deep=True)
        if not stored.id:
            stored.id = str(uuid.uuid4())
            stored.created_at = now
        stored.updated_at = now

        self._data.drafts = [d for d in self._data.drafts if d.id != stored.id]
        self._data.drafts.append(stored)
        self._save()
        return stored.model_copy(deep=True)

    def delete(self, draft_id: str) -> bool:
        """Remove a draft. Returns True if one was removed."""
        before = len(self._data.drafts)
        self._data.drafts = [d for d in self._data.drafts if d.id != draft_id]
        if len(self._data.drafts) == before:
            return False
        self._save()
        return True

    def update_status(self, draft_id: str, status: DraftStatus | str) -> Draft:
        """Set a draft's lifecycle status and stamp the matching timestamp.

        Raises KeyError if the id does not exist.
        """
        draft = self._require(draft_id)
        status = DraftStatus.parse(status)
        now = _now()
        draft.status = status
        draft.updated_at = now
        if status is DraftStatus.SYNCED:
            draft.synced_at = now
        elif status is DraftStatus.PUBLISHED:
            draft.published_at = now
        self._save()
        return draft.model_copy(deep=True)

    # ── Read operations ──────────────────────────────────────────

    def get(self, draft_id: str) -> Draft | None:
        """Return a draft by id, or None if not found."""
        draft = self._find(draft_id)
        return draft.model_copy(deep=True) if draft is not None else None

    def list(self, status: DraftStatus | None = None) -> _list[DraftSummary]:
        """Return draft summaries, most recently updated first."""
        drafts = self._data.drafts
        if status is not None:
            drafts = [d for d in drafts if d.status == status]
        ordered = sorted(drafts, key=lambda d: d.updated_at, reverse=True)
        return [
            DraftSummary(id=d.id, title=d.title, status=d.status, updated_at=d.updated_at)
            for d in ordered
        ]

    def latest(self) -> Draft | None:
        """Return the most recently updated draft, if any."""
        if not self._data.drafts:
            return None
        newest = max(self._data.drafts, key=lambda d: d.updated_at)
        return newest.model_copy(deep=True)
