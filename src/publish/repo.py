"""Repository-level helpers used around sync and publish."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from pydantic import BaseModel

from inkpress.errors import PathNotFoundError, PublishError
from inkpress.git.tool import RepoTool, SubprocessTool
from inkpress.publish.orchestrator import CONTENT_IMAGES_DIR, PUBLIC_IMAGES_DIR

logger = logging.getLogger(__name__)


class RepoValidation(BaseModel):
    """Result of checking a configured repository path."""

    is_valid: bool
    is_git_repo: bool
    has_content_dir: bool
    error: str | None = None


def validate_repo_path(path: str | Path) -> RepoValidation:
    """Check that ``path`` exists and is a git work tree."""
    repo_path = Path(path).expanduser()
    if not repo_path.exists():
        return RepoValidation(
            is_valid=False,
            is_git_repo=False,
            has_content_dir=False,
            error="Path does not exist",
        )

    is_git_repo = (repo_path / ".git").exists()
    return RepoValidation(
        is_valid=is_git_repo,
        is_git_repo=is_git_repo,
        has_content_dir=(repo_path / "content").exists(),
        error=None if is_git_repo else "Not a git repository (no .git directory)",
    )


def get_repo_status(repo_path: str | Path, *, tool: RepoTool | None = None) -> str:
    """Return the raw ``git status --porcelain`` output."""
    path = Path(repo_path)
    if not path.exists():
        raise PathNotFoundError(path)
    tool = tool or SubprocessTool(path)
    return tool.status().check("git status").stdout


def sync_public_images(repo_path: str | Path) -> str:
    """Copy every file in content/images into public/images.

    Returns:
        A one-line summary of how many files were copied.
    """
    path = Path(repo_path)
    if not path.exists():
        raise PathNotFoundError(path)

    source_dir = path / CONTENT_IMAGES_DIR
    target_dir = path / PUBLIC_IMAGES_DIR
    if not source_dir.is_dir():
        raise PublishError("content/images does not exist")

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        copied = 0
        for entry in sorted(source_dir.iterdir()):
            if entry.is_file():
                shutil.copyfile(entry, target_dir / entry.name)
                copied += 1
    except OSError as exc:
        raise PublishError(f"Failed to sync public images: {exc}") from exc

    logger.info("Copied %d images into %s", copied, target_dir)
    return f"Synced {copied} images from content/images to public/images"
