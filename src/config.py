"""Unified configuration loaded from .inkpress.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from inkpress.publish.models import BranchingStrategy

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".inkpress.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG = Path.home() / ".config" / "inkpress" / "config.toml"
DEFAULT_STORE_DIR = Path.home() / ".local" / "share" / "inkpress"


class RepoConfig(BaseModel):
    """[repo] section."""

    path: str = ""
    remote: str = "origin"
    base_branch: str = "main"
    branching: BranchingStrategy = BranchingStrategy.PER_DOCUMENT


class GitConfig(BaseModel):
    """[git] section."""

    git_executable: str = "git"
    pr_executable: str = "gh"
    stash_message: str = "inkpress auto-stash"


class ImagesConfig(BaseModel):
    """[images] section."""

    fetch_timeout: float = 20.0
    max_workers: int = Field(default=4, ge=1)


class PublishConfig(BaseModel):
    """[publish] section."""

    pr_title_prefix: str = "Publish: "
    pr_body: str = "Published via inkpress"
    sync_commit_prefix: str = "Sync draft: "


class StoreConfig(BaseModel):
    """[store] section."""

    directory: str = str(DEFAULT_STORE_DIR)


class InkpressConfig(BaseModel):
    """Top-level configuration model."""

    repo: RepoConfig = Field(default_factory=RepoConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    images: ImagesConfig = Field(default_factory=ImagesConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @property
    def repo_path(self) -> Path | None:
        return Path(self.repo.path).expanduser() if self.repo.path else None

    @property
    def store_dir(self) -> Path:
        return Path(self.store.directory).expanduser()


ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "INKPRESS_REPO_PATH": ("repo", "path"),
    "INKPRESS_BRANCHING": ("repo", "branching"),
    "INKPRESS_REMOTE": ("repo", "remote"),
    "INKPRESS_BASE_BRANCH": ("repo", "base_branch"),
    "INKPRESS_GIT": ("git", "git_executable"),
    "INKPRESS_GH": ("git", "pr_executable"),
    "INKPRESS_FETCH_TIMEOUT": ("images", "fetch_timeout"),
    "INKPRESS_STORE_DIR": ("store", "directory"),
}

CLI_OVERRIDES: dict[str, tuple[str, str]] = {
    "repo_path": ("repo", "path"),
    "branching": ("repo", "branching"),
    "remote": ("repo", "remote"),
    "base_branch": ("repo", "base_branch"),
    "store_dir": ("store", "directory"),
}


def load_config(path: str | Path | None = None) -> InkpressConfig:
    """Read site/repository settings, then apply ``INKPRESS_*`` env overrides.

    An explicit ``path`` wins; otherwise ``.inkpress.toml`` in the working
    directory, then the per-user config.  A missing or unparseable file
    leaves the defaults in place.
    """
    toml_path = Path(path) if path is not None else _find_config_file()
    data: dict[str, object] = {}
    if toml_path is not None and toml_path.exists():
        data = _load_toml(toml_path)
        logger.info("Loaded config from %s", toml_path)
    elif path is not None:
        logger.warning("Config file not found: %s", toml_path)

    env = {key: os.environ[var] for var, key in ENV_OVERRIDES.items() if var in os.environ}
    return _overlay(InkpressConfig.model_validate(data), env)


def merge_cli_overrides(config: InkpressConfig, **cli_kwargs: object) -> InkpressConfig:
    """Apply flags the user actually passed (None means "not given")."""
    flags = {
        CLI_OVERRIDES[name]: str(value) if isinstance(value, Path) else value
        for name, value in cli_kwargs.items()
        if value is not None and name in CLI_OVERRIDES
    }
    return _overlay(config, flags)


def _find_config_file() -> Path | None:
    for search_dir in CONFIG_SEARCH_PATHS:
        candidate = search_dir / CONFIG_FILENAME
        if candidate.exists():
            return candidate
    return GLOBAL_CONFIG if GLOBAL_CONFIG.exists() else None


def _load_toml(path: Path) -> dict[str, object]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _overlay(config: InkpressConfig, values: dict[tuple[str, str], object]) -> InkpressConfig:
    """Return a revalidated copy with ``(section, field)`` values replaced."""
    if not values:
        return config
    data = config.model_dump()
    for (section, field), value in values.items():
        data[section][field] = value
    return InkpressConfig.model_validate(data)
