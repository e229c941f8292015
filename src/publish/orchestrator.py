"""Sync and publish orchestration.

Both operations run an ordered list of named steps inside a
``WorkTreeGuard``.  The first step that raises short-circuits the rest;
the guard then restores the user's branch and stash before the error
reaches the caller.

sync:    drafts branch → drafts/<slug>.md + drafts/images → commit → push
publish: drafts branch → content/articles/<slug>.md + content/images
         (mirrored to public/images) → commit → push → pull request → merge

Operations are not reentrant: two runs against the same work tree at the
same time must be serialized by the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from inkpress.config import InkpressConfig
from inkpress.errors import ExternalToolError, ImageIngestError, PathNotFoundError, PublishError
from inkpress.git.guard import WorkTreeGuard
from inkpress.git.tool import RepoTool, SubprocessTool
from inkpress.images.fetch import fetch_image
from inkpress.images.ingest import Fetcher, ImageIngestor, ImageSource, classify_source
from inkpress.publish.frontmatter import render_document
from inkpress.publish.models import BranchingStrategy, Document, PublishResult, SyncResult

logger = logging.getLogger(__name__)

DRAFTS_DIR = "drafts"
DRAFTS_IMAGES_PREFIX = "/drafts/images"
ARTICLES_DIR = Path("content") / "articles"
CONTENT_IMAGES_DIR = Path("content") / "images"
PUBLIC_IMAGES_DIR = Path("public") / "images"
PUBLISHED_IMAGES_PREFIX = "/images"
SHARED_DRAFTS_BRANCH = "drafts"


@dataclass
class StepResult:
    """Tagged outcome of one orchestration step."""

    name: str
    ok: bool
    detail: str = ""


@dataclass
class RunContext:
    """Mutable state threaded through the steps of one run."""

    document: Document
    repo_path: Path
    guard: WorkTreeGuard
    branch: str
    cover: str = ""
    content: str = ""
    output_path: Path | None = None
    pr_number: str | None = None
    merged: bool = False
    merge_error: str = ""
    trace: list[StepResult] = field(default_factory=list)


Step = tuple[str, Callable[[RunContext], None]]


def run_steps(steps: list[Step], ctx: RunContext) -> None:
    """Run steps in order, recording each outcome; stop at the first failure."""
    for name, step in steps:
        try:
            step(ctx)
        except PublishError as exc:
            ctx.trace.append(StepResult(name, ok=False, detail=str(exc)))
            logger.error("Step '%s' failed: %s", name, exc)
            raise
        ctx.trace.append(StepResult(name, ok=True))


def draft_branch_name(slug: str, strategy: BranchingStrategy) -> str:
    if strategy is BranchingStrategy.SHARED:
        return SHARED_DRAFTS_BRANCH
    return f"drafts/{slug}"


def publish_branch_name(slug: str, strategy: BranchingStrategy, base_branch: str) -> str:
    if strategy is BranchingStrategy.SHARED:
        return base_branch
    return f"drafts/{slug}"


class PublishOrchestrator:
    """Moves documents into a git-backed site repository.

    Args:
        repo_path: Root of the site repository's work tree.
        config: Loaded configuration; defaults apply when omitted.
        tool: git/PR capability; a ``SubprocessTool`` when omitted.
        fetcher: Remote image fetcher used by ingestion.
    """

    def __init__(
        self,
        repo_path: Path,
        *,
        config: InkpressConfig | None = None,
        tool: RepoTool | None = None,
        fetcher: Fetcher = fetch_image,
    ) -> None:
        self.repo_path = Path(repo_path)
        self.config = config or InkpressConfig()
        self.tool = tool or SubprocessTool(
            self.repo_path,
            git_executable=self.config.git.git_executable,
            pr_executable=self.config.git.pr_executable,
        )
        self.fetcher = fetcher
        self.trace: list[StepResult] = []

    @property
    def remote(self) -> str:
        return self.config.repo.remote

    @property
    def base_branch(self) -> str:
        return self.config.repo.base_branch

    @property
    def strategy(self) -> BranchingStrategy:
        return self.config.repo.branching

    # ── Public operations ────────────────────────────────────────

    def sync(self, document: Document) -> SyncResult:
        """Commit the document to its drafts branch and push it.

        Raises:
            PathNotFoundError: If the repository path is missing.
            ExternalToolError: If a git command fails.
            RestoreError: If the original branch or stash cannot be restored
                after an otherwise successful sync.
        """
        self._require_repo()
        branch = draft_branch_name(document.slug, self.strategy)
        steps: list[Step] = [
            ("checkout drafts branch", self._checkout_drafts_branch),
            ("prepare directories", self._prepare_draft_dirs),
            ("ingest images", self._ingest_draft_images),
            ("write draft", self._write_draft),
            ("git add", lambda ctx: self._add(DRAFTS_DIR + "/")),
            ("git commit", lambda ctx: self._commit(
                f"{self.config.publish.sync_commit_prefix}{ctx.document.title}")),
            ("git push", self._push),
        ]

        with WorkTreeGuard(self.tool, self.config.git.stash_message) as guard:
            ctx = RunContext(document=document, repo_path=self.repo_path, guard=guard, branch=branch)
            self.trace = ctx.trace
            run_steps(steps, ctx)
            guard.restore(strict=True)

        logger.info("Synced '%s' to %s", document.title, branch)
        return SyncResult(
            success=True,
            message=f"Draft '{document.title}' synced to {branch}",
            branch=branch,
        )

    def publish(self, document: Document, commit_message: str) -> PublishResult:
        """Write the article, push it, and open and merge a pull request.

        A merge that fails (e.g. required reviews) still yields a successful
        result with ``merged=False``.

        Raises:
            PathNotFoundError: If the repository path is missing.
            ExternalToolError: If a git command, PR creation or PR lookup fails.
        """
        self._require_repo()
        branch = publish_branch_name(document.slug, self.strategy, self.base_branch)
        uses_pr = self.strategy is BranchingStrategy.PER_DOCUMENT
        steps: list[Step] = [
            ("fetch base branch", self._fetch_base),
            ("checkout publish branch", self._checkout_publish_branch),
            ("prepare directories", self._prepare_publish_dirs),
            ("ingest images", self._ingest_publish_images),
            ("write article", self._write_article),
            ("git add", lambda ctx: self._add("content/", "public/images/")),
            ("git commit", lambda ctx: self._commit(commit_message)),
            ("git push", self._push),
        ]
        if uses_pr:
            steps += [
                ("open pull request", self._open_pull_request),
                ("merge pull request", self._merge_pull_request),
            ]

        with WorkTreeGuard(self.tool, self.config.git.stash_message) as guard:
            ctx = RunContext(document=document, repo_path=self.repo_path, guard=guard, branch=branch)
            self.trace = ctx.trace
            run_steps(steps, ctx)
            report = guard.restore(strict=False)

        if not uses_pr:
            message = f"Published '{document.title}' to {branch}."
        elif ctx.merged:
            message = "PR created and merged successfully."
        else:
            message = (
                f"PR #{ctx.pr_number} created for '{document.title}' but could not be merged "
                f"automatically; merge it manually: {ctx.merge_error.strip()}"
            )
        if not report.ok:
            message += f" Warning: {'; '.join(report.failures)}"

        return PublishResult(
            success=True,
            message=message,
            file_path=str(ctx.output_path) if ctx.output_path else None,
            branch=branch,
            pr_number=ctx.pr_number,
            merged=ctx.merged if uses_pr else True,
        )

    # ── Branch steps ─────────────────────────────────────────────

    def _checkout_drafts_branch(self, ctx: RunContext) -> None:
        tool = self.tool
        if tool.branch_exists(ctx.branch):
            tool.checkout(ctx.branch).check("git checkout")
            ctx.guard.switched_to(ctx.branch)
            pulled = tool.pull(self.remote, ctx.branch)
            if not pulled.ok:
                logger.warning("Could not pull %s: %s", ctx.branch, pulled.stderr.strip())
            return

        fetched = tool.fetch(self.remote, ctx.branch)
        start_point = f"{self.remote}/{ctx.branch}" if fetched.ok else self.base_branch
        created = tool.create_branch(ctx.branch, start_point)
        if not created.ok:
            logger.info("Could not branch from %s, branching from HEAD", start_point)
            tool.create_branch(ctx.branch).check("git checkout -b")
        ctx.guard.switched_to(ctx.branch)

    def _fetch_base(self, ctx: RunContext) -> None:
        fetched = self.tool.fetch(self.remote, self.base_branch)
        if not fetched.ok:
            logger.warning("Could not fetch %s/%s: %s",
                           self.remote, self.base_branch, fetched.stderr.strip())

    def _checkout_publish_branch(self, ctx: RunContext) -> None:
        tool = self.tool
        if ctx.branch == self.base_branch:
            tool.checkout(ctx.branch).check("git checkout")
            ctx.guard.switched_to(ctx.branch)
            pulled = tool.pull(self.remote, ctx.branch)
            if not pulled.ok:
                logger.warning("Could not pull %s: %s", ctx.branch, pulled.stderr.strip())
            return

        if tool.branch_exists(ctx.branch):
            tool.checkout(ctx.branch).check("git checkout")
        elif not tool.create_branch(ctx.branch, f"{self.remote}/{self.base_branch}").ok:
            tool.create_branch(ctx.branch, self.base_branch).check("git checkout -b")
        ctx.guard.switched_to(ctx.branch)

    # ── File steps ───────────────────────────────────────────────

    def _prepare_draft_dirs(self, ctx: RunContext) -> None:
        _make_dirs(self.repo_path / DRAFTS_DIR / "images")

    def _prepare_publish_dirs(self, ctx: RunContext) -> None:
        _make_dirs(
            self.repo_path / ARTICLES_DIR,
            self.repo_path / CONTENT_IMAGES_DIR,
            self.repo_path / PUBLIC_IMAGES_DIR,
        )

    def _ingestor(self, slug: str, target: Path, prefix: str, public: Path | None) -> ImageIngestor:
        return ImageIngestor(
            target,
            slug,
            prefix,
            public_dir=public,
            fetcher=self.fetcher,
            timeout=self.config.images.fetch_timeout,
            max_workers=self.config.images.max_workers,
        )

    def _ingest_draft_images(self, ctx: RunContext) -> None:
        doc = ctx.document
        ingestor = self._ingestor(
            doc.slug, self.repo_path / DRAFTS_DIR / "images", DRAFTS_IMAGES_PREFIX, None
        )
        ctx.cover = self._resolve_cover(ingestor, doc.cover)
        ctx.content = ingestor.ingest(doc.content).content

    def _ingest_publish_images(self, ctx: RunContext) -> None:
        doc = ctx.document
        ingestor = self._ingestor(
            doc.slug,
            self.repo_path / CONTENT_IMAGES_DIR,
            PUBLISHED_IMAGES_PREFIX,
            self.repo_path / PUBLIC_IMAGES_DIR,
        )
        if doc.cover.startswith(DRAFTS_IMAGES_PREFIX + "/"):
            ctx.cover = self._promote_cover(ingestor, doc.cover)
        else:
            ctx.cover = self._resolve_cover(ingestor, doc.cover)
        ctx.content = ingestor.ingest(doc.content).content

    def _resolve_cover(self, ingestor: ImageIngestor, cover: str) -> str:
        """Store an embedded/remote cover; other values pass through.

        An embedded cover that cannot be stored is dropped; a remote one
        keeps its URL.
        """
        kind = classify_source(cover) if cover else None
        if kind not in (ImageSource.EMBEDDED, ImageSource.REMOTE):
            return cover
        try:
            stored = ingestor.store_cover(cover)
        except ImageIngestError as exc:
            logger.warning("Failed to save cover image: %s", exc, exc_info=True)
            return "" if kind is ImageSource.EMBEDDED else cover
        return ingestor.public_path(stored.filename)

    def _promote_cover(self, ingestor: ImageIngestor, cover: str) -> str:
        """Copy a cover stored by sync into the published images directory."""
        filename = cover[len(DRAFTS_IMAGES_PREFIX) + 1 :]
        source = self.repo_path / DRAFTS_DIR / "images" / filename
        if not source.is_file():
            logger.warning("Draft cover %s not found; keeping path as-is", source)
            return cover
        try:
            stored = ingestor.adopt(source)
        except ImageIngestError as exc:
            logger.warning("Failed to promote cover image: %s", exc, exc_info=True)
            return cover
        return ingestor.public_path(stored.filename)

    def _write_draft(self, ctx: RunContext) -> None:
        path = self.repo_path / DRAFTS_DIR / f"{ctx.document.slug}.md"
        text = render_document(ctx.document, ctx.content, cover=ctx.cover,
                               draft_id=ctx.document.draft_id or None)
        ctx.output_path = _write_text(path, text)

    def _write_article(self, ctx: RunContext) -> None:
        path = self.repo_path / ARTICLES_DIR / f"{ctx.document.slug}.md"
        ctx.output_path = _write_text(path, render_document(ctx.document, ctx.content, cover=ctx.cover))

    # ── Commit steps ─────────────────────────────────────────────

    def _add(self, *paths: str) -> None:
        self.tool.add(*paths).check("git add")

    def _commit(self, message: str) -> None:
        result = self.tool.commit(message)
        if not result.ok and result.nothing_to_commit:
            logger.info("Nothing to commit; pushing existing branch state")
            return
        result.check("git commit")

    def _push(self, ctx: RunContext) -> None:
        self.tool.push(self.remote, ctx.branch).check("git push")

    # ── Pull request steps ───────────────────────────────────────

    def _find_pr(self, branch: str) -> str:
        return self.tool.list_pr(branch).check("gh pr list").stdout.strip()

    def _open_pull_request(self, ctx: RunContext) -> None:
        number = self._find_pr(ctx.branch)
        if not number:
            title = f"{self.config.publish.pr_title_prefix}{ctx.document.title}"
            self.tool.create_pr(
                title, self.config.publish.pr_body, ctx.branch, self.base_branch
            ).check("gh pr create")
            number = self._find_pr(ctx.branch)
        if not number:
            raise ExternalToolError("gh pr list", f"Failed to resolve PR number for {ctx.branch}")
        ctx.pr_number = number
        logger.info("Pull request #%s open for %s", number, ctx.branch)

    def _merge_pull_request(self, ctx: RunContext) -> None:
        if ctx.pr_number is None:
            return
        merged = self.tool.merge_pr(ctx.pr_number)
        ctx.merged = merged.ok
        if not merged.ok:
            ctx.merge_error = merged.stderr or merged.stdout
            logger.warning("PR #%s not merged: %s", ctx.pr_number, ctx.merge_error.strip())

    def _require_repo(self) -> None:
        if not self.repo_path.exists():
            raise PathNotFoundError(self.repo_path)


def _make_dirs(*paths: Path) -> None:
    for path in paths:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PublishError(f"Failed to create {path}: {exc}") from exc


def _write_text(path: Path, text: str) -> Path:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise PublishError(f"Failed to write {path}: {exc}") from exc
    return path


def sync_draft(
    document: Document,
    repo_path: str | Path,
    *,
    config: InkpressConfig | None = None,
    tool: RepoTool | None = None,
) -> SyncResult:
    """Sync ``document`` into the repository at ``repo_path``."""
    return PublishOrchestrator(Path(repo_path), config=config, tool=tool).sync(document)


def publish_draft(
    document: Document,
    repo_path: str | Path,
    commit_message: str,
    *,
    config: InkpressConfig | None = None,
    tool: RepoTool | None = None,
) -> PublishResult:
    """Publish ``document`` into the repository at ``repo_path``."""
    return PublishOrchestrator(Path(repo_path), config=config, tool=tool).publish(
        document, commit_message
    )
