"""Work-tree guard: put the repository back the way the user left it.

On entry the guard stashes a dirty work tree (untracked files included)
and records the current branch.  On exit, whether the body succeeded or
raised, it checks the original branch back out and pops the stash.

Restoration on an already-failing path is best-effort: its failures are
captured in a ``RestoreReport`` and logged, so the primary error is the
one the caller sees.  ``restore(strict=True)`` raises instead, for
success paths where a lost stash must not go unnoticed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType

from inkpress.errors import ExternalToolError, RestoreError
from inkpress.git.tool import CommandResult, RepoTool

logger = logging.getLogger(__name__)

DEFAULT_STASH_MESSAGE = "inkpress auto-stash"


@dataclass
class SessionState:
    """Repository state captured for one guarded run."""

    original_branch: str = ""
    stashed: bool = False
    target_branch: str = ""
    on_target: bool = False


@dataclass
class RestoreReport:
    """What happened while restoring; never raised on its own."""

    checkout: CommandResult | None = None
    stash_pop: CommandResult | None = None
    stash_kept: bool = False

    @property
    def failures(self) -> list[str]:
        problems: list[str] = []
        if self.checkout is not None and not self.checkout.ok:
            problems.append(f"git checkout failed: {self.checkout.stderr.strip()}")
        if self.stash_pop is not None and not self.stash_pop.ok:
            problems.append(f"git stash pop failed: {self.stash_pop.stderr.strip()}")
        if self.stash_kept:
            problems.append("stash left in place because the original branch was not restored")
        return problems

    @property
    def ok(self) -> bool:
        return not self.failures


class WorkTreeGuard:
    """Context manager that restores branch and stash state on every exit.

    Usage::

        with WorkTreeGuard(tool) as guard:
            tool.checkout(branch).check("git checkout")
            guard.switched_to(branch)
            ...
            guard.restore(strict=True)
    """

    def __init__(self, tool: RepoTool, stash_message: str = DEFAULT_STASH_MESSAGE) -> None:
        self.tool = tool
        self.stash_message = stash_message
        self.state = SessionState()
        self.report: RestoreReport | None = None

    def __enter__(self) -> WorkTreeGuard:
        self.enter()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self.report is None:
            self.restore(strict=False)

    def enter(self) -> SessionState:
        """Stash if dirty, then record the branch to return to.

        Raises:
            ExternalToolError: If status, stash or branch lookup fails.  A
                stash created before the failure is popped again first.
        """
        status = self.tool.status().check("git status")
        if status.stdout.strip():
            self.tool.stash_push(self.stash_message).check("git stash")
            self.state.stashed = True
            logger.info("Stashed uncommitted changes (%s)", self.stash_message)

        try:
            self.state.original_branch = self._resolve_original_branch()
        except ExternalToolError:
            if self.state.stashed and self.tool.stash_pop().ok:
                self.state.stashed = False
            self.report = RestoreReport(stash_kept=self.state.stashed)
            raise
        return self.state

    def _resolve_original_branch(self) -> str:
        branch = self.tool.current_branch().check("git rev-parse").stdout.strip()
        if branch == "HEAD":
            # detached: come back to the exact commit
            return self.tool.head_commit().check("git rev-parse").stdout.strip()
        return branch

    def switched_to(self, branch: str) -> None:
        """Record that the work tree is now on ``branch``."""
        self.state.target_branch = branch
        self.state.on_target = branch != self.state.original_branch

    def restore(self, *, strict: bool = False) -> RestoreReport:
        """Check out the original branch and pop the stash (once).

        Args:
            strict: Raise RestoreError on any failure instead of logging it.
        """
        if self.report is not None:
            return self.report

        report = RestoreReport()
        if self.state.on_target:
            report.checkout = self.tool.checkout(self.state.original_branch)
            if report.checkout.ok:
                self.state.on_target = False

        if self.state.stashed:
            if self.state.on_target:
                # popping onto the wrong branch would mix the user's work into it
                report.stash_kept = True
            else:
                report.stash_pop = self.tool.stash_pop()
                if report.stash_pop.ok:
                    self.state.stashed = False

        self.report = report
        if report.failures:
            message = "; ".join(report.failures)
            if strict:
                raise RestoreError(message)
            logger.warning("Repository restore incomplete: %s", message)
        return report
