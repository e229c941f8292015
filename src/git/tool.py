"""git and pull-request tool capability.

``RepoTool`` exposes exactly the subcommands the guard and orchestrator
need.  Concrete tools only implement ``run_git`` and ``run_pr``; the
argument lists live here so a fake tool in tests sees the same argv the
real one would execute.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from inkpress.errors import ExternalToolError

logger = logging.getLogger(__name__)

NOTHING_TO_COMMIT = "nothing to commit"


@dataclass
class CommandResult:
    """Exit status and captured output of one tool invocation."""

    args: list[str] = field(default_factory=list)
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def nothing_to_commit(self) -> bool:
        # git prints this on stdout for a clean tree; some versions use stderr
        return NOTHING_TO_COMMIT in self.stderr or NOTHING_TO_COMMIT in self.stdout

    def check(self, step: str) -> CommandResult:
        """Return self, or raise ExternalToolError carrying the raw stderr."""
        if not self.ok:
            raise ExternalToolError(
                step,
                self.stderr or self.stdout,
                command=self.args,
                returncode=self.returncode,
            )
        return self


class RepoTool(ABC):
    """Capability interface over git and the PR tool for one repository."""

    @abstractmethod
    def run_git(self, *args: str) -> CommandResult:
        """Run ``git <args>`` in the repository."""

    @abstractmethod
    def run_pr(self, *args: str) -> CommandResult:
        """Run the pull-request tool (``gh <args>``) in the repository."""

    # ── Work tree ────────────────────────────────────────────────

    def status(self) -> CommandResult:
        return self.run_git("status", "--porcelain")

    def stash_push(self, message: str) -> CommandResult:
        return self.run_git("stash", "push", "-u", "-m", message)

    def stash_pop(self) -> CommandResult:
        return self.run_git("stash", "pop")

    def current_branch(self) -> CommandResult:
        return self.run_git("rev-parse", "--abbrev-ref", "HEAD")

    def head_commit(self) -> CommandResult:
        return self.run_git("rev-parse", "HEAD")

    # ── Branches ─────────────────────────────────────────────────

    def fetch(self, remote: str, branch: str) -> CommandResult:
        return self.run_git("fetch", remote, branch)

    def branch_exists(self, branch: str) -> bool:
        return self.run_git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}").ok

    def checkout(self, branch: str) -> CommandResult:
        return self.run_git("checkout", branch)

    def create_branch(self, branch: str, start_point: str | None = None) -> CommandResult:
        if start_point:
            return self.run_git("checkout", "-b", branch, start_point)
        return self.run_git("checkout", "-b", branch)

    def pull(self, remote: str, branch: str) -> CommandResult:
        return self.run_git("pull", remote, branch)

    # ── Commit ───────────────────────────────────────────────────

    def add(self, *paths: str) -> CommandResult:
        return self.run_git("add", *paths)

    def commit(self, message: str) -> CommandResult:
        return self.run_git("commit", "-m", message)

    def push(self, remote: str, branch: str, *, set_upstream: bool = True) -> CommandResult:
        if set_upstream:
            return self.run_git("push", "-u", remote, branch)
        return self.run_git("push", remote, branch)

    # ── Pull requests ────────────────────────────────────────────

    def list_pr(self, branch: str) -> CommandResult:
        return self.run_pr(
            "pr", "list", "--head", branch, "--json", "number", "--jq", ".[0].number"
        )

    def create_pr(self, title: str, body: str, head: str, base: str) -> CommandResult:
        return self.run_pr(
            "pr", "create", "--title", title, "--body", body, "--head", head, "--base", base
        )

    def merge_pr(self, number: str) -> CommandResult:
        return self.run_pr("pr", "merge", number, "--merge", "--delete-branch")


class SubprocessTool(RepoTool):
    """Runs the real ``git`` and ``gh`` executables inside ``repo_path``.

    No timeout is applied: git and gh may legitimately wait on the network
    or on credential helpers.
    """

    def __init__(
        self,
        repo_path: Path,
        *,
        git_executable: str = "git",
        pr_executable: str = "gh",
    ) -> None:
        self.repo_path = repo_path
        self.git_executable = git_executable
        self.pr_executable = pr_executable

    def run_git(self, *args: str) -> CommandResult:
        return self._run([self.git_executable, *args])

    def run_pr(self, *args: str) -> CommandResult:
        return self._run([self.pr_executable, *args])

    def _run(self, cmd: list[str]) -> CommandResult:
        logger.debug("Running %s in %s", " ".join(cmd), self.repo_path)
        try:
            proc = subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            return CommandResult(
                args=cmd, returncode=127, stderr=f"{cmd[0]} not found; is it on the PATH?"
            )
        except OSError as exc:
            return CommandResult(args=cmd, returncode=126, stderr=f"Failed to run {cmd[0]}: {exc}")

        result = CommandResult(
            args=cmd, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr
        )
        if not result.ok:
            logger.debug("%s exited %d: %s", cmd[0], result.returncode, result.stderr.strip()[:500])
        return result
