"""Shared fixtures: a scripted git/PR tool and real image bytes."""

from __future__ import annotations

import base64
import io
from pathlib import Path

import pytest
from PIL import Image

from inkpress.git.tool import CommandResult, RepoTool
from inkpress.images.fetch import FetchedImage


class FakeTool(RepoTool):
    """In-memory stand-in for git and gh.

    Keeps just enough state (current branch, local branches, stash,
    porcelain status, PR number) for the default answers to behave like a
    real repository.  ``fail()`` scripts a non-zero result for any argv
    that starts with the given prefix.
    """

    def __init__(self, branch: str = "main", status: str = "") -> None:
        self.calls: list[list[str]] = []
        self.branch = branch
        self.branches: set[str] = {"main", branch}
        self.status_output = status
        self.stash: list[str] = []
        self.pr_number = ""
        self._rules: list[tuple[tuple[str, ...], CommandResult, int | None]] = []

    # ── Scripting ────────────────────────────────────────────────

    def fail(self, *prefix: str, stderr: str = "boom", stdout: str = "",
             returncode: int = 1, times: int | None = None) -> None:
        self._rules.append(
            (prefix, CommandResult(returncode=returncode, stdout=stdout, stderr=stderr), times)
        )

    def respond(self, *prefix: str, stdout: str = "", times: int | None = None) -> None:
        self._rules.append((prefix, CommandResult(stdout=stdout), times))

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)

    def commands(self) -> list[str]:
        return [" ".join(call) for call in self.calls]

    # ── RepoTool ─────────────────────────────────────────────────

    def run_git(self, *args: str) -> CommandResult:
        return self._dispatch(["git", *args])

    def run_pr(self, *args: str) -> CommandResult:
        return self._dispatch(["gh", *args])

    def _dispatch(self, argv: list[str]) -> CommandResult:
        self.calls.append(argv)
        for index, (prefix, result, times) in enumerate(self._rules):
            if tuple(argv[: len(prefix)]) != prefix:
                continue
            if times is not None:
                if times <= 0:
                    continue
                self._rules[index] = (prefix, result, times - 1)
            return CommandResult(argv, result.returncode, result.stdout, result.stderr)
        return self._default(argv)

    def _default(self, argv: list[str]) -> CommandResult:
        ok = CommandResult(argv)
        tool, *args = argv
        if tool == "gh":
            if args[:2] == ["pr", "list"]:
                return CommandResult(argv, stdout=f"{self.pr_number}\n" if self.pr_number else "")
            if args[:2] == ["pr", "create"]:
                self.pr_number = "7"
            return ok

        match args:
            case ["status", "--porcelain"]:
                return CommandResult(argv, stdout=self.status_output)
            case ["stash", "push", *_]:
                self.stash.append(self.status_output)
                self.status_output = ""
            case ["stash", "pop"]:
                if not self.stash:
                    return CommandResult(argv, 1, stderr="No stash entries found.")
                self.status_output = self.stash.pop()
            case ["rev-parse", "--abbrev-ref", "HEAD"]:
                return CommandResult(argv, stdout=f"{self.branch}\n")
            case ["rev-parse", "HEAD"]:
                return CommandResult(argv, stdout="0123abcd\n")
            case ["show-ref", "--verify", "--quiet", ref]:
                name = ref.removeprefix("refs/heads/")
                return ok if name in self.branches else CommandResult(argv, 1)
            case ["checkout", "-b", name, *_]:
                self.branches.add(name)
                self.branch = name
            case ["checkout", name]:
                self.branch = name
        return ok


@pytest.fixture
def fake_tool() -> FakeTool:
    return FakeTool()


@pytest.fixture
def dirty_tool() -> FakeTool:
    return FakeTool(branch="feature/notes", status=" M notes.txt\n?? scratch.md\n")


def make_png(size: tuple[int, int] = (1, 1), color: tuple[int, ...] = (255, 0, 0, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def as_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def image_factory():
    return make_png


@pytest.fixture
def data_url_factory():
    return as_data_url


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def png_data_url(png_bytes: bytes) -> str:
    return as_data_url(png_bytes)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    path = tmp_path / "site"
    (path / ".git").mkdir(parents=True)
    return path


class FakeFetcher:
    """Serves canned responses per URL and records requests."""

    def __init__(self, responses: dict[str, FetchedImage | Exception] | None = None) -> None:
        self.responses = responses or {}
        self.requested: list[tuple[str, float]] = []

    def __call__(self, url: str, timeout: float) -> FetchedImage:
        self.requested.append((url, timeout))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fetcher_factory():
    return FakeFetcher


@pytest.fixture
def tool_factory():
    return FakeTool
