"""Tests for sync and publish orchestration against a scripted git/gh tool."""

from __future__ import annotations

import http.client
import io
from unittest.mock import patch

import pytest
from PIL import Image

from inkpress.config import InkpressConfig
from inkpress.errors import ExternalToolError, ImageFetchError, PathNotFoundError, RestoreError
from inkpress.images.fetch import FetchedImage
from inkpress.publish.models import BranchingStrategy, Document
from inkpress.publish.orchestrator import (
    PublishOrchestrator,
    draft_branch_name,
    publish_branch_name,
    sync_draft,
)


def _make_document(content: str = "", **overrides) -> Document:
    defaults = {
        "slug": "hello-world",
        "title": "Hello World",
        "date": "2024-05-01",
        "tags": ["go", "systems"],
        "content": content,
    }
    defaults.update(overrides)
    return Document(**defaults)


def _make_orchestrator(repo, tool, fetcher=None, /, **config) -> PublishOrchestrator:
    cfg = InkpressConfig.model_validate(config) if config else InkpressConfig()
    if fetcher is None:
        return PublishOrchestrator(repo, config=cfg, tool=tool)
    return PublishOrchestrator(repo, config=cfg, tool=tool, fetcher=fetcher)


def _shared(repo, tool, fetcher=None) -> PublishOrchestrator:
    return _make_orchestrator(repo, tool, fetcher, repo={"branching": "shared"})


def _is_webp(path) -> bool:
    with Image.open(io.BytesIO(path.read_bytes())) as image:
        return image.format == "WEBP"


# ── Branch naming ────────────────────────────────────────────────


def test_branch_names():
    assert draft_branch_name("post", BranchingStrategy.PER_DOCUMENT) == "drafts/post"
    assert draft_branch_name("post", BranchingStrategy.SHARED) == "drafts"
    assert publish_branch_name("post", BranchingStrategy.PER_DOCUMENT, "main") == "drafts/post"
    assert publish_branch_name("post", BranchingStrategy.SHARED, "main") == "main"


# ── Sync ─────────────────────────────────────────────────────────


class TestSync:
    def test_hello_world(self, repo, fake_tool, png_data_url):
        doc = _make_document(f"Hi\n\n![a]({png_data_url})\n", draft_id="d-1")

        result = _make_orchestrator(repo, fake_tool).sync(doc)

        assert result.success
        assert result.branch == "drafts/hello-world"
        assert result.message == "Draft 'Hello World' synced to drafts/hello-world"

        text = (repo / "drafts" / "hello-world.md").read_text()
        assert text == (
            "---\n"
            'title: "Hello World"\n'
            'date: "2024-05-01"\n'
            'tags: ["go", "systems"]\n'
            'description: ""\n'
            'cover: ""\n'
            "cover_position: 50\n"
            'last_updated: "2024-05-01"\n'
            'draft_id: "d-1"\n'
            "---\n\n"
            "Hi\n\n![a](/drafts/images/img_hello-world_1.webp)\n"
        )
        assert _is_webp(repo / "drafts" / "images" / "img_hello-world_1.webp")

    def test_git_sequence_for_new_branch(self, repo, fake_tool):
        _make_orchestrator(repo, fake_tool).sync(_make_document("text"))

        assert fake_tool.commands() == [
            "git status --porcelain",
            "git rev-parse --abbrev-ref HEAD",
            "git show-ref --verify --quiet refs/heads/drafts/hello-world",
            "git fetch origin drafts/hello-world",
            "git checkout -b drafts/hello-world origin/drafts/hello-world",
            "git add drafts/",
            "git commit -m Sync draft: Hello World",
            "git push -u origin drafts/hello-world",
            "git checkout main",
        ]
        assert fake_tool.branch == "main"

    def test_existing_branch_is_checked_out_and_pulled(self, repo, fake_tool):
        fake_tool.branches.add("drafts/hello-world")

        _make_orchestrator(repo, fake_tool).sync(_make_document())

        cmds = fake_tool.commands()
        assert "git checkout drafts/hello-world" in cmds
        assert "git pull origin drafts/hello-world" in cmds
        assert not fake_tool.ran("git", "fetch")

    def test_pull_failure_is_tolerated(self, repo, fake_tool):
        fake_tool.branches.add("drafts/hello-world")
        fake_tool.fail("git", "pull", stderr="no tracking information")

        assert _make_orchestrator(repo, fake_tool).sync(_make_document()).success

    def test_new_branch_from_base_when_remote_missing(self, repo, fake_tool):
        fake_tool.fail("git", "fetch", stderr="couldn't find remote ref")

        _make_orchestrator(repo, fake_tool).sync(_make_document())

        assert "git checkout -b drafts/hello-world main" in fake_tool.commands()

    def test_new_branch_from_head_as_last_resort(self, repo, fake_tool):
        fake_tool.fail("git", "checkout", "-b", "drafts/hello-world", "origin/drafts/hello-world")

        _make_orchestrator(repo, fake_tool).sync(_make_document())

        assert "git checkout -b drafts/hello-world" in fake_tool.commands()

    def test_dirty_tree_restored_on_success(self, repo, dirty_tool):
        _make_orchestrator(repo, dirty_tool).sync(_make_document())

        assert dirty_tool.branch == "feature/notes"
        assert dirty_tool.stash == []
        assert dirty_tool.status_output == " M notes.txt\n?? scratch.md\n"
        assert dirty_tool.commands()[-2:] == ["git checkout feature/notes", "git stash pop"]

    def test_dirty_tree_restored_on_failure(self, repo, dirty_tool):
        dirty_tool.fail("git", "push", stderr="rejected: non-fast-forward")

        with pytest.raises(ExternalToolError, match="git push failed: rejected"):
            _make_orchestrator(repo, dirty_tool).sync(_make_document())

        assert dirty_tool.branch == "feature/notes"
        assert dirty_tool.stash == []

    def test_nothing_to_commit_still_pushes(self, repo, fake_tool):
        fake_tool.fail("git", "commit", stdout="nothing to commit, working tree clean", stderr="")

        result = _make_orchestrator(repo, fake_tool).sync(_make_document())

        assert result.success
        assert fake_tool.ran("git", "push")

    def test_commit_failure_raises(self, repo, fake_tool):
        fake_tool.fail("git", "commit", stderr="Author identity unknown")

        with pytest.raises(ExternalToolError, match="git commit failed"):
            _make_orchestrator(repo, fake_tool).sync(_make_document())

        assert not fake_tool.ran("git", "push")

    def test_strict_restore_on_success(self, repo, dirty_tool):
        dirty_tool.fail("git", "stash", "pop", stderr="CONFLICT")

        with pytest.raises(RestoreError, match="CONFLICT"):
            _make_orchestrator(repo, dirty_tool).sync(_make_document())

    def test_missing_repo(self, tmp_path, fake_tool):
        with pytest.raises(PathNotFoundError, match="does not exist"):
            _make_orchestrator(tmp_path / "nope", fake_tool).sync(_make_document())

        assert fake_tool.calls == []

    def test_embedded_cover_stored(self, repo, fake_tool, png_data_url):
        _make_orchestrator(repo, fake_tool).sync(_make_document(cover=png_data_url))

        text = (repo / "drafts" / "hello-world.md").read_text()
        assert 'cover: "/drafts/images/cover_hello-world.webp"' in text
        assert (repo / "drafts" / "images" / "cover_hello-world.webp").is_file()

    def test_broken_embedded_cover_dropped(self, repo, fake_tool):
        _make_orchestrator(repo, fake_tool).sync(
            _make_document(cover="data:image/png;base64,%%%")
        )

        assert 'cover: ""' in (repo / "drafts" / "hello-world.md").read_text()

    def test_unreachable_remote_cover_kept(self, repo, fake_tool, fetcher_factory):
        url = "https://cdn.test/cover.jpg"
        fetcher = fetcher_factory({url: ImageFetchError("timed out")})

        _make_orchestrator(repo, fake_tool, fetcher).sync(_make_document(cover=url))

        assert f'cover: "{url}"' in (repo / "drafts" / "hello-world.md").read_text()

    def test_trace_records_failed_step(self, repo, fake_tool):
        fake_tool.fail("git", "add")
        orchestrator = _make_orchestrator(repo, fake_tool)

        with pytest.raises(ExternalToolError):
            orchestrator.sync(_make_document())

        assert [s.name for s in orchestrator.trace] == [
            "checkout drafts branch",
            "prepare directories",
            "ingest images",
            "write draft",
            "git add",
        ]
        assert not orchestrator.trace[-1].ok
        assert all(s.ok for s in orchestrator.trace[:-1])

    def test_shared_branching(self, repo, fake_tool):
        result = _shared(repo, fake_tool).sync(_make_document())

        assert result.branch == "drafts"
        assert "git push -u origin drafts" in fake_tool.commands()

    def test_module_function(self, repo, fake_tool):
        result = sync_draft(_make_document(), str(repo), tool=fake_tool)
        assert result.branch == "drafts/hello-world"


# ── Publish ──────────────────────────────────────────────────────


class TestPublish:
    def test_creates_and_merges_pr(self, repo, fake_tool, png_bytes, fetcher_factory):
        fetcher = fetcher_factory({"https://cdn.test/a.png": FetchedImage(png_bytes, "image/png")})
        doc = _make_document("![a](https://cdn.test/a.png)\n", draft_id="d-1")

        result = _make_orchestrator(repo, fake_tool, fetcher).publish(doc, "Publish: Hello World")

        assert result.success
        assert result.merged
        assert result.pr_number == "7"
        assert result.message == "PR created and merged successfully."
        article = repo / "content" / "articles" / "hello-world.md"
        assert result.file_path == str(article)

        text = article.read_text()
        assert "draft_id" not in text
        assert text.endswith("---\n\n![a](/images/img_hello-world_1.webp)\n")
        assert _is_webp(repo / "content" / "images" / "img_hello-world_1.webp")
        assert (repo / "public" / "images" / "img_hello-world_1.webp").is_file()

        cmds = fake_tool.commands()
        assert cmds[:5] == [
            "git status --porcelain",
            "git rev-parse --abbrev-ref HEAD",
            "git fetch origin main",
            "git show-ref --verify --quiet refs/heads/drafts/hello-world",
            "git checkout -b drafts/hello-world origin/main",
        ]
        assert "git add content/ public/images/" in cmds
        assert "git commit -m Publish: Hello World" in cmds
        assert (
            "gh pr create --title Publish: Hello World --body Published via inkpress "
            "--head drafts/hello-world --base main"
        ) in cmds
        assert "gh pr merge 7 --merge --delete-branch" in cmds
        assert fake_tool.branch == "main"

    def test_reuses_open_pr(self, repo, fake_tool):
        fake_tool.pr_number = "42"

        result = _make_orchestrator(repo, fake_tool).publish(_make_document(), "msg")

        assert result.pr_number == "42"
        assert not fake_tool.ran("gh", "pr", "create")

    def test_merge_failure_is_still_success(self, repo, fake_tool):
        fake_tool.fail("gh", "pr", "merge", stderr="Pull request is not mergeable: review required")

        result = _make_orchestrator(repo, fake_tool).publish(_make_document(), "msg")

        assert result.success
        assert not result.merged
        assert result.pr_number == "7"
        assert "PR #7" in result.message
        assert "merge it manually" in result.message
        assert "review required" in result.message

    def test_pr_create_failure_raises(self, repo, dirty_tool):
        dirty_tool.fail("gh", "pr", "create", stderr="gh auth login required")

        with pytest.raises(ExternalToolError, match="gh pr create failed: gh auth login required"):
            _make_orchestrator(repo, dirty_tool).publish(_make_document(), "msg")

        assert dirty_tool.branch == "feature/notes"
        assert dirty_tool.stash == []

    def test_unresolvable_pr_number(self, repo, fake_tool):
        fake_tool.respond("gh", "pr", "list", stdout="")

        with pytest.raises(ExternalToolError, match="Failed to resolve PR number"):
            _make_orchestrator(repo, fake_tool).publish(_make_document(), "msg")

    def test_fetch_failure_falls_back_to_local_base(self, repo, fake_tool):
        fake_tool.fail("git", "fetch")
        fake_tool.fail("git", "checkout", "-b", "drafts/hello-world", "origin/main")

        _make_orchestrator(repo, fake_tool).publish(_make_document(), "msg")

        assert "git checkout -b drafts/hello-world main" in fake_tool.commands()

    def test_existing_branch_checked_out(self, repo, fake_tool):
        fake_tool.branches.add("drafts/hello-world")

        _make_orchestrator(repo, fake_tool).publish(_make_document(), "msg")

        assert "git checkout drafts/hello-world" in fake_tool.commands()
        assert not fake_tool.ran("git", "checkout", "-b")

    def test_draft_cover_promoted(self, repo, fake_tool):
        drafted = repo / "drafts" / "images" / "cover_hello-world.webp"
        drafted.parent.mkdir(parents=True)
        drafted.write_bytes(b"cover-bytes")
        doc = _make_document(cover="/drafts/images/cover_hello-world.webp", cover_position=20)

        _make_orchestrator(repo, fake_tool).publish(doc, "msg")

        text = (repo / "content" / "articles" / "hello-world.md").read_text()
        assert 'cover: "/images/cover_hello-world.webp"' in text
        assert "cover_position: 20\n" in text
        assert (repo / "content" / "images" / "cover_hello-world.webp").read_bytes() == b"cover-bytes"
        assert (repo / "public" / "images" / "cover_hello-world.webp").is_file()

    def test_missing_draft_cover_kept(self, repo, fake_tool):
        doc = _make_document(cover="/drafts/images/cover_hello-world.webp")

        _make_orchestrator(repo, fake_tool).publish(doc, "msg")

        text = (repo / "content" / "articles" / "hello-world.md").read_text()
        assert 'cover: "/drafts/images/cover_hello-world.webp"' in text

    def test_restore_failure_becomes_warning(self, repo, dirty_tool):
        dirty_tool.fail("git", "stash", "pop", stderr="CONFLICT")

        result = _make_orchestrator(repo, dirty_tool).publish(_make_document(), "msg")

        assert result.success
        assert "Warning: git stash pop failed: CONFLICT" in result.message

    def test_shared_branching_commits_to_base(self, repo, fake_tool):
        fake_tool.branch = "notes"
        fake_tool.branches.add("notes")

        result = _shared(repo, fake_tool).publish(_make_document(), "msg")

        assert result.branch == "main"
        assert result.merged
        assert result.message == "Published 'Hello World' to main."
        cmds = fake_tool.commands()
        assert "git checkout main" in cmds
        assert "git pull origin main" in cmds
        assert "git push -u origin main" in cmds
        assert not any(c.startswith("gh ") for c in cmds)
        assert fake_tool.branch == "notes"

    def test_missing_repo(self, tmp_path, fake_tool):
        with pytest.raises(PathNotFoundError):
            _make_orchestrator(tmp_path / "gone", fake_tool).publish(_make_document(), "msg")


# ── Per-image failures never abort a run ─────────────────────────


class TestImageFailuresAreContained:
    def test_sync_keeps_titled_url_markup(self, repo, fake_tool, png_bytes):
        def fetcher(url, timeout):
            if " " in url:
                raise http.client.InvalidURL(f"URL can't contain control characters. {url!r}")
            return FetchedImage(png_bytes, "image/png")

        body = '![a](https://cdn.test/a.png "Title") and after\n![b](https://cdn.test/b.png)\n'

        result = _make_orchestrator(repo, fake_tool, fetcher).sync(_make_document(body))

        assert result.success
        text = (repo / "drafts" / "hello-world.md").read_text()
        assert text.endswith(
            '---\n\n![a](https://cdn.test/a.png "Title") and after\n'
            "![b](/drafts/images/img_hello-world_2.webp)\n"
        )
        assert fake_tool.ran("git", "push")

    def test_sync_with_default_fetcher_and_truncated_body(self, repo, fake_tool):
        body = "![a](https://cdn.test/a.png)\n"

        with patch(
            "inkpress.images.fetch.urllib.request.urlopen",
            side_effect=http.client.IncompleteRead(b"", 100),
        ):
            result = PublishOrchestrator(repo, tool=fake_tool).sync(_make_document(body))

        assert result.success
        assert (repo / "drafts" / "hello-world.md").read_text().endswith("---\n\n" + body)

    def test_sync_remote_cover_transport_error_keeps_url(self, repo, fake_tool):
        def fetcher(url, timeout):
            raise http.client.IncompleteRead(b"", 10)

        url = "https://cdn.test/cover.png"
        _make_orchestrator(repo, fake_tool, fetcher).sync(_make_document(cover=url))

        assert f'cover: "{url}"' in (repo / "drafts" / "hello-world.md").read_text()

    def test_publish_oversize_image_stored_verbatim(
        self, repo, fake_tool, image_factory, data_url_factory, png_data_url
    ):
        panorama = image_factory((16400, 1))
        body = f"![wide]({data_url_factory(panorama)})\n![small]({png_data_url})\n"

        result = _make_orchestrator(repo, fake_tool).publish(_make_document(body), "msg")

        assert result.success
        text = (repo / "content" / "articles" / "hello-world.md").read_text()
        assert text.endswith(
            "---\n\n![wide](/images/img_hello-world_1.png)\n![small](/images/img_hello-world_2.webp)\n"
        )
        assert (repo / "content" / "images" / "img_hello-world_1.png").read_bytes() == panorama
        assert (repo / "public" / "images" / "img_hello-world_1.png").is_file()

    def test_publish_keeps_unfetchable_markup(self, repo, fake_tool, png_bytes):
        def fetcher(url, timeout):
            if url.endswith("gone.png"):
                raise ValueError("unexpected response")
            return FetchedImage(png_bytes, "image/png")

        body = '<img class="x" src="https://cdn.test/gone.png" alt="g">\n![o](https://cdn.test/ok.png)\n'

        result = _make_orchestrator(repo, fake_tool, fetcher).publish(_make_document(body), "msg")

        assert result.merged
        text = (repo / "content" / "articles" / "hello-world.md").read_text()
        assert '<img class="x" src="https://cdn.test/gone.png" alt="g">\n' in text
        assert "![o](/images/img_hello-world_2.webp)" in text


class TestRepeatedPublish:
    def test_same_filenames_on_second_run(self, repo, tool_factory, png_data_url, png_bytes):
        def fetcher(url, timeout):
            return FetchedImage(png_bytes, "image/png")

        doc = _make_document(
            f"![a]({png_data_url})\n![b](https://cdn.test/b.png)\n", cover=png_data_url
        )

        _make_orchestrator(repo, tool_factory(), fetcher).publish(doc, "first")
        first = sorted(p.name for p in (repo / "content" / "images").iterdir())
        first_text = (repo / "content" / "articles" / "hello-world.md").read_text()

        _make_orchestrator(repo, tool_factory(), fetcher).publish(doc, "second")
        second = sorted(p.name for p in (repo / "content" / "images").iterdir())

        assert first == second == [
            "cover_hello-world.webp",
            "img_hello-world_1.webp",
            "img_hello-world_2.webp",
        ]
        assert (repo / "content" / "articles" / "hello-world.md").read_text() == first_text
        assert sorted(p.name for p in (repo / "public" / "images").iterdir()) == first
