"""CLI interface for inkpress."""

import logging
from datetime import date
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from inkpress.config import InkpressConfig, load_config, merge_cli_overrides
from inkpress.drafts import Draft, DraftStatus, DraftStore
from inkpress.errors import PublishError
from inkpress.publish.models import BranchingStrategy, Document
from inkpress.publish.orchestrator import PublishOrchestrator
from inkpress.publish.repo import get_repo_status, sync_public_images, validate_repo_path

app = typer.Typer(
    name="inkpress",
    help="Sync and publish drafts into a git-backed site repository.",
)
drafts_app = typer.Typer(help="Manage locally stored drafts.")
app.add_typer(drafts_app, name="drafts")

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to an .inkpress.toml file."),
]
RepoOption = Annotated[
    Optional[Path],
    typer.Option("--repo", "-r", help="Site repository path (overrides config)."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from inkpress import __version__

        console.print(f"inkpress {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log each git step and image."),
    ] = False,
) -> None:
    """inkpress - move drafts through draft → synced → published."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load(config_path: Path | None, **overrides: object) -> InkpressConfig:
    return merge_cli_overrides(load_config(config_path), **overrides)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {escape(message)}")
    return typer.Exit(1)


def _require_repo(config: InkpressConfig) -> Path:
    repo_path = config.repo_path
    if repo_path is None:
        raise _fail("No repository configured. Pass --repo or set [repo] path.")
    validation = validate_repo_path(repo_path)
    if not validation.is_valid:
        raise _fail(f"{repo_path}: {validation.error}")
    return repo_path


def _load_document(store: DraftStore, draft_id: str) -> tuple[Draft, Document]:
    draft = store.get(draft_id)
    if draft is None:
        raise _fail(f"No draft with id {draft_id}")
    try:
        return draft, draft.to_document()
    except ValidationError as exc:
        raise _fail(f"Draft {draft_id} cannot be published: {exc}") from exc


@app.command()
def sync(
    draft_id: Annotated[str, typer.Argument(help="Id of the stored draft.")],
    repo: RepoOption = None,
    config_path: ConfigOption = None,
    branching: Annotated[
        Optional[BranchingStrategy],
        typer.Option("--branching", help="Branch naming scheme."),
    ] = None,
) -> None:
    """Commit a draft to its drafts branch and push it."""
    config = _load(config_path, repo_path=repo, branching=branching)
    repo_path = _require_repo(config)
    store = DraftStore(config.store_dir)
    draft, document = _load_document(store, draft_id)

    with console.status(f"Syncing '{draft.title}'..."):
        try:
            result = PublishOrchestrator(repo_path, config=config).sync(document)
        except PublishError as exc:
            raise _fail(str(exc)) from exc

    store.update_status(draft.id, DraftStatus.SYNCED)
    console.print(f"[green]{escape(result.message)}[/green]")


@app.command()
def publish(
    draft_id: Annotated[str, typer.Argument(help="Id of the stored draft.")],
    message: Annotated[
        Optional[str],
        typer.Option("--message", "-m", help="Commit message. Defaults to 'Publish: <title>'."),
    ] = None,
    repo: RepoOption = None,
    config_path: ConfigOption = None,
    branching: Annotated[
        Optional[BranchingStrategy],
        typer.Option("--branching", help="Branch naming scheme."),
    ] = None,
) -> None:
    """Write the article, push it, and open and merge a pull request."""
    config = _load(config_path, repo_path=repo, branching=branching)
    repo_path = _require_repo(config)
    store = DraftStore(config.store_dir)
    draft, document = _load_document(store, draft_id)
    commit_message = message or f"{config.publish.pr_title_prefix}{document.title}"

    with console.status(f"Publishing '{draft.title}'..."):
        try:
            result = PublishOrchestrator(repo_path, config=config).publish(document, commit_message)
        except PublishError as exc:
            raise _fail(str(exc)) from exc

    store.update_status(draft.id, DraftStatus.PUBLISHED)
    colour = "green" if result.merged else "yellow"
    console.print(f"[{colour}]{escape(result.message)}[/{colour}]")
    if result.file_path:
        console.print(f"Article: {result.file_path}")


@app.command()
def status(repo: RepoOption = None, config_path: ConfigOption = None) -> None:
    """Show uncommitted changes in the site repository."""
    config = _load(config_path, repo_path=repo)
    repo_path = _require_repo(config)
    try:
        porcelain = get_repo_status(repo_path)
    except PublishError as exc:
        raise _fail(str(exc)) from exc
    if porcelain.strip():
        console.print(porcelain.rstrip(), markup=False, highlight=False)
    else:
        console.print("[green]Working tree clean[/green]")


@app.command("sync-images")
def sync_images(repo: RepoOption = None, config_path: ConfigOption = None) -> None:
    """Copy content/images into public/images."""
    config = _load(config_path, repo_path=repo)
    repo_path = _require_repo(config)
    try:
        console.print(sync_public_images(repo_path))
    except PublishError as exc:
        raise _fail(str(exc)) from exc


@app.command()
def validate(
    path: Annotated[Optional[Path], typer.Argument(help="Repository path to check.")] = None,
    config_path: ConfigOption = None,
) -> None:
    """Check that a path is a usable site repository."""
    target = path or _load(config_path).repo_path
    if target is None:
        raise _fail("No repository path given or configured.")
    result = validate_repo_path(target)
    if not result.is_valid:
        raise _fail(f"{target}: {result.error}")
    console.print(f"[green]{target} is a git repository[/green]")
    if not result.has_content_dir:
        console.print("[yellow]No content/ directory yet; publish will create it.[/yellow]")


# ── drafts ───────────────────────────────────────────────────────


@drafts_app.command("list")
def drafts_list(
    status_filter: Annotated[
        Optional[DraftStatus],
        typer.Option("--status", "-s", help="Only show drafts with this status."),
    ] = None,
    config_path: ConfigOption = None,
) -> None:
    """List stored drafts, most recently updated first."""
    store = DraftStore(_load(config_path).store_dir)
    summaries = store.list(status=status_filter)
    if not summaries:
        console.print("[yellow]No drafts found.[/yellow]")
        return

    table = Table("ID", "Title", "Status", "Updated")
    for summary in summaries:
        table.add_row(summary.id, summary.title, summary.status.value, summary.updated_at)
    console.print(table)


@drafts_app.command("show")
def drafts_show(
    draft_id: Annotated[str, typer.Argument(help="Id of the stored draft.")],
    config_path: ConfigOption = None,
) -> None:
    """Print a stored draft as JSON."""
    draft = DraftStore(_load(config_path).store_dir).get(draft_id)
    if draft is None:
        raise _fail(f"No draft with id {draft_id}")
    console.print_json(draft.model_dump_json())


@drafts_app.command("delete")
def drafts_delete(
    draft_id: Annotated[str, typer.Argument(help="Id of the stored draft.")],
    config_path: ConfigOption = None,
) -> None:
    """Delete a stored draft."""
    if not DraftStore(_load(config_path).store_dir).delete(draft_id):
        raise _fail(f"No draft with id {draft_id}")
    console.print(f"Deleted {draft_id}")


@drafts_app.command("import")
def drafts_import(
    source: Annotated[
        Path,
        typer.Argument(help="Markdown file to import.", exists=True, dir_okay=False),
    ],
    title: Annotated[str, typer.Option("--title", "-t", help="Draft title.")],
    tags: Annotated[
        Optional[str], typer.Option("--tags", help="Comma-separated tags.")
    ] = None,
    description: Annotated[str, typer.Option("--description", "-d")] = "",
    cover: Annotated[str, typer.Option("--cover", help="Cover image URL, data URL or path.")] = "",
    slug: Annotated[str, typer.Option("--slug", help="Defaults to one derived from the title.")] = "",
    draft_date: Annotated[
        Optional[str], typer.Option("--date", help="YYYY-MM-DD. Defaults to today.")
    ] = None,
    config_path: ConfigOption = None,
) -> None:
    """Store a markdown file as a new draft and print its id."""
    draft = Draft(
        slug=slug,
        title=title,
        date=draft_date or date.today().isoformat(),
        tags=[t.strip() for t in (tags or "").split(",") if t.strip()],
        description=description,
        cover=cover,
        content=source.read_text(encoding="utf-8"),
    )
    stored = DraftStore(_load(config_path).store_dir).save(draft)
    console.print(stored.id)


if __name__ == "__main__":
    app()
