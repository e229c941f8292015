"""Frontmatter rendering for synced drafts and published articles."""

from __future__ import annotations

from inkpress.publish.models import Document


def quote(value: str) -> str:
    """Double-quote a value, escaping embedded double quotes."""
    return '"' + value.replace('"', '\\"') + '"'


def format_number(value: float) -> str:
    """Shortest round-trip form, without a trailing ``.0``.

    >>> format_number(50.0), format_number(33.333333)
    ('50', '33.333333')
    """
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def render_tags(tags: list[str]) -> str:
    return "[" + ", ".join(quote(tag) for tag in tags) + "]"


def render_frontmatter(
    document: Document,
    *,
    cover: str,
    draft_id: str | None = None,
) -> str:
    """Build the ``---`` delimited block that precedes the content.

    Args:
        document: The document being written.
        cover: Resolved cover path (may differ from ``document.cover``).
        draft_id: Written as ``draft_id`` when given (sync only).
    """
    lines: list[str] = ["---"]
    lines.append(f"title: {quote(document.title)}")
    lines.append(f"date: {quote(document.date)}")
    lines.append(f"tags: {render_tags(document.tags)}")
    lines.append(f"description: {quote(document.description)}")
    lines.append(f"cover: {quote(cover)}")
    lines.append(f"cover_position: {format_number(document.effective_cover_position)}")
    lines.append(f"last_updated: {quote(document.last_updated)}")
    if draft_id is not None:
        lines.append(f"draft_id: {quote(draft_id)}")
    lines.append("---")
    lines.append("")
    lines.append("")
    return "\n".join(lines)


def render_document(document: Document, content: str, *, cover: str, draft_id: str | None = None) -> str:
    """Frontmatter followed by the (already rewritten) content."""
    return render_frontmatter(document, cover=cover, draft_id=draft_id) + content
