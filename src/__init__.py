"""inkpress - publish drafts into a git-backed site repository."""

__version__ = "0.3.0"
