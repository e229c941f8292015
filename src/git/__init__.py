"""git/PR tool capability and the work-tree guard."""

from inkpress.git.guard import RestoreReport, SessionState, WorkTreeGuard
from inkpress.git.tool import CommandResult, RepoTool, SubprocessTool

__all__ = [
    "CommandResult",
    "RepoTool",
    "RestoreReport",
    "SessionState",
    "SubprocessTool",
    "WorkTreeGuard",
]
