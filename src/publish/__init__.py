"""Publish domain — documents, results, and branch naming.

The orchestrator lives in ``inkpress.publish.orchestrator``; it is not
re-exported here because it depends on ``inkpress.config``, which in turn
depends on these models.
"""

from inkpress.publish.models import (
    BranchingStrategy,
    Document,
    PublishResult,
    SyncResult,
)

__all__ = [
    "BranchingStrategy",
    "Document",
    "PublishResult",
    "SyncResult",
]
