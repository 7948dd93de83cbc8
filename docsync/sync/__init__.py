"""Replication progress tracking for docsync.

Provides push and pull checkpoints per remote endpoint, selection of the
next batch of local changes to push, loop prevention for pulled revisions
and the replicator that runs both directions.
"""

from .batch import BatchSelector
from .checkpoint import PullCheckpointManager, PushCheckpointManager
from .replicator import Replicator, SyncResult, SyncStatus
from .revisions import PullRevisionMarker, RevisionOracle, endpoint_hash
from .transport import HttpTransport, Transport

__all__ = [
    "BatchSelector",
    "HttpTransport",
    "PullCheckpointManager",
    "PullRevisionMarker",
    "PushCheckpointManager",
    "Replicator",
    "RevisionOracle",
    "SyncResult",
    "SyncStatus",
    "Transport",
    "endpoint_hash",
]
