"""Push and pull checkpoints of a replication endpoint.

When replication starts it has to find out where it ended last time.

Push progress is a position in the local change feed: everything up to
that sequence has been offered to the remote. Pull progress is the last
document received from the remote, which the remote query uses to ask for
newer documents.

Both are single local-only records keyed by the endpoint hash. Neither
manager locks: callers must run at most one cycle per endpoint and
direction at a time. A violation shows up as RevisionConflict on write.
"""

import logging
from typing import TYPE_CHECKING, Any

from ..records import PullCheckpoint, PushCheckpoint
from .local_meta import find_local_document, write_single_local

if TYPE_CHECKING:
    from ..store import DocumentStore

logger = logging.getLogger(__name__)


class _CheckpointManager:
    kind: str = ""

    def __init__(self, store: "DocumentStore", namespace: str):
        """Initialize the manager.

        Args:
            store: Store holding the checkpoint records.
            namespace: Prefix of the record keys.
        """
        if not isinstance(namespace, str) or not namespace:
            raise ValueError("namespace must be a non-empty string")
        self.store = store
        self.namespace = namespace

    def key(self, endpoint_hash: str) -> str:
        """Local record key of this checkpoint for an endpoint."""
        return f"{self.namespace}-{self.kind}-checkpoint-{endpoint_hash}"

    async def _read(self, endpoint_hash: str) -> dict[str, Any] | None:
        return await find_local_document(self.store, self.key(endpoint_hash))

    async def _write(
        self, endpoint_hash: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        _id = self.key(endpoint_hash)
        record = await find_local_document(self.store, _id)
        if record is None:
            record = {"_id": _id, **fields}
        else:
            self._check_update(endpoint_hash, record, fields)
            record.update(fields)
        return await write_single_local(self.store, record)

    def _check_update(
        self, endpoint_hash: str, record: dict[str, Any], fields: dict[str, Any]
    ) -> None:
        """Inspect an update of an existing record before it is written."""


class PushCheckpointManager(_CheckpointManager):
    """Local change-feed cursor of the push direction."""

    kind = "push"

    async def get_last_push_sequence(self, endpoint_hash: str) -> int:
        """Get the last pushed sequence, 0 if never pushed."""
        checkpoint = await self.get_checkpoint(endpoint_hash)
        return checkpoint.sequence if checkpoint else 0

    async def get_checkpoint(self, endpoint_hash: str) -> PushCheckpoint | None:
        record = await self._read(endpoint_hash)
        if record is None:
            return None
        return PushCheckpoint.from_record(endpoint_hash, record)

    async def set_last_push_sequence(
        self, endpoint_hash: str, sequence: int
    ) -> PushCheckpoint:
        """Persist the push cursor.

        Creates the record on first use, otherwise updates it under its
        current revision. Store failures propagate unchanged.

        Args:
            endpoint_hash: Endpoint identity.
            sequence: Feed position that has been pushed.

        Returns:
            The persisted checkpoint with its new revision.
        """
        checkpoint = PushCheckpoint(endpoint_hash=endpoint_hash, sequence=sequence)
        stored = await self._write(endpoint_hash, checkpoint.to_record())
        logger.debug(f"Push checkpoint for {endpoint_hash[:8]} set to {sequence}")
        return PushCheckpoint.from_record(endpoint_hash, stored)

    def _check_update(
        self, endpoint_hash: str, record: dict[str, Any], fields: dict[str, Any]
    ) -> None:
        # Allowed for explicit resets, but worth noticing
        if record["value"] > fields["value"]:
            logger.warning(
                f"Push checkpoint for {endpoint_hash[:8]} moves backwards "
                f"from {record['value']} to {fields['value']}"
            )


class PullCheckpointManager(_CheckpointManager):
    """Last remote document accepted by the pull direction."""

    kind = "pull"

    async def get_last_pull_document(
        self, endpoint_hash: str
    ) -> dict[str, Any] | None:
        """Get the last pulled document, None if nothing was pulled yet."""
        checkpoint = await self.get_checkpoint(endpoint_hash)
        return checkpoint.last_document if checkpoint else None

    async def get_checkpoint(self, endpoint_hash: str) -> PullCheckpoint | None:
        record = await self._read(endpoint_hash)
        if record is None:
            return None
        return PullCheckpoint.from_record(endpoint_hash, record)

    async def set_last_pull_document(
        self, endpoint_hash: str, document: dict[str, Any] | None
    ) -> PullCheckpoint:
        """Persist the last pulled document.

        Args:
            endpoint_hash: Endpoint identity.
            document: Snapshot of the document, or None to start over.

        Returns:
            The persisted checkpoint with its new revision.
        """
        checkpoint = PullCheckpoint(endpoint_hash=endpoint_hash, last_document=document)
        stored = await self._write(endpoint_hash, checkpoint.to_record())
        return PullCheckpoint.from_record(endpoint_hash, stored)
