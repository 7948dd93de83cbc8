"""Selection of the next batch of local changes to push."""

import logging
from typing import TYPE_CHECKING

from ..records import ChangeBatch, ChangeRecord

if TYPE_CHECKING:
    from ..store import DocumentStore
    from .checkpoint import PushCheckpointManager
    from .revisions import RevisionOracle

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10

# Store-internal design documents are never replicated
INTERNAL_ID_PREFIX = "_design/"


class BatchSelector:
    """Reads the change feed after the push checkpoint and keeps what to push.

    A window can be filtered down to nothing, for example after a large
    pull. The selector then keeps scanning further windows until it finds a
    pushable change or reaches the end of the feed, so a run of filtered
    changes never stalls the push direction. The scan position reached
    this way is only held in memory; callers persist ``last_sequence`` of
    the returned batch once it has been transmitted.
    """

    def __init__(
        self,
        store: "DocumentStore",
        checkpoints: "PushCheckpointManager",
        oracle: "RevisionOracle",
    ):
        self.store = store
        self.checkpoints = checkpoints
        self.oracle = oracle

    def is_pushable(
        self,
        endpoint_hash: str,
        change: ChangeRecord,
        last_pulled_revision_field: str,
    ) -> bool:
        """Whether a change carries local data the remote has not seen."""
        # Written by the pull stream, do not send it back
        if self.oracle.was_revision_from_pull(endpoint_hash, change.revision):
            return False
        # Still exactly the state last received from the remote
        if change.document.get(last_pulled_revision_field) == change.revision:
            return False
        if change.id.startswith(INTERNAL_ID_PREFIX):
            return False
        return True

    async def get_changes_since_last_push_sequence(
        self,
        endpoint_hash: str,
        last_pulled_revision_field: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sync_revisions: bool = False,
    ) -> ChangeBatch:
        """Get the next batch of pushable changes.

        Args:
            endpoint_hash: Endpoint identity.
            last_pulled_revision_field: Document field holding the revision
                a document had when it was last pulled.
            batch_size: Size of each change-feed window.
            sync_revisions: Replace selected bodies with the latest winning
                revision from the store.

        Returns:
            ChangeBatch of decoded documents with the logical primary key,
            and the feed position the scan ended at.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        since = await self.checkpoints.get_last_push_sequence(endpoint_hash)

        rounds = 0
        while True:
            changes = await self.store.changes_since(since, batch_size)
            rounds += 1

            selected = [
                change
                for change in changes.results
                if self.is_pushable(endpoint_hash, change, last_pulled_revision_field)
            ]

            if selected and sync_revisions:
                selected = await self._refresh_revisions(selected)

            if selected or len(changes.results) < batch_size:
                break

            # Nothing pushable in a full window, the feed may continue
            logger.debug(
                f"Round {rounds}: {len(changes.results)} changes after {since} "
                f"all filtered, continuing from {changes.last_sequence}"
            )
            since = changes.last_sequence

        results = [self._post_process(change) for change in selected]

        logger.debug(
            f"Selected {len(results)} changes for {endpoint_hash[:8]} in "
            f"{rounds} round(s), last_sequence={changes.last_sequence}"
        )
        return ChangeBatch(results=results, last_sequence=changes.last_sequence)

    async def _refresh_revisions(
        self, changes: list[ChangeRecord]
    ) -> list[ChangeRecord]:
        """Swap feed snapshots for the latest winning revisions."""
        latest = await self.store.bulk_get_latest(
            [(change.id, change.revision) for change in changes]
        )
        return [
            ChangeRecord(
                id=winner.id,
                revision=winner.revision,
                document=winner.document,
                deleted=winner.deleted,
                sequence=change.sequence,
            )
            for change, winner in zip(changes, latest)
        ]

    def _post_process(self, change: ChangeRecord) -> ChangeRecord:
        document = self.store.decode_stored_document(change.document)
        document = self.store.normalize_primary_key(document)
        return ChangeRecord(
            id=change.id,
            revision=change.revision,
            document=document,
            deleted=change.deleted,
            sequence=change.sequence,
        )
