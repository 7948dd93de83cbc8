"""Push and pull cycles against one remote endpoint.

The replicator is the caller the checkpoint managers expect: it holds one
lock per direction, so at most one push cycle and one pull cycle run for
its endpoint at a time.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import ConnectionFailure, DocSyncError, TransportError
from ..records import ChangeBatch
from ..store.base import revision_height
from .batch import DEFAULT_BATCH_SIZE, BatchSelector
from .checkpoint import PullCheckpointManager, PushCheckpointManager
from .revisions import PullRevisionMarker, RevisionOracle, endpoint_hash

if TYPE_CHECKING:
    from ..store import DocumentStore
    from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "docsync-replication"
DEFAULT_LAST_PULLED_REVISION_FIELD = "last_pulled_rev"
DEFAULT_DELETED_FIELD = "deleted"
MAX_BACKOFF_SECONDS = 3600


def _is_valid_revision(revision: Any) -> bool:
    """Whether a remote revision has the ``<height>-<hash>`` shape."""
    if not isinstance(revision, str):
        return False
    _, sep, rev_hash = revision.partition("-")
    if not sep or not rev_hash:
        return False
    try:
        return revision_height(revision) >= 1
    except ValueError:
        return False


class SyncStatus(Enum):
    """Status of a sync round."""

    SUCCESS = "success"
    FAILED = "failed"
    OFFLINE = "offline"  # Remote unavailable


@dataclass
class SyncResult:
    """Result of a sync round."""

    status: SyncStatus
    entries_pushed: int = 0
    entries_pulled: int = 0
    error: str | None = None
    timestamp: datetime | None = None


class Replicator:
    """Replicates a local store with one remote endpoint.

    Supports:
    - Pull: fetch remote documents after the pull checkpoint and store them
      under pull-marked revisions
    - Push: send local changes after the push checkpoint
    - Full round: pull, then push
    """

    def __init__(
        self,
        store: "DocumentStore",
        transport: "Transport",
        endpoint: str,
        namespace: str = DEFAULT_NAMESPACE,
        last_pulled_revision_field: str = DEFAULT_LAST_PULLED_REVISION_FIELD,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sync_revisions: bool = False,
        deleted_field: str = DEFAULT_DELETED_FIELD,
        push: bool = True,
        pull: bool = True,
        oracle: RevisionOracle | None = None,
    ):
        """Initialize the replicator.

        Args:
            store: Local document store.
            transport: Transport to the remote endpoint.
            endpoint: Remote endpoint identity, usually its URL.
            namespace: Prefix of checkpoint keys and pull revision marker.
            last_pulled_revision_field: Document field recording the
                revision a document was stored under when pulled.
            batch_size: Documents per push or pull batch.
            sync_revisions: Exchange revisions with the remote instead of
                marking pulled documents locally.
            deleted_field: Remote field flagging deleted documents.
            push: Enable the push direction.
            pull: Enable the pull direction.
            oracle: Loop-prevention oracle. Defaults to the pull revision
                marker of ``namespace``.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.store = store
        self.transport = transport
        self.endpoint = endpoint
        self.endpoint_hash = endpoint_hash(endpoint)
        self.last_pulled_revision_field = last_pulled_revision_field
        self.batch_size = batch_size
        self.sync_revisions = sync_revisions
        self.deleted_field = deleted_field
        self.push_enabled = push
        self.pull_enabled = pull

        self.marker = PullRevisionMarker(namespace)
        self.push_checkpoints = PushCheckpointManager(store, namespace)
        self.pull_checkpoints = PullCheckpointManager(store, namespace)
        self.selector = BatchSelector(
            store, self.push_checkpoints, oracle or self.marker
        )

        self._push_lock = asyncio.Lock()
        self._pull_lock = asyncio.Lock()
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    # ==================== Push ====================

    async def run_push(self) -> int:
        """Push local changes until nothing pushable is left.

        The checkpoint only moves after the transport accepted a batch.

        Returns:
            Number of documents pushed.
        """
        async with self._push_lock:
            pushed = 0
            while True:
                batch = await self.selector.get_changes_since_last_push_sequence(
                    self.endpoint_hash,
                    self.last_pulled_revision_field,
                    batch_size=self.batch_size,
                    sync_revisions=self.sync_revisions,
                )

                if batch.is_empty:
                    # Skip past filtered changes so they are not rescanned
                    current = await self.push_checkpoints.get_last_push_sequence(
                        self.endpoint_hash
                    )
                    if batch.last_sequence > current:
                        await self.push_checkpoints.set_last_push_sequence(
                            self.endpoint_hash, batch.last_sequence
                        )
                    break

                await self.transport.push(self._outgoing_documents(batch))
                await self.push_checkpoints.set_last_push_sequence(
                    self.endpoint_hash, batch.last_sequence
                )
                pushed += len(batch.results)

        if pushed:
            logger.info(f"Pushed {pushed} documents to {self.endpoint}")
        return pushed

    def _outgoing_documents(self, batch: ChangeBatch) -> list[dict[str, Any]]:
        documents = []
        for change in batch.results:
            doc = dict(change.document)
            doc.pop(self.last_pulled_revision_field, None)
            doc.pop("_deleted", None)
            if not self.sync_revisions:
                doc.pop("_rev", None)
            doc[self.deleted_field] = change.deleted
            documents.append(doc)
        return documents

    # ==================== Pull ====================

    async def run_pull(self) -> int:
        """Pull remote documents until the remote has no more.

        Returns:
            Number of documents stored locally.
        """
        async with self._pull_lock:
            pulled = 0
            while True:
                last_document = await self.pull_checkpoints.get_last_pull_document(
                    self.endpoint_hash
                )
                documents = await self.transport.pull(last_document, self.batch_size)

                for document in documents:
                    await self._apply_pulled_document(document)

                if documents:
                    await self.pull_checkpoints.set_last_pull_document(
                        self.endpoint_hash, documents[-1]
                    )
                pulled += len(documents)

                if len(documents) < self.batch_size:
                    break

        if pulled:
            logger.info(f"Pulled {pulled} documents from {self.endpoint}")
        return pulled

    async def _apply_pulled_document(self, document: dict[str, Any]) -> str:
        if not isinstance(document, dict):
            raise TransportError(
                f"Pulled document must be an object, got {type(document).__name__}",
                reason="malformed",
            )
        doc = dict(document)
        deleted = bool(doc.pop(self.deleted_field, False))

        doc_id = doc.get(self.store.primary_path)
        if not isinstance(doc_id, str) or not doc_id:
            raise TransportError(
                f"Pulled document has no {self.store.primary_path!r}",
                reason="malformed",
            )

        remote_revision = doc.pop("_rev", None)
        if self.sync_revisions and remote_revision:
            if not _is_valid_revision(remote_revision):
                raise TransportError(
                    f"Pulled document {doc_id!r} has malformed revision "
                    f"{remote_revision!r}",
                    reason="malformed",
                )
            revision = remote_revision
        else:
            current = await self.store.get_revision(doc_id)
            revision = self.marker.create_revision(
                self.endpoint_hash, doc, revision_height(current) + 1
            )

        doc[self.last_pulled_revision_field] = revision
        if deleted:
            doc["_deleted"] = True

        return await self.store.put(doc, revision=revision)

    # ==================== Rounds ====================

    async def run(self) -> SyncResult:
        """Run one pull and push round.

        A failed round commits nothing beyond the batches that completed;
        the next round picks up from the persisted checkpoints.

        Returns:
            SyncResult of the round.
        """
        pulled = 0
        pushed = 0
        try:
            if self.pull_enabled:
                pulled = await self.run_pull()
            if self.push_enabled:
                pushed = await self.run_push()
        except ConnectionFailure as e:
            self._consecutive_failures += 1
            return SyncResult(
                status=SyncStatus.OFFLINE,
                entries_pushed=pushed,
                entries_pulled=pulled,
                error=str(e),
            )
        except DocSyncError as e:
            self._consecutive_failures += 1
            logger.error(f"Sync round with {self.endpoint} failed: {e}")
            return SyncResult(
                status=SyncStatus.FAILED,
                entries_pushed=pushed,
                entries_pulled=pulled,
                error=str(e),
            )

        self._consecutive_failures = 0
        self._last_sync = datetime.now()
        return SyncResult(
            status=SyncStatus.SUCCESS,
            entries_pushed=pushed,
            entries_pulled=pulled,
            timestamp=self._last_sync,
        )

    def next_wait(self, interval_seconds: float) -> float:
        """Seconds until the next round, doubled per consecutive failure."""
        if not self._consecutive_failures:
            return interval_seconds
        return min(
            interval_seconds * 2 ** self._consecutive_failures, MAX_BACKOFF_SECONDS
        )

    async def sync_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run rounds every ``interval_seconds`` until ``stop_event`` is set.

        Failed rounds stretch the wait, see next_wait.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Replicating with {self.endpoint} every {interval_seconds}s")

        while not stop_event.is_set():
            try:
                result = await self.run()
            except Exception:
                self._consecutive_failures += 1
                logger.exception(f"Round with {self.endpoint} crashed")
            else:
                logger.info(
                    f"Round {result.status.value}: pulled={result.entries_pulled} "
                    f"pushed={result.entries_pushed}"
                )

            wait = self.next_wait(interval_seconds)
            if self._consecutive_failures:
                logger.debug(
                    f"{self._consecutive_failures} failed round(s), "
                    f"next round in {wait}s"
                )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Stopped replicating with {self.endpoint}")

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful round."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status."""
        return {
            "endpoint": self.endpoint,
            "endpoint_hash": self.endpoint_hash,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "push_enabled": self.push_enabled,
            "pull_enabled": self.pull_enabled,
        }
