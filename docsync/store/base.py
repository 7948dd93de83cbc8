"""Abstract interface of the local document store."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..records import ChangeBatch

# Store-internal identifier field
ID_FIELD = "_id"


@dataclass
class LatestDocument:
    """Winning revision of a document, as returned by a bulk get."""

    id: str
    revision: str
    document: dict[str, Any]
    deleted: bool = False
    revisions: list[str] = field(default_factory=list)  # Newest first


class DocumentStore(ABC):
    """Capabilities the sync layer needs from a local document store.

    Documents are kept in store-native form: the primary key lives in
    ``_id``, the current revision in ``_rev`` and tombstones carry
    ``_deleted``. Local metadata records are keyed by arbitrary strings and
    never appear in the change feed.
    """

    @property
    @abstractmethod
    def primary_path(self) -> str:
        """Logical primary key field of the stored documents."""
        pass

    @abstractmethod
    async def changes_since(self, sequence: int, limit: int) -> ChangeBatch:
        """Get up to ``limit`` changes strictly after ``sequence``.

        Args:
            sequence: Feed position to start after.
            limit: Maximum number of changes to return.

        Returns:
            ChangeBatch in feed order with store-native document bodies.
            ``last_sequence`` is the position of the last returned change,
            or ``sequence`` when nothing changed.
        """
        pass

    @abstractmethod
    async def bulk_get_latest(
        self, refs: list[tuple[str, str]]
    ) -> list[LatestDocument]:
        """Fetch the latest winning revision for each ``(id, revision)``.

        Args:
            refs: Document ids paired with a revision known to the caller.

        Returns:
            One LatestDocument per ref, in the same order.
        """
        pass

    @abstractmethod
    async def read_local_metadata(self, key: str) -> dict[str, Any] | None:
        """Read a local-only record, or None if it does not exist."""
        pass

    @abstractmethod
    async def write_local_metadata(
        self,
        key: str,
        data: dict[str, Any],
        expected_revision: str | None = None,
    ) -> dict[str, Any]:
        """Create or update a local-only record.

        Args:
            key: Record key.
            data: Record body.
            expected_revision: Current revision of the record, or None when
                creating it.

        Returns:
            The stored record including ``_id`` and its new ``_rev``.

        Raises:
            RevisionConflict: ``expected_revision`` does not match.
        """
        pass

    @abstractmethod
    async def put(
        self, document: dict[str, Any], revision: str | None = None
    ) -> str:
        """Write a logical document, returning its new revision."""
        pass

    @abstractmethod
    async def get_revision(self, doc_id: str) -> str | None:
        """Current revision of a document, or None if it was never written."""
        pass

    @abstractmethod
    def decode_stored_document(self, raw: Any) -> dict[str, Any]:
        """Convert a stored document into its logical shape."""
        pass

    def normalize_primary_key(self, document: dict[str, Any]) -> dict[str, Any]:
        """Expose the store identifier under the logical primary key.

        Args:
            document: Document in store-native form.

        Returns:
            A copy with ``_id`` renamed to ``primary_path``.
        """
        doc = dict(document)
        primary = self.primary_path
        if primary == ID_FIELD:
            return doc
        if ID_FIELD in doc:
            stored_id = doc.pop(ID_FIELD)
            doc.setdefault(primary, stored_id)
        return doc

    def to_stored_document(self, document: dict[str, Any]) -> dict[str, Any]:
        """Inverse of normalize_primary_key: move the primary key to ``_id``."""
        doc = dict(document)
        primary = self.primary_path
        if primary != ID_FIELD and primary in doc:
            doc[ID_FIELD] = doc.pop(primary)
        return doc


def revision_height(revision: str | None) -> int:
    """Return the numeric height prefix of a ``"<height>-<hash>"`` revision."""
    if not revision:
        return 0
    height, _, _ = revision.partition("-")
    try:
        return int(height)
    except ValueError:
        raise ValueError(f"Malformed revision: {revision!r}") from None
