"""Read and write single local-only records of the document store."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..store import DocumentStore


async def find_local_document(
    store: "DocumentStore", key: str
) -> dict[str, Any] | None:
    """Get a local record, or None if it has never been written."""
    return await store.read_local_metadata(key)


async def write_single_local(
    store: "DocumentStore", record: dict[str, Any]
) -> dict[str, Any]:
    """Persist a local record previously returned by find_local_document.

    The record's ``_rev`` is sent as the expected revision, so a record
    created elsewhere in the meantime, or updated without its current
    revision, raises RevisionConflict instead of being overwritten.

    Args:
        store: Store holding the record.
        record: Record with ``_id``, optional ``_rev`` and body fields.

    Returns:
        The stored record with its new ``_rev``.
    """
    return await store.write_local_metadata(
        record["_id"], record, expected_revision=record.get("_rev")
    )
