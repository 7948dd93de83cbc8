"""Exception hierarchy for docsync."""


class DocSyncError(Exception):
    """Base class for all docsync failures."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class ConfigError(DocSyncError):
    """Raised when configuration values are invalid."""


class StoreError(DocSyncError):
    """Raised by the local document store."""


class StoreReadFailure(StoreError):
    """A read from the local store failed."""


class DocumentNotFound(StoreReadFailure):
    """A requested document or revision does not exist."""


class StoreWriteFailure(StoreError):
    """A write to the local store failed."""


class RevisionConflict(StoreWriteFailure):
    """A record was updated by another writer since it was read.

    Surfaced instead of merged, so two concurrent cycles for the same
    endpoint cannot silently overwrite each other's checkpoint.
    """

    def __init__(
        self, key: str, expected: str | None, actual: str | None
    ) -> None:
        super().__init__(
            f"Revision conflict on {key!r}: expected {expected!r}, "
            f"found {actual!r}",
            reason="conflict",
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class TransportError(DocSyncError):
    """Raised when the remote endpoint rejects or fails a request."""


class ConnectionFailure(TransportError):
    """The remote endpoint could not be reached."""
