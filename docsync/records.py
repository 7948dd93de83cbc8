"""Checkpoint and change records exchanged between the store and sync layers."""

from dataclasses import dataclass, field
from typing import Any


def _require_text(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string, got {value!r}")


@dataclass
class PushCheckpoint:
    """Local change-feed position already offered to a remote endpoint."""

    endpoint_hash: str
    sequence: int = 0  # 0 means never synced
    revision: str | None = None  # Storage revision of the persisted record

    def __post_init__(self) -> None:
        _require_text(self.endpoint_hash, "endpoint_hash")
        if (
            isinstance(self.sequence, bool)
            or not isinstance(self.sequence, int)
            or self.sequence < 0
        ):
            raise ValueError(
                f"sequence must be an integer >= 0, got {self.sequence!r}"
            )

    def to_record(self) -> dict[str, Any]:
        """Body of the local metadata record."""
        return {"value": self.sequence}

    @classmethod
    def from_record(
        cls, endpoint_hash: str, record: dict[str, Any]
    ) -> "PushCheckpoint":
        """Create from a stored local metadata record."""
        return cls(
            endpoint_hash=endpoint_hash,
            sequence=record["value"],
            revision=record.get("_rev"),
        )


@dataclass
class PullCheckpoint:
    """Last remote document accepted locally for an endpoint."""

    endpoint_hash: str
    last_document: dict[str, Any] | None = None
    revision: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.endpoint_hash, "endpoint_hash")
        if self.last_document is not None and not isinstance(
            self.last_document, dict
        ):
            raise ValueError(
                "last_document must be a dict or None, "
                f"got {type(self.last_document).__name__}"
            )

    def to_record(self) -> dict[str, Any]:
        """Body of the local metadata record."""
        return {"doc": self.last_document}

    @classmethod
    def from_record(
        cls, endpoint_hash: str, record: dict[str, Any]
    ) -> "PullCheckpoint":
        """Create from a stored local metadata record."""
        return cls(
            endpoint_hash=endpoint_hash,
            last_document=record.get("doc"),
            revision=record.get("_rev"),
        )


@dataclass
class ChangeRecord:
    """A single entry of the local change feed."""

    id: str
    revision: str
    document: dict[str, Any]
    deleted: bool = False
    sequence: int | None = None  # Feed position, when known

    def __post_init__(self) -> None:
        _require_text(self.id, "id")
        _require_text(self.revision, "revision")
        if not isinstance(self.document, dict):
            raise ValueError(
                f"document must be a dict, got {type(self.document).__name__}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "revision": self.revision,
            "document": self.document,
            "deleted": self.deleted,
            "sequence": self.sequence,
        }


@dataclass
class ChangeBatch:
    """Ordered window of changes plus the feed position it ends at."""

    results: list[ChangeRecord] = field(default_factory=list)
    last_sequence: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.results

    @property
    def documents(self) -> list[dict[str, Any]]:
        """Document bodies in feed order."""
        return [change.document for change in self.results]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [change.to_dict() for change in self.results],
            "last_sequence": self.last_sequence,
        }
