"""Endpoint identity and provenance of pulled revisions.

Documents written by the pull direction get a revision that encodes the
endpoint they came from. The push direction asks the oracle about every
candidate revision and skips those, so data is not sent back to the
remote it just arrived from.
"""

import hashlib
import json
from typing import Any, Protocol, runtime_checkable


def endpoint_hash(endpoint: str) -> str:
    """Stable identity of a remote endpoint, used to key its checkpoints."""
    return hashlib.sha256(endpoint.encode("utf-8")).hexdigest()


@runtime_checkable
class RevisionOracle(Protocol):
    """Tells pull-originated revisions apart from local mutations."""

    def was_revision_from_pull(self, endpoint_hash: str, revision: str) -> bool:
        """Whether ``revision`` was written by applying a pulled document."""
        ...


class PullRevisionMarker:
    """Revision oracle that reads provenance from the revision string.

    A pulled revision looks like ``<height>-<data8><endpoint8><namespace>``.
    """

    def __init__(self, namespace: str):
        if not namespace:
            raise ValueError("namespace must be a non-empty string")
        self.namespace = namespace

    def _suffix(self, endpoint_hash: str) -> str:
        return endpoint_hash[:8] + self.namespace

    def create_revision(
        self, endpoint_hash: str, document: dict[str, Any], height: int
    ) -> str:
        """Build the revision a pulled document is stored under.

        Args:
            endpoint_hash: Endpoint the document was pulled from.
            document: Document body; ``_rev`` is ignored.
            height: Revision height, one above the current local one.

        Returns:
            Revision string carrying the pull marker.
        """
        body = {k: v for k, v in document.items() if k != "_rev"}
        data_hash = hashlib.sha256(
            json.dumps(body, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()
        return f"{height}-{data_hash[:8]}{self._suffix(endpoint_hash)}"

    def was_revision_from_pull(self, endpoint_hash: str, revision: str) -> bool:
        _, sep, rev_hash = revision.partition("-")
        if not sep:
            return False
        return rev_hash.endswith(self._suffix(endpoint_hash))
