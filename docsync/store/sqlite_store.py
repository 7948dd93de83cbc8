"""SQLite-backed local document store with a sequenced change feed."""

import hashlib
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import (
    DocumentNotFound,
    RevisionConflict,
    StoreReadFailure,
    StoreWriteFailure,
)
from ..records import ChangeBatch, ChangeRecord
from .base import ID_FIELD, DocumentStore, LatestDocument, revision_height

logger = logging.getLogger(__name__)

# Schema for documents, their revision history and local-only records
SCHEMA = """
-- Revision history: append-only, seq doubles as the change-feed position
CREATE TABLE IF NOT EXISTS revisions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_id TEXT NOT NULL,
    rev TEXT NOT NULL,
    data TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_revisions_doc ON revisions(doc_id, seq);

-- Current winner per document, at its latest feed position
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    rev TEXT NOT NULL,
    data TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_seq ON documents(seq);

-- Local-only records: never replicated, never in the change feed
CREATE TABLE IF NOT EXISTS local_docs (
    id TEXT PRIMARY KEY,
    rev TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

# Bookkeeping fields a stored document may carry that callers never see
INTERNAL_FIELDS = frozenset(
    {"_attachments", "_conflicts", "_revisions", "_revs_info", "_local_seq"}
)


def _body_hash(doc: dict[str, Any]) -> str:
    body = {k: v for k, v in doc.items() if k != "_rev"}
    return hashlib.md5(
        json.dumps(body, sort_keys=True).encode("utf-8")
    ).hexdigest()


class SQLiteDocumentStore(DocumentStore):
    """Document store on a single SQLite database.

    Every write appends to the revision history; the autoincrement key of
    that history is the change-feed sequence. The feed reports each
    document once, at the sequence of its latest write.
    """

    def __init__(self, db_path: str | Path, primary_path: str = ID_FIELD):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            primary_path: Logical primary key field of the documents.
        """
        self.db_path = Path(db_path).expanduser()
        self._primary_path = primary_path
        self._conn: sqlite3.Connection | None = None

    @property
    def primary_path(self) -> str:
        return self._primary_path

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteDocumentStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("SQLiteDocumentStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Document Operations ====================

    async def put(
        self, document: dict[str, Any], revision: str | None = None
    ) -> str:
        """Write a document.

        Args:
            document: Logical document including its primary key. A
                ``_rev`` field, if present, must be the current revision.
                ``_deleted: true`` writes a tombstone.
            revision: Store the write under this exact revision instead of
                generating one. The ``_rev`` check is skipped.

        Returns:
            The revision the document was stored under.
        """
        doc = self.to_stored_document(document)
        doc_id = doc.get(ID_FIELD)
        if not isinstance(doc_id, str) or not doc_id:
            raise ValueError(
                f"Document needs a non-empty {self.primary_path!r} field"
            )

        conn = self._ensure_connected()
        try:
            row = conn.execute(
                "SELECT rev FROM documents WHERE id = ?", (doc_id,)
            ).fetchone()
            current = row["rev"] if row else None

            if revision is None:
                given = doc.get("_rev")
                if given is not None and given != current:
                    raise RevisionConflict(doc_id, given, current)
                revision = f"{revision_height(current) + 1}-{_body_hash(doc)}"

            doc["_rev"] = revision
            deleted = bool(doc.get("_deleted"))
            if deleted:
                doc["_deleted"] = True
            else:
                doc.pop("_deleted", None)
            data = json.dumps(doc, sort_keys=True)

            cursor = conn.execute(
                """
                INSERT INTO revisions (doc_id, rev, data, deleted, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (doc_id, revision, data, int(deleted), datetime.now().isoformat()),
            )
            seq = cursor.lastrowid
            conn.execute(
                """
                INSERT INTO documents (id, rev, data, deleted, seq)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    rev = excluded.rev,
                    data = excluded.data,
                    deleted = excluded.deleted,
                    seq = excluded.seq
                """,
                (doc_id, revision, data, int(deleted), seq),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreWriteFailure(
                f"Failed to write document {doc_id!r}: {e}"
            ) from e

        logger.debug(f"Stored {doc_id} rev={revision} seq={seq}")
        return revision

    async def delete(self, doc_id: str) -> str:
        """Write a tombstone for a document.

        Returns:
            The revision of the tombstone.
        """
        if await self.get_revision(doc_id) is None:
            raise DocumentNotFound(f"Document {doc_id!r} does not exist")
        return await self.put({ID_FIELD: doc_id, "_deleted": True})

    async def get(self, doc_id: str) -> dict[str, Any] | None:
        """Get the current logical document, or None if missing or deleted."""
        row = self._fetch_document(doc_id)
        if row is None or row["deleted"]:
            return None
        return self.normalize_primary_key(self.decode_stored_document(row["data"]))

    async def get_revision(self, doc_id: str) -> str | None:
        """Get the current revision of a document, tombstones included."""
        row = self._fetch_document(doc_id)
        return row["rev"] if row else None

    def _fetch_document(self, doc_id: str) -> sqlite3.Row | None:
        conn = self._ensure_connected()
        try:
            return conn.execute(
                "SELECT id, rev, data, deleted, seq FROM documents WHERE id = ?",
                (doc_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadFailure(f"Failed to read document {doc_id!r}: {e}") from e

    # ==================== Change Feed ====================

    async def changes_since(self, sequence: int, limit: int) -> ChangeBatch:
        conn = self._ensure_connected()
        try:
            cursor = conn.execute(
                """
                SELECT id, rev, data, deleted, seq
                FROM documents
                WHERE seq > ?
                ORDER BY seq ASC
                LIMIT ?
                """,
                (sequence, limit),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreReadFailure(f"Failed to read changes since {sequence}: {e}") from e

        results = [
            ChangeRecord(
                id=row["id"],
                revision=row["rev"],
                document=json.loads(row["data"]),
                deleted=bool(row["deleted"]),
                sequence=row["seq"],
            )
            for row in rows
        ]
        last_sequence = results[-1].sequence if results else sequence
        return ChangeBatch(results=results, last_sequence=last_sequence)

    async def bulk_get_latest(
        self, refs: list[tuple[str, str]]
    ) -> list[LatestDocument]:
        conn = self._ensure_connected()

        latest = []
        for doc_id, revision in refs:
            try:
                row = conn.execute(
                    "SELECT rev, data, deleted FROM documents WHERE id = ?",
                    (doc_id,),
                ).fetchone()
                history = [
                    r["rev"]
                    for r in conn.execute(
                        "SELECT rev FROM revisions WHERE doc_id = ? ORDER BY seq DESC",
                        (doc_id,),
                    )
                ]
            except sqlite3.Error as e:
                raise StoreReadFailure(f"Failed to read document {doc_id!r}: {e}") from e

            if row is None or revision not in history:
                raise DocumentNotFound(f"Unknown revision {revision!r} of {doc_id!r}")

            latest.append(
                LatestDocument(
                    id=doc_id,
                    revision=row["rev"],
                    document=json.loads(row["data"]),
                    deleted=bool(row["deleted"]),
                    revisions=history,
                )
            )

        return latest

    # ==================== Local Metadata ====================

    async def read_local_metadata(self, key: str) -> dict[str, Any] | None:
        conn = self._ensure_connected()
        try:
            row = conn.execute(
                "SELECT rev, data FROM local_docs WHERE id = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadFailure(f"Failed to read local record {key!r}: {e}") from e

        if row is None:
            return None
        record = json.loads(row["data"])
        record["_id"] = key
        record["_rev"] = row["rev"]
        return record

    async def write_local_metadata(
        self,
        key: str,
        data: dict[str, Any],
        expected_revision: str | None = None,
    ) -> dict[str, Any]:
        conn = self._ensure_connected()
        body = {k: v for k, v in data.items() if k not in ("_id", "_rev")}

        try:
            row = conn.execute(
                "SELECT rev FROM local_docs WHERE id = ?", (key,)
            ).fetchone()
            current = row["rev"] if row else None
            if current != expected_revision:
                raise RevisionConflict(key, expected_revision, current)

            # Local records count their updates: 0-1, 0-2, ...
            count = int(current.partition("-")[2]) + 1 if current else 1
            new_revision = f"0-{count}"

            conn.execute(
                """
                INSERT INTO local_docs (id, rev, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    rev = excluded.rev,
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (key, new_revision, json.dumps(body), datetime.now().isoformat()),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreWriteFailure(f"Failed to write local record {key!r}: {e}") from e

        return {**body, "_id": key, "_rev": new_revision}

    # ==================== Encoding ====================

    def decode_stored_document(self, raw: Any) -> dict[str, Any]:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise StoreReadFailure(f"Stored document is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise StoreReadFailure(
                f"Stored document must be an object, got {type(raw).__name__}"
            )
        return {k: v for k, v in raw.items() if k not in INTERNAL_FIELDS}

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with document counts and the current update sequence.
        """
        conn = self._ensure_connected()

        stats = {"primary_path": self._primary_path}

        cursor = conn.execute("SELECT COUNT(*) FROM documents WHERE deleted = 0")
        stats["documents"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT COUNT(*) FROM documents WHERE deleted = 1")
        stats["deleted_documents"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT COUNT(*) FROM local_docs")
        stats["local_records"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT MAX(seq) FROM revisions")
        row = cursor.fetchone()
        stats["update_seq"] = row[0] if row[0] is not None else 0

        return stats
