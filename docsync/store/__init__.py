"""Local document store for docsync.

Provides the change feed, revision history and local-only metadata records
the sync layer reads its progress from.
"""

from .base import DocumentStore, LatestDocument, revision_height
from .sqlite_store import SQLiteDocumentStore

__all__ = [
    "DocumentStore",
    "LatestDocument",
    "SQLiteDocumentStore",
    "revision_height",
]
