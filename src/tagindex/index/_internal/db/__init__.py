"""Database layer for the snippet index."""

from tagindex.index._internal.db.database import Database
from tagindex.index._internal.db.store import SnippetStore, StoreTransaction

__all__ = [
    "Database",
    "SnippetStore",
    "StoreTransaction",
]
