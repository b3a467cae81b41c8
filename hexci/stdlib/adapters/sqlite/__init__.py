"""SQLite storage adapter (aiosqlite)."""

from hexci.stdlib.adapters.sqlite.collection_sqlite import SQLiteCollectionStorage

__all__ = ["SQLiteCollectionStorage"]
