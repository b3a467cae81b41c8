"""SQLite implementation of SupportsCollectionStorage with async support.

Documents are stored as JSON text in a single ``documents`` table keyed by
``(collection, key)``. This is the restart-safe backend used by the CLI's
state file: a crashed run can be resumed from whatever was last written.

Usage::

    storage = SQLiteCollectionStorage(".hexci/state.db")
    await storage.asave("pipeline_runs", "run-1", {"status": "running"})
    await storage.aclose()
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Literal

import aiosqlite

from hexci.kernel.logging import get_logger

logger = get_logger(__name__)

SQLiteJournalMode = Literal["WAL", "DELETE", "TRUNCATE", "PERSIST", "MEMORY", "OFF"]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    key TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (collection, key)
)
"""


class SQLiteCollectionStorage:
    """Async SQLite ``SupportsCollectionStorage``.

    The connection is opened lazily on first use. Every write is committed
    immediately.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        timeout: float = 5.0,
        journal_mode: SQLiteJournalMode = "WAL",
    ) -> None:
        """Initialize the storage.

        Args
        ----
            db_path: Path to the SQLite file, or ":memory:" for an in-memory DB.
            timeout: Connection timeout in seconds. Default: 5.0.
            journal_mode: SQLite journal mode. Default: "WAL".
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else ":memory:"
        self.timeout = timeout
        self.journal_mode = journal_mode
        self.connection: aiosqlite.Connection | None = None
        self._connect_lock = asyncio.Lock()

    async def _aconnect(self) -> aiosqlite.Connection:
        async with self._connect_lock:
            if self.connection is not None:
                return self.connection

            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            connection = await aiosqlite.connect(str(self.db_path), timeout=self.timeout)
            if self.journal_mode and self.db_path != ":memory:":
                await connection.execute(f"PRAGMA journal_mode = {self.journal_mode}")
            await connection.execute(_SCHEMA)
            await connection.commit()
            logger.debug("Opened collection storage at {}", self.db_path)
            self.connection = connection
            return connection

    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Save a document to a collection (upsert semantics)."""
        connection = await self._aconnect()
        await connection.execute(
            "INSERT INTO documents (collection, key, data) VALUES (?, ?, ?) "
            "ON CONFLICT (collection, key) DO UPDATE SET data = excluded.data",
            (collection, key, json.dumps(data)),
        )
        await connection.commit()

    async def ainsert(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        """Insert a document only if *key* is absent."""
        connection = await self._aconnect()
        cursor = await connection.execute(
            "INSERT OR IGNORE INTO documents (collection, key, data) VALUES (?, ?, ?)",
            (collection, key, json.dumps(data)),
        )
        await connection.commit()
        return cursor.rowcount == 1

    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key.  Returns ``None`` if not found."""
        connection = await self._aconnect()
        async with connection.execute(
            "SELECT data FROM documents WHERE collection = ? AND key = ?", (collection, key)
        ) as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row is not None else None

    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Query documents with optional equality filters."""
        connection = await self._aconnect()
        async with connection.execute(
            "SELECT data FROM documents WHERE collection = ? ORDER BY rowid", (collection,)
        ) as cursor:
            rows = await cursor.fetchall()
        docs = [json.loads(row[0]) for row in rows]
        if filters:
            docs = [d for d in docs if all(d.get(k) == v for k, v in filters.items())]
        return docs

    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns ``True`` if it existed."""
        connection = await self._aconnect()
        cursor = await connection.execute(
            "DELETE FROM documents WHERE collection = ? AND key = ?", (collection, key)
        )
        await connection.commit()
        return cursor.rowcount > 0

    async def aclose(self) -> None:
        """Close the connection (reopened lazily on next use)."""
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    async def __aenter__(self) -> SQLiteCollectionStorage:
        await self._aconnect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
