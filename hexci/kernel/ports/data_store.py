"""Collection storage port used to persist engine state.

Runs, job statuses, cache entries, artifacts and deployment states are all
persisted through :class:`SupportsCollectionStorage`. Each record is a
``dict[str, Any]`` identified by a string key inside a named collection.
Adapters: :class:`~hexci.stdlib.adapters.memory.collection_memory.InMemoryCollectionStorage`
and :class:`~hexci.stdlib.adapters.sqlite.collection_sqlite.SQLiteCollectionStorage`.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SupportsCollectionStorage(Protocol):
    """Collection-scoped document storage.

    Example::

        class SQLCollectionStorage:
            async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
                ...
    """

    @abstractmethod
    async def asave(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Save a document to a collection (upsert semantics).

        Args
        ----
            collection: The collection name (e.g. ``"pipeline_runs"``).
            key: Unique identifier within the collection.
            data: The document to store.
        """
        ...

    @abstractmethod
    async def ainsert(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        """Insert a document only if *key* is absent (atomic put).

        Returns ``True`` if the document was written, ``False`` if the key
        already existed. Append-only stores build on this.
        """
        ...

    @abstractmethod
    async def aload(self, collection: str, key: str) -> dict[str, Any] | None:
        """Load a document by key.  Returns ``None`` if not found."""
        ...

    @abstractmethod
    async def aquery(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Query documents in a collection, optionally filtered.

        Filters use exact equality matching on document fields.
        """
        ...

    @abstractmethod
    async def adelete(self, collection: str, key: str) -> bool:
        """Delete a document.  Returns ``True`` if it existed."""
        ...


__all__ = ["SupportsCollectionStorage"]
