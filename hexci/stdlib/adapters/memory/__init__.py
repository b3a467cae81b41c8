"""In-memory storage adapter."""

from hexci.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage

__all__ = ["InMemoryCollectionStorage"]
