"""Tests for InMemoryCollectionStorage."""

from __future__ import annotations

import pytest

from hexci.kernel.ports.data_store import SupportsCollectionStorage
from hexci.stdlib.adapters.memory import InMemoryCollectionStorage


class TestInMemoryCollectionStorage:
    def test_satisfies_port(self) -> None:
        assert isinstance(InMemoryCollectionStorage(), SupportsCollectionStorage)

    @pytest.mark.asyncio()
    async def test_save_load_roundtrip_is_copied(self) -> None:
        storage = InMemoryCollectionStorage()
        doc = {"status": "running", "jobs": {"a": 1}}
        await storage.asave("runs", "r1", doc)
        doc["jobs"]["a"] = 2

        loaded = await storage.aload("runs", "r1")
        assert loaded == {"status": "running", "jobs": {"a": 1}}
        assert loaded is not None
        loaded["status"] = "changed"
        assert (await storage.aload("runs", "r1")) == {"status": "running", "jobs": {"a": 1}}

    @pytest.mark.asyncio()
    async def test_insert_only_when_absent(self) -> None:
        storage = InMemoryCollectionStorage()

        assert await storage.ainsert("cache", "k", {"v": 1})
        assert not await storage.ainsert("cache", "k", {"v": 2})
        assert await storage.aload("cache", "k") == {"v": 1}

    @pytest.mark.asyncio()
    async def test_query_and_delete(self) -> None:
        storage = InMemoryCollectionStorage()
        await storage.asave("runs", "r1", {"status": "failed"})
        await storage.asave("runs", "r2", {"status": "succeeded"})

        assert len(await storage.aquery("runs")) == 2
        assert await storage.aquery("runs", {"status": "failed"}) == [{"status": "failed"}]
        assert await storage.aquery("missing") == []
        assert await storage.adelete("runs", "r1")
        assert not await storage.adelete("runs", "r1")
        assert await storage.aload("runs", "r1") is None
