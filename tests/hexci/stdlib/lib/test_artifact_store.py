"""Tests for ArtifactStore."""

from __future__ import annotations

import time

import pytest

from hexci.kernel.exceptions import DuplicateKeyError, ResourceNotFoundError, ValidationError
from hexci.stdlib.adapters.memory import InMemoryCollectionStorage
from hexci.stdlib.lib.cache_store import SECONDS_PER_DAY, ArtifactStore


class TestArtifactStore:
    @pytest.mark.asyncio()
    async def test_upload_and_download(self) -> None:
        store = ArtifactStore()
        uploaded = await store.aupload("r1", "dist", "s3://r1/dist.tgz", job="build")

        downloaded = await store.adownload("r1", "dist")

        assert downloaded == uploaded
        assert downloaded.job == "build"
        assert downloaded.expires_at == pytest.approx(
            downloaded.created_at + 90 * SECONDS_PER_DAY
        )

    @pytest.mark.asyncio()
    async def test_names_are_run_scoped(self) -> None:
        store = ArtifactStore()
        await store.aupload("r1", "dist", "blob-1")
        await store.aupload("r2", "dist", "blob-2")

        assert (await store.adownload("r2", "dist")).blob_ref == "blob-2"
        with pytest.raises(DuplicateKeyError):
            await store.aupload("r1", "dist", "blob-3")

    @pytest.mark.asyncio()
    async def test_missing_artifact_lists_available(self) -> None:
        store = ArtifactStore()
        await store.aupload("r1", "dist", "blob")

        with pytest.raises(ResourceNotFoundError, match="Available: dist"):
            await store.adownload("r1", "coverage")

    @pytest.mark.asyncio()
    async def test_empty_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            await ArtifactStore().aupload("r1", "", "blob")

    @pytest.mark.asyncio()
    async def test_expired_artifacts_are_invisible(self) -> None:
        store = ArtifactStore()
        await store.aupload("r1", "short", "blob", retention_days=1)
        await store.aupload("r1", "long", "blob", retention_days=30)
        later = time.time() + 2 * SECONDS_PER_DAY

        assert [a.name for a in await store.alist("r1", now=later)] == ["long"]
        with pytest.raises(ResourceNotFoundError):
            await store.adownload("r1", "short", now=later)

    @pytest.mark.asyncio()
    async def test_purge_expired(self) -> None:
        storage = InMemoryCollectionStorage()
        store = ArtifactStore(storage)
        await store.aupload("r1", "short", "blob-short", retention_days=1)
        await store.aupload("r1", "long", "blob-long")

        purged = await store.apurge_expired(now=time.time() + 2 * SECONDS_PER_DAY)

        assert [a.blob_ref for a in purged] == ["blob-short"]
        assert await storage.aload("artifacts", "r1:short") is None
        assert await storage.aload("artifacts", "r1:long") is not None

    @pytest.mark.asyncio()
    async def test_no_default_retention_never_expires(self) -> None:
        store = ArtifactStore(default_retention_days=None)
        artifact = await store.aupload("r1", "dist", "blob")

        assert artifact.expires_at is None
        assert await store.apurge_expired(now=time.time() + 1000 * SECONDS_PER_DAY) == []

    @pytest.mark.asyncio()
    async def test_persisted_artifacts_visible_to_new_store(self) -> None:
        storage = InMemoryCollectionStorage()
        await ArtifactStore(storage).aupload("r1", "dist", "blob")

        reader = ArtifactStore(storage)

        assert (await reader.adownload("r1", "dist")).blob_ref == "blob"
        assert [a.name for a in await reader.alist("r1")] == ["dist"]
        with pytest.raises(DuplicateKeyError):
            await reader.aupload("r1", "dist", "other")
