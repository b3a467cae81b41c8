"""Tests for the built-in cache and artifact actions."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from hexci.kernel.exceptions import ResourceNotFoundError, ValidationError
from hexci.kernel.orchestration.actions import ActionCall, ActionRegistry
from hexci.stdlib.actions import register_store_actions
from hexci.stdlib.lib.cache_store import ArtifactStore, CacheStore, compute_cache_key


@pytest.fixture()
def stores(tmp_path: Path) -> tuple[ActionRegistry, CacheStore, ArtifactStore]:
    cache, artifacts = CacheStore(scope="ci"), ArtifactStore()
    registry = register_store_actions(ActionRegistry(), cache, artifacts, root=tmp_path)
    return registry, cache, artifacts


def _call(inputs: dict[str, Any], run_id: str = "r1") -> ActionCall:
    return ActionCall(run_id=run_id, job="build", step="cache", inputs=inputs)


class TestRegistry:
    def test_registered_names(self, stores: Any) -> None:
        registry, _, _ = stores
        assert len(registry) == 4
        assert "cache/restore@v2" in registry
        assert "cache/delete" not in registry

    def test_unknown_action(self) -> None:
        with pytest.raises(ResourceNotFoundError, match="Action 'nope' not found"):
            ActionRegistry().resolve("nope")


class TestCacheActions:
    @pytest.mark.asyncio()
    async def test_restore_miss_then_save_then_hit(self, stores: Any) -> None:
        registry, cache, _ = stores
        restore = registry.resolve("cache/restore")

        miss = await restore(_call({"key": "linux-node-abc"}))
        await registry.resolve("cache/save")(_call({"key": "linux-node-abc", "blob": "b1"}))
        hit = await restore(_call({"key": "linux-node-abc"}))

        assert miss.outputs["cache-hit"] == "false"
        assert miss.outputs["cache-matched-key"] == ""
        assert hit.outputs == {
            "cache-hit": "true",
            "cache-matched-key": "linux-node-abc",
            "blob": "b1",
            "key": "linux-node-abc",
        }
        assert len(cache) == 1

    @pytest.mark.asyncio()
    async def test_restore_keys_block_scalar(self, stores: Any) -> None:
        registry, cache, _ = stores
        await cache.aput("linux-node-old", "b-old")

        result = await registry.resolve("cache/restore")(
            _call({"key": "linux-node-new", "restore-keys": "mac-node-\nlinux-node-\n"})
        )

        assert result.outputs["cache-hit"] == "false"
        assert result.outputs["cache-matched-key"] == "linux-node-old"
        assert result.outputs["blob"] == "b-old"

    @pytest.mark.asyncio()
    async def test_hash_files(self, stores: Any, tmp_path: Path) -> None:
        registry, _, _ = stores
        (tmp_path / "package-lock.json").write_text("{}")

        result = await registry.resolve("cache/save")(
            _call({"key": "node-", "hash-files": ["package-lock.json"], "blob": "b"})
        )

        expected = compute_cache_key("node-", ["package-lock.json"], root=tmp_path)
        assert result.outputs["key"] == expected

    @pytest.mark.asyncio()
    async def test_missing_key(self, stores: Any) -> None:
        registry, _, _ = stores
        with pytest.raises(ValidationError, match="cache.with.key"):
            await registry.resolve("cache/restore")(_call({}))


class TestArtifactActions:
    @pytest.mark.asyncio()
    async def test_upload_then_download(self, stores: Any) -> None:
        registry, _, artifacts = stores

        await registry.resolve("artifact/upload")(
            _call({"name": "dist", "blob": "s3://dist.tgz", "retention-days": "7"})
        )
        result = await registry.resolve("artifact/download")(_call({"name": "dist"}))

        assert result.outputs == {"name": "dist", "blob": "s3://dist.tgz"}
        artifact = await artifacts.adownload("r1", "dist")
        assert artifact.job == "build"
        assert artifact.expires_at == pytest.approx(artifact.created_at + 7 * 86_400)

    @pytest.mark.asyncio()
    async def test_download_from_other_run_fails(self, stores: Any) -> None:
        registry, _, _ = stores
        await registry.resolve("artifact/upload")(_call({"name": "dist", "blob": "b"}))

        with pytest.raises(ResourceNotFoundError):
            await registry.resolve("artifact/download")(_call({"name": "dist"}, run_id="r2"))
