"""Built-in ``uses:`` actions bound to the cache and artifact stores.

Example::

    steps:
      - id: cache
        uses: cache/restore
        with:
          key: "${{ matrix.os }}-node-"
          hash-files: [package-lock.json]
          restore-keys: ["${{ matrix.os }}-node-"]
      - run: npm ci
        # ${{ steps.cache.outputs.cache-hit }} is "true" or "false"
      - uses: artifact/upload
        with:
          name: dist
          blob: "s3://bucket/${{ run.id }}/dist.tgz"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from hexci.kernel.exceptions import ValidationError
from hexci.kernel.orchestration.actions import ActionCall, ActionRegistry
from hexci.kernel.ports.step_runner import StepResult
from hexci.stdlib.lib.cache_store import ArtifactStore, CacheStore, compute_cache_key


def _as_list(value: Any) -> list[str]:
    """Accept a list, or a newline-separated string (YAML block scalar)."""
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    return [str(v) for v in value]


def _require(call: ActionCall, name: str) -> str:
    value = call.inputs.get(name)
    if value in (None, ""):
        raise ValidationError(f"{call.step}.with.{name}", "input is required")
    return str(value)


def register_store_actions(
    registry: ActionRegistry,
    cache: CacheStore,
    artifacts: ArtifactStore,
    root: Path | None = None,
) -> ActionRegistry:
    """Register ``cache/restore``, ``cache/save``, ``artifact/upload`` and ``artifact/download``.

    *root* anchors ``hash-files`` globs (defaults to the current directory).
    """

    def cache_key(call: ActionCall) -> str:
        key = _require(call, "key")
        if files := _as_list(call.inputs.get("hash-files")):
            return compute_cache_key(key, files, root=root)
        return key

    async def cache_restore(call: ActionCall) -> StepResult:
        key = cache_key(call)
        entry = await cache.arestore(key, _as_list(call.inputs.get("restore-keys")))
        return StepResult(
            outputs={
                "cache-hit": "true" if entry is not None and entry.key == key else "false",
                "cache-matched-key": entry.key if entry is not None else "",
                "blob": entry.blob_ref if entry is not None else "",
                "key": key,
            }
        )

    async def cache_save(call: ActionCall) -> StepResult:
        key = cache_key(call)
        entry = await cache.aput(key, _require(call, "blob"))
        return StepResult(outputs={"key": entry.key, "blob": entry.blob_ref})

    async def artifact_upload(call: ActionCall) -> StepResult:
        retention = call.inputs.get("retention-days")
        artifact = await artifacts.aupload(
            call.run_id,
            _require(call, "name"),
            _require(call, "blob"),
            retention_days=float(retention) if retention not in (None, "") else None,
            job=call.job,
        )
        return StepResult(outputs={"name": artifact.name, "blob": artifact.blob_ref})

    async def artifact_download(call: ActionCall) -> StepResult:
        artifact = await artifacts.adownload(call.run_id, _require(call, "name"))
        return StepResult(outputs={"name": artifact.name, "blob": artifact.blob_ref})

    registry.register("cache/restore", cache_restore)
    registry.register("cache/save", cache_save)
    registry.register("artifact/upload", artifact_upload)
    registry.register("artifact/download", artifact_download)
    return registry
