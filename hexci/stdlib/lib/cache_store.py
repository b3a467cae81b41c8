"""Cache and artifact stores.

Build caches are keyed, append-only and looked up by exact key or by
prefix (most recent match wins). Artifacts are named per run, downloadable
by any later job of the run and invisible once their retention expires.

Both keep an in-memory index and persist through an optional
``SupportsCollectionStorage``; blobs themselves are opaque references.

Programmatic::

    cache = CacheStore()
    key = compute_cache_key("linux-node-", ["package-lock.json"], root=Path("."))
    await cache.aput(key, "s3://bucket/cache/123.tgz")
    entry = await cache.arestore(key, restore_keys=["linux-node-"])
"""

from __future__ import annotations

import asyncio
import glob
import hashlib
import itertools
import time
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from hexci.kernel.domain.cache import (
    DEFAULT_CACHE_SCOPE,
    Artifact,
    CacheEntry,
    artifact_from_storage,
    artifact_to_storage,
    cache_entry_from_storage,
    cache_entry_to_storage,
)
from hexci.kernel.exceptions import DuplicateKeyError, ResourceNotFoundError, ValidationError
from hexci.kernel.logging import get_logger

if TYPE_CHECKING:
    from hexci.kernel.ports.data_store import SupportsCollectionStorage

logger = get_logger(__name__)

_CACHE_COLLECTION = "cache_entries"
_ARTIFACT_COLLECTION = "artifacts"

SECONDS_PER_DAY = 86_400


def compute_cache_key(prefix: str, paths: Iterable[str], root: Path | None = None) -> str:
    """Build a cache key from *prefix* and the SHA-256 of the input files.

    *paths* are glob patterns relative to *root*; matches are sorted so the
    key does not depend on the order they are declared in. Missing files
    contribute nothing.

    Examples
    --------
    >>> compute_cache_key("linux-node-", []).startswith("linux-node-")
    True
    """
    root = root or Path.cwd()
    files = sorted(
        {
            Path(match)
            for pattern in paths
            for match in glob.glob(str(root / pattern), recursive=True)
            if Path(match).is_file()
        }
    )
    digest = hashlib.sha256()
    for file in files:
        digest.update(file.relative_to(root).as_posix().encode())
        digest.update(b"\0")
        digest.update(file.read_bytes())
        digest.update(b"\0")
    return f"{prefix}{digest.hexdigest()}"


def _cache_doc_key(scope: str, key: str) -> str:
    return f"{scope}:{key}"


def _artifact_doc_key(run_id: str, name: str) -> str:
    return f"{run_id}:{name}"


class CacheStore:
    """Append-only keyed cache.

    - ``aput(key, blob_ref)``: write once; a duplicate key is reported as success
    - ``aget(key_or_prefix)``: exact match, else most recent prefix match, else ``None``
    - ``arestore(key, restore_keys)``: exact key, then each restore prefix in order
    """

    def __init__(
        self,
        storage: SupportsCollectionStorage | None = None,
        scope: str = DEFAULT_CACHE_SCOPE,
    ) -> None:
        """Initialise the cache.

        Args
        ----
            storage: Optional persistent backend.  When ``None`` (default),
                all data lives only in memory.
            scope: Cache namespace (typically the pipeline name).
        """
        self._storage = storage
        self.scope = scope
        self._entries: dict[str, CacheEntry] = {}
        self._sequence = itertools.count(1)
        self._lock = asyncio.Lock()
        self._loaded = storage is None

    async def _aload_index(self) -> None:
        if self._loaded or self._storage is None:
            return
        docs = await self._storage.aquery(_CACHE_COLLECTION, {"scope": self.scope})
        for doc in docs:
            entry = cache_entry_from_storage(doc)
            self._entries.setdefault(entry.key, entry)
        last = max((e.sequence for e in self._entries.values()), default=0)
        self._sequence = itertools.count(last + 1)
        self._loaded = True

    async def _ainsert(self, entry: CacheEntry) -> None:
        """Insert *entry*.

        Raises
        ------
        DuplicateKeyError
            If the key already exists.
        """
        if entry.key in self._entries:
            raise DuplicateKeyError(entry.key)
        if self._storage is not None:
            written = await self._storage.ainsert(
                _CACHE_COLLECTION,
                _cache_doc_key(self.scope, entry.key),
                cache_entry_to_storage(entry),
            )
            if not written:
                raise DuplicateKeyError(entry.key)
        self._entries[entry.key] = entry

    async def aput(self, key: str, blob_ref: str) -> CacheEntry:
        """Store *blob_ref* under *key*.

        A key that already exists keeps its original entry; the call still
        succeeds and returns that entry.
        """
        if not key:
            raise ValidationError("key", "cache key must not be empty")
        async with self._lock:
            await self._aload_index()
            entry = CacheEntry(
                key=key, blob_ref=blob_ref, scope=self.scope, sequence=next(self._sequence)
            )
            try:
                await self._ainsert(entry)
            except DuplicateKeyError:
                logger.debug("Cache key '{}' already exists; keeping the original entry", key)
                existing = self._entries.get(key)
                if existing is None and self._storage is not None:
                    doc = await self._storage.aload(
                        _CACHE_COLLECTION, _cache_doc_key(self.scope, key)
                    )
                    if doc is not None:
                        existing = cache_entry_from_storage(doc)
                        self._entries[key] = existing
                return existing or entry
            logger.debug("Cached '{}'", key)
            return entry

    async def aget(self, key_or_prefix: str) -> CacheEntry | None:
        """Exact match, else the most recently written entry with the prefix."""
        async with self._lock:
            await self._aload_index()
            if (entry := self._entries.get(key_or_prefix)) is not None:
                return entry
            candidates = [e for k, e in self._entries.items() if k.startswith(key_or_prefix)]
        if not candidates:
            return None
        return max(candidates, key=lambda e: (e.sequence, e.created_at))

    async def arestore(self, key: str, restore_keys: Iterable[str] = ()) -> CacheEntry | None:
        """Look up *key*, falling back to each restore-key prefix in order."""
        async with self._lock:
            await self._aload_index()
            exact = self._entries.get(key)
        if exact is not None:
            logger.debug("Cache hit for '{}'", key)
            return exact
        for prefix in restore_keys:
            if prefix and (entry := await self.aget(prefix)) is not None:
                logger.debug("Cache restored '{}' from prefix '{}'", entry.key, prefix)
                return entry
        logger.debug("Cache miss for '{}'", key)
        return None

    def __len__(self) -> int:
        return len(self._entries)


class ArtifactStore:
    """Run-scoped named artifacts with retention.

    Artifacts are read-only once uploaded: uploading the same name twice in
    one run raises ``DuplicateKeyError``.
    """

    def __init__(
        self,
        storage: SupportsCollectionStorage | None = None,
        default_retention_days: float | None = 90,
    ) -> None:
        self._storage = storage
        self.default_retention_days = default_retention_days
        self._artifacts: dict[tuple[str, str], Artifact] = {}
        self._lock = asyncio.Lock()

    async def aupload(
        self,
        run_id: str,
        name: str,
        blob_ref: str,
        retention_days: float | None = None,
        job: str | None = None,
    ) -> Artifact:
        """Register *blob_ref* as artifact *name* of *run_id*.

        Raises
        ------
        DuplicateKeyError
            If the run already has an artifact with this name.
        """
        if not name:
            raise ValidationError("name", "artifact name must not be empty")
        retention = retention_days if retention_days is not None else self.default_retention_days
        now = time.time()
        artifact = Artifact(
            run_id=run_id,
            name=name,
            blob_ref=blob_ref,
            created_at=now,
            expires_at=now + retention * SECONDS_PER_DAY if retention is not None else None,
            job=job,
        )
        doc_key = _artifact_doc_key(run_id, name)
        async with self._lock:
            if (run_id, name) in self._artifacts:
                raise DuplicateKeyError(doc_key)
            if self._storage is not None and not await self._storage.ainsert(
                _ARTIFACT_COLLECTION, doc_key, artifact_to_storage(artifact)
            ):
                raise DuplicateKeyError(doc_key)
            self._artifacts[(run_id, name)] = artifact
        logger.debug("Uploaded artifact '{}' for run '{}'", name, run_id)
        return artifact

    async def _aget(self, run_id: str, name: str) -> Artifact | None:
        artifact = self._artifacts.get((run_id, name))
        if artifact is None and self._storage is not None:
            doc = await self._storage.aload(_ARTIFACT_COLLECTION, _artifact_doc_key(run_id, name))
            if doc is not None:
                artifact = artifact_from_storage(doc)
                self._artifacts[(run_id, name)] = artifact
        return artifact

    async def adownload(self, run_id: str, name: str, now: float | None = None) -> Artifact:
        """Fetch artifact *name* of *run_id*.

        Raises
        ------
        ResourceNotFoundError
            If the artifact does not exist or has expired.
        """
        artifact = await self._aget(run_id, name)
        if artifact is None or artifact.is_expired(now):
            available = [a.name for a in await self.alist(run_id, now=now)]
            raise ResourceNotFoundError("artifact", f"{run_id}/{name}", available)
        return artifact

    async def alist(self, run_id: str, now: float | None = None) -> list[Artifact]:
        """Non-expired artifacts of *run_id*, oldest first."""
        if self._storage is not None:
            for doc in await self._storage.aquery(_ARTIFACT_COLLECTION, {"run_id": run_id}):
                artifact = artifact_from_storage(doc)
                self._artifacts.setdefault((artifact.run_id, artifact.name), artifact)
        artifacts = [
            a for (rid, _), a in self._artifacts.items() if rid == run_id and not a.is_expired(now)
        ]
        return sorted(artifacts, key=lambda a: (a.created_at, a.name))

    async def apurge_expired(self, now: float | None = None) -> list[Artifact]:
        """Delete expired artifacts and return them (their blobs can then be freed)."""
        now = time.time() if now is None else now
        if self._storage is not None:
            for doc in await self._storage.aquery(_ARTIFACT_COLLECTION):
                artifact = artifact_from_storage(doc)
                self._artifacts.setdefault((artifact.run_id, artifact.name), artifact)

        expired = [a for a in self._artifacts.values() if a.is_expired(now)]
        for artifact in expired:
            del self._artifacts[(artifact.run_id, artifact.name)]
            if self._storage is not None:
                await self._storage.adelete(
                    _ARTIFACT_COLLECTION, _artifact_doc_key(artifact.run_id, artifact.name)
                )
        if expired:
            logger.info("Purged {} expired artifact(s)", len(expired))
        return expired
