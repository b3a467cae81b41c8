"""Domain models for build caches and run artifacts.

Both are immutable once written. Cache entries are pipeline-scoped and
internal; artifacts are run-scoped, externally downloadable and expire after
their retention period.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from typing import Any

DEFAULT_CACHE_SCOPE = "default"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cache key pointing at an opaque blob reference."""

    key: str
    blob_ref: str
    scope: str = DEFAULT_CACHE_SCOPE
    created_at: float = field(default_factory=time.time)
    sequence: int = 0


@dataclass(frozen=True, slots=True)
class Artifact:
    """A named blob produced by a job of one run."""

    run_id: str
    name: str
    blob_ref: str
    created_at: float = field(default_factory=time.time)
    expires_at: float | None = None
    job: str | None = None

    def is_expired(self, now: float | None = None) -> bool:
        """Check whether the retention period has elapsed."""
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at


def cache_entry_to_storage(entry: CacheEntry) -> dict[str, Any]:
    """Serialise a CacheEntry to a storage-ready dict."""
    return dataclasses.asdict(entry)


def cache_entry_from_storage(data: dict[str, Any]) -> CacheEntry:
    """Reconstruct a CacheEntry from a storage dict."""
    return CacheEntry(**data)


def artifact_to_storage(artifact: Artifact) -> dict[str, Any]:
    """Serialise an Artifact to a storage-ready dict."""
    return dataclasses.asdict(artifact)


def artifact_from_storage(data: dict[str, Any]) -> Artifact:
    """Reconstruct an Artifact from a storage dict."""
    return Artifact(**data)
