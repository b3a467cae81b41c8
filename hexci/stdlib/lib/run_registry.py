"""RunRegistry lib: durable record of pipeline runs.

The engine saves the run after every job or step status change, so the
stored record is always the last known state of a run and a crashed run can
be resumed from it. Finished runs older than the retention period are moved
to an archive collection by :meth:`RunRegistry.aarchive_expired`.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from hexci.kernel.domain.pipeline_run import (
    PipelineRun,
    RunStatus,
    pipeline_run_from_storage,
    pipeline_run_to_storage,
)
from hexci.kernel.logging import get_logger

if TYPE_CHECKING:
    from hexci.kernel.ports.data_store import SupportsCollectionStorage

logger = get_logger(__name__)

_COLLECTION = "pipeline_runs"
_ARCHIVE_COLLECTION = "pipeline_runs_archive"

SECONDS_PER_DAY = 86_400


class RunRegistry:
    """In-memory registry of pipeline runs with optional persistent storage.

    - ``aregister(run)`` / ``asave(run)``: record a run and its changes
    - ``aget(run_id)``: the run record, from memory or storage
    - ``alist(status?, limit?)``: newest first
    - ``aarchive_expired(retention_days)``: move old finished runs away
    """

    def __init__(self, storage: SupportsCollectionStorage | None = None) -> None:
        """Initialise the run store.

        Args
        ----
            storage: Optional persistent backend.  When ``None`` (default),
                all data lives only in memory.
        """
        self._storage = storage
        self._runs: dict[str, PipelineRun] = {}
        self._archive: dict[str, PipelineRun] = {}

    async def aregister(self, run: PipelineRun) -> None:
        """Register a new pipeline run."""
        await self.asave(run)

    async def asave(self, run: PipelineRun) -> None:
        """Record the current state of *run*."""
        self._runs[run.run_id] = run
        if self._storage is not None:
            await self._storage.asave(_COLLECTION, run.run_id, pipeline_run_to_storage(run))

    async def aget(self, run_id: str) -> PipelineRun | None:
        """Get a run by ID (archived runs included).  Returns ``None`` if unknown."""
        run = self._runs.get(run_id) or self._archive.get(run_id)
        if run is not None:
            return run
        if self._storage is None:
            return None
        for collection in (_COLLECTION, _ARCHIVE_COLLECTION):
            data = await self._storage.aload(collection, run_id)
            if data is not None:
                return pipeline_run_from_storage(data)
        return None

    async def alist(
        self, status: RunStatus | str | None = None, limit: int = 50
    ) -> list[PipelineRun]:
        """List active (non-archived) runs, newest first."""
        if self._storage is not None:
            filters: dict[str, Any] | None = {"status": str(status)} if status else None
            docs = await self._storage.aquery(_COLLECTION, filters)
            runs = [pipeline_run_from_storage(d) for d in docs]
        else:
            runs = [r for r in self._runs.values() if not r.archived]
            if status:
                runs = [r for r in runs if r.status == status]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]

    async def aarchive_expired(
        self, retention_days: float, now: float | None = None
    ) -> list[str]:
        """Archive finished runs completed more than *retention_days* ago.

        Returns
        -------
        list[str]
            IDs of the archived runs
        """
        now = time.time() if now is None else now
        cutoff = now - retention_days * SECONDS_PER_DAY
        archived: list[str] = []

        for run in await self.alist(limit=2**31):
            if not run.status.is_terminal or run.completed_at is None:
                continue
            if run.completed_at >= cutoff:
                continue
            run.archived = True
            if self._storage is not None:
                await self._storage.asave(
                    _ARCHIVE_COLLECTION, run.run_id, pipeline_run_to_storage(run)
                )
                await self._storage.adelete(_COLLECTION, run.run_id)
            self._runs.pop(run.run_id, None)
            self._archive[run.run_id] = run
            archived.append(run.run_id)

        if archived:
            logger.info("Archived {} run(s) older than {} day(s)", len(archived), retention_days)
        return archived

    async def alist_archived(self, limit: int = 50) -> list[PipelineRun]:
        """List archived runs, newest first."""
        if self._storage is None:
            runs = list(self._archive.values())
        else:
            docs = await self._storage.aquery(_ARCHIVE_COLLECTION)
            runs = [pipeline_run_from_storage(d) for d in docs]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]
