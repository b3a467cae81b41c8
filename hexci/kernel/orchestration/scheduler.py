"""Scheduler: dispatches ready jobs of a pipeline graph.

The scheduler keeps every job's status on the :class:`PipelineRun` record.
After each job completion it recomputes the ready set, skips jobs whose
dependency policy rejects the observed outcomes (the skip cascades), and
dispatches admitted jobs while respecting:

- the global concurrency cap (shared by every run of this scheduler),
- concurrency-group exclusivity (also shared across runs),
- per-matrix ``max_parallel``.

Job-level errors are contained at the job boundary; a failing job never
crashes the dispatch loop.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hexci.kernel.domain.pipeline import DependencyPolicy
from hexci.kernel.domain.pipeline_run import (
    JobInstance,
    JobStatus,
    PipelineRun,
    RunStatus,
    StepStatus,
)
from hexci.kernel.exceptions import DependencyFailedError, ValidationError
from hexci.kernel.logging import get_logger
from hexci.kernel.orchestration.events import (
    JobCancelled,
    JobCompleted,
    JobSkipped,
    JobStarted,
    notify_observer,
)
from hexci.kernel.orchestration.step_executor import JobContext, StepExecutor

if TYPE_CHECKING:
    from hexci.kernel.domain.dag import JobNode, PipelineGraph
    from hexci.kernel.ports.observer_manager import ObserverManager

logger = get_logger(__name__)

RunChangeCallback = Callable[[PipelineRun], Awaitable[None]]


def admits(policy: DependencyPolicy, outcomes: dict[str, JobStatus]) -> bool:
    """Whether a job with *policy* may run given its dependencies' terminal *outcomes*.

    Examples
    --------
    >>> admits(DependencyPolicy.ON_SUCCESS, {"a": JobStatus.SUCCEEDED})
    True
    >>> admits(DependencyPolicy.ON_SUCCESS, {"a": JobStatus.FAILED})
    False
    >>> admits(DependencyPolicy.ON_FAILURE, {"a": JobStatus.FAILED, "b": JobStatus.SUCCEEDED})
    True
    >>> admits(DependencyPolicy.ALWAYS, {"a": JobStatus.SKIPPED})
    True
    """
    if policy is DependencyPolicy.ALWAYS:
        return True
    if policy is DependencyPolicy.ON_FAILURE:
        return any(status is JobStatus.FAILED for status in outcomes.values())
    return all(status is JobStatus.SUCCEEDED for status in outcomes.values())


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping of one ``arun`` call."""

    graph: PipelineGraph
    run: PipelineRun
    cancel_event: asyncio.Event
    secrets: dict[str, str]
    workdir: Path | None
    tasks: dict[asyncio.Task[JobStatus], str] = field(default_factory=dict)
    job_cancels: dict[str, asyncio.Event] = field(default_factory=dict)
    started: dict[str, float] = field(default_factory=dict)


class Scheduler:
    """Dependency-aware job dispatcher.

    One scheduler may drive several runs concurrently; the global cap and
    concurrency groups are enforced across all of them.

    Examples
    --------
    Example usage::

        scheduler = Scheduler(StepExecutor(ShellStepRunner()), max_parallel=4)
        run = await scheduler.arun(graph, PipelineRun(run_id="r1", pipeline_name="ci"))
    """

    def __init__(
        self,
        step_executor: StepExecutor,
        max_parallel: int | None = None,
        observer_manager: ObserverManager | None = None,
        on_change: RunChangeCallback | None = None,
    ) -> None:
        """Initialize the scheduler.

        Parameters
        ----------
        step_executor : StepExecutor
            Executes the steps of each dispatched job.
        max_parallel : int | None
            Global cap on concurrently running jobs. None means unbounded.
        observer_manager : ObserverManager | None
            Receives job lifecycle events.
        on_change : RunChangeCallback | None
            Awaited with the run after every job or step status change.

        Raises
        ------
        ValidationError
            If ``max_parallel`` is lower than 1.
        """
        if max_parallel is not None and max_parallel < 1:
            raise ValidationError("max_parallel", "must be at least 1", max_parallel)
        self.step_executor = step_executor
        self.max_parallel = max_parallel
        self.observer_manager = observer_manager
        self.on_change = on_change
        self._running = 0
        self._groups: dict[str, str] = {}
        self._waiters: set[asyncio.Future[None]] = set()

    @property
    def running(self) -> int:
        """Number of jobs currently running across all runs."""
        return self._running

    @property
    def occupied_groups(self) -> dict[str, str]:
        """Concurrency group → ``run_id/job`` holding it."""
        return dict(self._groups)

    async def arun(
        self,
        graph: PipelineGraph,
        run: PipelineRun,
        cancel_event: asyncio.Event | None = None,
        *,
        secrets: dict[str, str] | None = None,
        workdir: Path | None = None,
    ) -> PipelineRun:
        """Drive *run* until every job of *graph* is terminal.

        Jobs already terminal in *run* (resume) are not re-run; jobs recorded
        as running are reset to pending.

        Returns
        -------
        PipelineRun
            The same record, with a terminal status
        """
        status = await self.aexecute(graph, run, cancel_event, secrets=secrets, workdir=workdir)
        run.status = status
        run.completed_at = time.time()
        await self._changed(run)
        return run

    async def aexecute(
        self,
        graph: PipelineGraph,
        run: PipelineRun,
        cancel_event: asyncio.Event | None = None,
        *,
        secrets: dict[str, str] | None = None,
        workdir: Path | None = None,
    ) -> RunStatus:
        """Drive every job of *graph* to a terminal status.

        The run record stays ``running``: the terminal status is returned for
        the caller to commit, so work that follows the jobs (a deployment)
        happens before the run is visible as finished.
        """
        state = _RunState(
            graph=graph,
            run=run,
            cancel_event=cancel_event or asyncio.Event(),
            secrets=dict(secrets or {}),
            workdir=workdir,
        )
        self.prepare(graph, run)
        run.status = RunStatus.RUNNING
        run.started_at = run.started_at or time.time()
        await self._changed(run)

        cancel_waiter = asyncio.create_task(state.cancel_event.wait())
        try:
            while True:
                blocked = False
                if state.cancel_event.is_set():
                    await self._cancel_pending(state, "run cancelled")
                    for event in state.job_cancels.values():
                        event.set()
                else:
                    await self._resolve_skips(state)
                    blocked = await self._dispatch(state)

                if not state.tasks and not blocked:
                    break

                wait_set: set[asyncio.Future[Any]] = set(state.tasks)
                if not cancel_waiter.done():
                    wait_set.add(cancel_waiter)
                waiter = None
                if not state.cancel_event.is_set() and blocked:
                    waiter = asyncio.get_running_loop().create_future()
                    self._waiters.add(waiter)
                    wait_set.add(waiter)

                done, _ = await asyncio.wait(wait_set, return_when=asyncio.FIRST_COMPLETED)

                if waiter is not None:
                    self._waiters.discard(waiter)
                    waiter.cancel()
                for task in [t for t in state.tasks if t in done]:
                    await self._finish(state, task)
        finally:
            cancel_waiter.cancel()
            for task, name in list(state.tasks.items()):
                task.cancel()
                self._release(state, graph.nodes[name])

        return self._terminal_status(state)

    # ------------------------------------------------------------------
    # Preparation and status resolution
    # ------------------------------------------------------------------

    def prepare(self, graph: PipelineGraph, run: PipelineRun) -> None:
        """Create a pending JobInstance per graph node; reset interrupted jobs."""
        for name, node in graph.nodes.items():
            instance = run.jobs.get(name)
            if instance is None:
                spec = node.spec
                run.jobs[name] = JobInstance(
                    name=name,
                    template=node.template,
                    matrix=dict(spec.matrix_values),
                    needs=sorted(node.deps),
                    concurrency_group=spec.concurrency_group,
                    environment=spec.environment,
                    runs_on=spec.runs_on,
                )
            elif instance.status is JobStatus.RUNNING:
                logger.info("Resetting interrupted job '{}' to pending", name)
                instance.status = JobStatus.PENDING
                instance.steps = []
                instance.warnings = []
                instance.error = None
                instance.started_at = None

    async def _resolve_skips(self, state: _RunState) -> None:
        graph, run = state.graph, state.run
        changed, any_change = True, False
        while changed:
            changed = False
            terminal = {name for name, job in run.jobs.items() if job.status.is_terminal}
            for name in graph.ready_set(terminal):
                instance = run.jobs[name]
                if instance.status is not JobStatus.PENDING:
                    continue
                node = graph.nodes[name]
                outcomes = {dep: run.jobs[dep].status for dep in node.deps}
                if admits(node.policy, outcomes):
                    continue

                blocking = {
                    dep: str(status)
                    for dep, status in outcomes.items()
                    if status is not JobStatus.SUCCEEDED
                } or {dep: str(status) for dep, status in outcomes.items()}
                reason = str(DependencyFailedError(name, blocking))
                self._mark(instance, JobStatus.SKIPPED, StepStatus.SKIPPED)
                instance.skip_reason = reason
                logger.info("{}", reason)
                await notify_observer(
                    self.observer_manager, JobSkipped(run_id=run.run_id, name=name, reason=reason)
                )
                changed = any_change = True
        if any_change:
            await self._changed(run)

    async def _cancel_pending(
        self, state: _RunState, reason: str, names: set[str] | None = None
    ) -> None:
        run = state.run
        cancelled = False
        for name, instance in run.jobs.items():
            if names is not None and name not in names:
                continue
            if instance.status is JobStatus.PENDING:
                cancelled = True
                self._mark(instance, JobStatus.CANCELLED, StepStatus.CANCELLED)
                instance.skip_reason = reason
                await notify_observer(
                    self.observer_manager, JobCancelled(run_id=run.run_id, name=name, reason=reason)
                )
        if cancelled:
            await self._changed(run)

    @staticmethod
    def _mark(instance: JobInstance, status: JobStatus, step_status: StepStatus) -> None:
        instance.status = status
        instance.completed_at = time.time()
        for step in instance.steps:
            if step.status is StepStatus.PENDING:
                step.status = step_status

    def _terminal_status(self, state: _RunState) -> RunStatus:
        if state.cancel_event.is_set():
            return RunStatus.CANCELLED
        for name, instance in state.run.jobs.items():
            node = state.graph.nodes.get(name)
            required = node.spec.required if node is not None else True
            if instance.status is JobStatus.FAILED and required:
                return RunStatus.FAILED
        return RunStatus.SUCCEEDED

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, state: _RunState) -> bool:
        """Start every admitted job that fits; return True if one is blocked by another run."""
        graph, run = state.graph, state.run
        terminal = {name for name, job in run.jobs.items() if job.status.is_terminal}
        blocked_externally = False

        for name in graph.ready_set(terminal):
            instance = run.jobs[name]
            if instance.status is not JobStatus.PENDING:
                continue
            node = graph.nodes[name]

            if self.max_parallel is not None and self._running >= self.max_parallel:
                blocked_externally = True
                break

            group = node.concurrency_group
            if group is not None and group in self._groups:
                holder = self._groups[group]
                if not holder.startswith(f"{run.run_id}/"):
                    blocked_externally = True
                logger.debug("Job '{}' queued: group '{}' held by '{}'", name, group, holder)
                continue

            strategy = node.spec.strategy
            if strategy is not None and strategy.max_parallel is not None:
                siblings = sum(
                    1
                    for other in state.tasks.values()
                    if graph.nodes[other].template == node.template
                )
                if siblings >= strategy.max_parallel:
                    continue

            await self._start(state, node)

        return blocked_externally

    async def _start(self, state: _RunState, node: JobNode) -> None:
        run = state.run
        instance = run.jobs[node.name]
        self._running += 1
        if node.concurrency_group is not None:
            self._groups[node.concurrency_group] = f"{run.run_id}/{node.name}"

        instance.status = JobStatus.RUNNING
        instance.started_at = time.time()
        state.started[node.name] = time.monotonic()
        job_cancel = asyncio.Event()
        state.job_cancels[node.name] = job_cancel

        definition = state.graph.definition
        context = JobContext(
            run_id=run.run_id,
            env=dict(definition.env) if definition is not None else {},
            secrets=state.secrets,
            needs={
                dep: {
                    "outputs": dict(run.jobs[dep].outputs),
                    "result": str(run.jobs[dep].status),
                }
                for dep in node.deps
            },
            cancel_event=job_cancel,
            workdir=state.workdir,
            runs_on=node.spec.runs_on,
        )
        logger.info("Dispatching job '{}'", node.name)
        await notify_observer(
            self.observer_manager,
            JobStarted(run_id=run.run_id, name=node.name, dependencies=tuple(sorted(node.deps))),
        )
        await self._changed(run)

        task = asyncio.create_task(self._aexecute(state, node, context), name=node.name)
        state.tasks[task] = node.name

    async def _aexecute(self, state: _RunState, node: JobNode, context: JobContext) -> JobStatus:
        instance = state.run.jobs[node.name]
        try:
            return await self.step_executor.aexecute_job(
                node, instance, context, on_change=functools.partial(self._changed, state.run)
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Contained at the job boundary
            logger.error("Job '{}' crashed: {}: {}", node.name, type(e).__name__, e)
            instance.error = f"{type(e).__name__}: {e}"
            return JobStatus.FAILED

    async def _finish(self, state: _RunState, task: asyncio.Task[JobStatus]) -> None:
        run, graph = state.run, state.graph
        name = state.tasks.pop(task)
        node = graph.nodes[name]
        self._release(state, node)
        state.job_cancels.pop(name, None)

        instance = run.jobs[name]
        instance.status = task.result()
        instance.completed_at = time.time()
        duration_ms = (time.monotonic() - state.started.pop(name, time.monotonic())) * 1000

        if instance.status is JobStatus.CANCELLED:
            await notify_observer(
                self.observer_manager,
                JobCancelled(run_id=run.run_id, name=name, reason=instance.skip_reason),
            )
        else:
            await notify_observer(
                self.observer_manager,
                JobCompleted(
                    run_id=run.run_id,
                    name=name,
                    status=str(instance.status),
                    duration_ms=duration_ms,
                    warnings=list(instance.warnings),
                ),
            )

        if instance.status is JobStatus.FAILED:
            if not node.spec.required:
                logger.warning("Job '{}' failed (not required)", name)
            strategy = node.spec.strategy
            if strategy is not None and strategy.fail_fast:
                await self._fail_fast(state, node)

        await self._changed(run)

    async def _fail_fast(self, state: _RunState, failed: JobNode) -> None:
        siblings = {
            name
            for name, node in state.graph.nodes.items()
            if node.template == failed.template and name != failed.name
        }
        if not siblings:
            return
        reason = f"fail-fast: '{failed.name}' failed"
        logger.info("Cancelling matrix siblings of '{}'", failed.name)
        await self._cancel_pending(state, reason, siblings)
        for name in siblings:
            if (event := state.job_cancels.get(name)) is not None:
                state.run.jobs[name].skip_reason = reason
                event.set()

    def _release(self, state: _RunState, node: JobNode) -> None:
        self._running -= 1
        group = node.concurrency_group
        if group is not None and self._groups.get(group) == f"{state.run.run_id}/{node.name}":
            del self._groups[group]
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)

    async def _changed(self, run: PipelineRun) -> None:
        if self.on_change is not None:
            await self.on_change(run)
