"""Pipeline engine: run submission, status, cancellation and resume.

The engine wires the :class:`Scheduler` and :class:`StepExecutor` to a
:class:`~hexci.stdlib.lib.run_registry.RunRegistry` (every status change is
recorded) and, for pipelines with a ``deployment`` section, hands successful
runs over to the :class:`DeploymentStateMachine`.

Each run executes in its own asyncio task; the run ID is the logging
correlation ID inside that task.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hexci.kernel.domain.pipeline_run import (
    DeploymentOutcome,
    JobStatus,
    PipelineRun,
    RunReport,
    RunStatus,
    pipeline_run_to_storage,
)
from hexci.kernel.exceptions import (
    ConfigurationError,
    DirectedGraphError,
    HexCIError,
    ResourceNotFoundError,
    ValidationError,
)
from hexci.kernel.expressions import render
from hexci.kernel.logging import get_logger, set_correlation_id
from hexci.kernel.orchestration.events import RunCompleted, RunStarted, notify_observer
from hexci.kernel.orchestration.graph_builder import build_graph
from hexci.kernel.orchestration.scheduler import Scheduler
from hexci.kernel.orchestration.step_executor import StepExecutor

if TYPE_CHECKING:
    from hexci.kernel.domain.dag import PipelineGraph
    from hexci.kernel.domain.pipeline import PipelineDefinition, TriggerEvent
    from hexci.kernel.orchestration.actions import ActionRegistry
    from hexci.kernel.orchestration.deployment import DeploymentStateMachine
    from hexci.kernel.ports.observer_manager import ObserverManager
    from hexci.kernel.ports.step_runner import StepRunner
    from hexci.stdlib.lib.run_registry import RunRegistry

logger = get_logger(__name__)


def _new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class PipelineEngine:
    """Entry point for running pipelines.

    Examples
    --------
    Example usage::

        engine = PipelineEngine(ShellStepRunner(), max_parallel=4)
        report = await engine.arun(build_graph(definition))
        print(report.status, report.failed_jobs)
    """

    def __init__(
        self,
        step_runner: StepRunner,
        *,
        registry: RunRegistry | None = None,
        actions: ActionRegistry | None = None,
        observer_manager: ObserverManager | None = None,
        deployment: DeploymentStateMachine | None = None,
        max_parallel: int | None = None,
        default_step_timeout: float | None = None,
        secrets: dict[str, str] | None = None,
        workdir: Path | None = None,
    ) -> None:
        """Initialize the engine.

        Args
        ----
            step_runner: Port that executes ``run:`` commands.
            registry: Run record store. Defaults to an in-memory RunRegistry.
            actions: Registry resolving ``uses:`` references.
            observer_manager: Receives run, job, step and deployment events.
            deployment: State machine used for pipelines with a ``deployment`` section.
            max_parallel: Global cap on concurrently running jobs (None = unbounded).
            default_step_timeout: Timeout for steps without one (None = no timeout).
            secrets: Already-resolved secret values for ``${{ secrets.X }}``.
            workdir: Working directory for step commands.
        """
        if registry is None:
            # Lazy: kernel modules do not import stdlib at module level
            from hexci.stdlib.lib.run_registry import RunRegistry  # noqa: PLC0415

            registry = RunRegistry()
        self.registry = registry
        self.observer_manager = observer_manager
        self.deployment = deployment
        self.secrets = dict(secrets or {})
        self.workdir = workdir
        self.step_executor = StepExecutor(
            step_runner,
            actions=actions,
            default_step_timeout=default_step_timeout,
            observer_manager=observer_manager,
        )
        self.scheduler = Scheduler(
            self.step_executor,
            max_parallel=max_parallel,
            observer_manager=observer_manager,
            on_change=self.registry.asave,
        )
        self._tasks: dict[str, asyncio.Task[RunReport]] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def asubmit(
        self,
        graph: PipelineGraph,
        trigger: TriggerEvent | None = None,
        run_id: str | None = None,
    ) -> str:
        """Create a run for *graph* and start it in the background.

        Returns
        -------
        str
            The run ID

        Raises
        ------
        ConfigurationError
            If the pipeline declares a deployment but the engine has no
            deployment state machine.
        """
        definition = graph.definition
        has_deployment = definition is not None and definition.deployment is not None
        if has_deployment and self.deployment is None:
            raise ConfigurationError("deployment", "pipeline declares a deployment but no target")

        run = PipelineRun(
            run_id=run_id or _new_run_id(),
            pipeline_name=definition.name if definition is not None else "pipeline",
            trigger=trigger.model_dump(mode="json") if trigger is not None else {},
        )
        self.scheduler.prepare(graph, run)
        await self.registry.aregister(run)
        self._start(graph, run, resumed=False)
        return run.run_id

    async def arun(self, graph: PipelineGraph, trigger: TriggerEvent | None = None) -> RunReport:
        """Submit *graph* and wait for the run to finish."""
        run_id = await self.asubmit(graph, trigger)
        return await self.await_run(run_id)

    async def atrigger(self, definition: PipelineDefinition, event: TriggerEvent) -> str | None:
        """Create a run of *definition* if *event* satisfies its trigger conditions.

        Graph errors do not raise: they produce a run that failed before
        dispatch, whose report carries the error.

        Returns
        -------
        str | None
            The run ID, or None when the event does not match
        """
        if not definition.matches(event):
            logger.debug("Event {} does not trigger pipeline '{}'", event.kind, definition.name)
            return None

        try:
            graph = build_graph(definition)
        except (DirectedGraphError, ValidationError) as e:
            run = PipelineRun(
                run_id=_new_run_id(),
                pipeline_name=definition.name,
                trigger=event.model_dump(mode="json"),
                status=RunStatus.FAILED,
                error=str(e),
                completed_at=time.time(),
            )
            logger.error("Pipeline '{}' rejected: {}", definition.name, e)
            await self.registry.aregister(run)
            return run.run_id

        return await self.asubmit(graph, event)

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    async def aget_status(self, run_id: str) -> dict[str, Any]:
        """Per-job, per-step state of a run.

        Raises
        ------
        ResourceNotFoundError
            If the run is unknown.
        """
        run = await self._aget_run(run_id)
        return pipeline_run_to_storage(run)

    async def acancel(self, run_id: str) -> bool:
        """Request cancellation of an active run.

        Pending jobs are cancelled immediately; running jobs stop at their
        next step boundary. Returns False if the run is not active.
        """
        event = self._cancel_events.get(run_id)
        if event is None or event.is_set():
            return False
        logger.info("Cancelling run '{}'", run_id)
        event.set()
        return True

    async def aresume(self, run_id: str, graph: PipelineGraph) -> str:
        """Continue an interrupted run from its last recorded state.

        Succeeded (and otherwise terminal) jobs are not re-run; jobs recorded
        as running restart from their first step.

        Raises
        ------
        ResourceNotFoundError
            If the run is unknown.
        ValidationError
            If the run is still active in this engine or already finished.
        """
        if run_id in self._tasks:
            raise ValidationError("run_id", "run is still active", run_id)
        run = await self._aget_run(run_id)
        if run.status.is_terminal:
            raise ValidationError("run_id", f"run already {run.status}", run_id)
        self._start(graph, run, resumed=True)
        return run_id

    async def await_run(self, run_id: str) -> RunReport:
        """Wait for *run_id* to finish and return its report.

        Raises
        ------
        ResourceNotFoundError
            If the run is unknown.
        ValidationError
            If the run is neither active nor finished (interrupted; resume it).
        """
        task = self._tasks.get(run_id)
        if task is not None:
            return await asyncio.shield(task)
        run = await self._aget_run(run_id)
        if not run.status.is_terminal:
            raise ValidationError("run_id", "run was interrupted; resume it first", run_id)
        return RunReport.from_run(run)

    @property
    def active_runs(self) -> list[str]:
        return sorted(self._tasks)

    async def ashutdown(self) -> None:
        """Cancel every active run and wait for the tasks to finish."""
        for event in self._cancel_events.values():
            event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _aget_run(self, run_id: str) -> PipelineRun:
        run = await self.registry.aget(run_id)
        if run is None:
            raise ResourceNotFoundError("run", run_id)
        return run

    def _start(self, graph: PipelineGraph, run: PipelineRun, *, resumed: bool) -> None:
        cancel_event = asyncio.Event()
        self._cancel_events[run.run_id] = cancel_event
        task = asyncio.create_task(
            self._adrive(graph, run, cancel_event, resumed), name=f"run-{run.run_id}"
        )
        self._tasks[run.run_id] = task

        def _forget(_: asyncio.Task[RunReport]) -> None:
            self._tasks.pop(run.run_id, None)
            self._cancel_events.pop(run.run_id, None)

        task.add_done_callback(_forget)

    async def _adrive(
        self,
        graph: PipelineGraph,
        run: PipelineRun,
        cancel_event: asyncio.Event,
        resumed: bool,
    ) -> RunReport:
        set_correlation_id(run.run_id)
        await notify_observer(
            self.observer_manager,
            RunStarted(
                run_id=run.run_id,
                pipeline_name=run.pipeline_name,
                jobs=len(graph),
                resumed=resumed,
            ),
        )

        try:
            status = await self.scheduler.aexecute(
                graph, run, cancel_event, secrets=self.secrets, workdir=self.workdir
            )
        except HexCIError as e:
            # Fatal for this run only
            logger.error("Run '{}' aborted: {}", run.run_id, e)
            status = RunStatus.FAILED
            run.error = str(e)

        definition = graph.definition
        if (
            status is RunStatus.SUCCEEDED
            and definition is not None
            and definition.deployment is not None
        ):
            # Jobs are done but the run stays running until the rollout settles
            await self.registry.asave(run)
            if self._deploy_stage_succeeded(graph, run):
                status = await self._adeploy(definition, run)
            else:
                unfinished = [
                    name
                    for name, job in run.jobs.items()
                    if job.status is not JobStatus.SUCCEEDED
                ]
                run.error = (
                    f"Deployment of '{definition.deployment.service}' skipped: "
                    f"job(s) {', '.join(unfinished)} did not succeed"
                )
                logger.warning("Run '{}': {}", run.run_id, run.error)

        run.status = status
        run.completed_at = time.time()
        await self.registry.asave(run)
        report = RunReport.from_run(run)
        logger.info(
            "Run '{}' finished: {} (failed: {}, skipped: {})",
            run.run_id,
            report.status,
            report.failed_jobs or "-",
            report.skipped_jobs or "-",
        )
        await notify_observer(
            self.observer_manager,
            RunCompleted(
                run_id=run.run_id,
                status=str(report.status),
                failed_jobs=report.failed_jobs,
                skipped_jobs=report.skipped_jobs,
            ),
        )
        return report

    @staticmethod
    def _deploy_stage_succeeded(graph: PipelineGraph, run: PipelineRun) -> bool:
        """Every deploy-flagged job succeeded (all jobs if none is flagged)."""
        deploy_jobs = [name for name, node in graph.nodes.items() if node.spec.deploy]
        names = deploy_jobs or list(graph.nodes)
        return all(run.jobs[name].status is JobStatus.SUCCEEDED for name in names)

    async def _adeploy(self, definition: PipelineDefinition, run: PipelineRun) -> RunStatus:
        """Hand over to the deployment state machine; return the run's terminal status."""
        spec = definition.deployment
        assert spec is not None and self.deployment is not None
        context = {
            "run": {"id": run.run_id},
            "env": dict(definition.env),
            "secrets": self.secrets,
            "needs": {
                name: {"outputs": dict(job.outputs), "result": str(job.status)}
                for name, job in run.jobs.items()
            },
        }
        version = render(spec.version, context)

        try:
            result = await self.deployment.adeploy(spec, version=version)
        except HexCIError as e:
            logger.error("Deployment of '{}' not started: {}", spec.service, e)
            state = await self.deployment.aget_state(spec.service, spec.environment)
            run.deployment = DeploymentOutcome(
                service=spec.service,
                environment=spec.environment,
                version=version,
                final_status=str(state.status),
                succeeded=False,
                error=str(e),
            )
            run.error = str(e)
            return RunStatus.FAILED

        run.deployment = DeploymentOutcome(
            service=result.service,
            environment=result.environment,
            version=result.version,
            final_status=str(result.final_status),
            succeeded=result.succeeded,
            rolled_back=result.rolled_back,
            rollback_succeeded=result.rollback_succeeded,
            error=str(result.error) if result.error is not None else None,
        )
        if not result.succeeded:
            run.error = str(result.error)
            return RunStatus.FAILED
        return RunStatus.SUCCEEDED
