"""Run command for hexci CLI: execute a pipeline file locally."""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from hexci.cli.utils import get_config, jobs_table, load_pipeline, styled_status
from hexci.drivers.deploy_target.shell import ShellDeployTarget
from hexci.drivers.health_probe.http import HttpHealthProbe
from hexci.drivers.observer_manager.local import LocalObserverManager, LoggingObserver
from hexci.drivers.step_runner.shell import ShellStepRunner
from hexci.kernel.config import HexCIConfig
from hexci.kernel.domain.pipeline import PipelineDefinition, TriggerEvent, TriggerKind
from hexci.kernel.domain.pipeline_run import PipelineRun, RunReport, RunStatus
from hexci.kernel.engine import PipelineEngine
from hexci.kernel.exceptions import ConfigurationError
from hexci.kernel.orchestration.actions import ActionRegistry
from hexci.kernel.orchestration.deployment import DeploymentStateMachine
from hexci.kernel.orchestration.events import HealthCheckAttempted, JobCompleted, StepCompleted
from hexci.stdlib.actions import register_store_actions
from hexci.stdlib.adapters.sqlite.collection_sqlite import SQLiteCollectionStorage
from hexci.stdlib.lib.cache_store import ArtifactStore, CacheStore
from hexci.stdlib.lib.run_registry import RunRegistry

console = Console()


async def run_pipeline(
    definition: PipelineDefinition,
    event: TriggerEvent,
    config: HexCIConfig,
    *,
    state_path: Path,
    workdir: Path,
    deploy_command: str | None = None,
    rollback_command: str | None = None,
) -> tuple[RunReport, PipelineRun] | None:
    """Trigger *definition* with *event* and wait for the run.

    Returns
    -------
    tuple[RunReport, PipelineRun] | None
        The report and final run record, or None if the event does not
        trigger the pipeline

    Raises
    ------
    ConfigurationError
        If the pipeline declares a deployment and no deploy command is given
    """
    if definition.deployment is not None and not (deploy_command and rollback_command):
        raise ConfigurationError(
            "deployment",
            "pipeline declares a deployment: pass --deploy-command and --rollback-command",
        )

    storage = SQLiteCollectionStorage(db_path=str(state_path))
    probe = HttpHealthProbe()
    async with LocalObserverManager() as observers:
        observers.register(
            LoggingObserver(),
            observer_id="cli-log",
            event_types=(JobCompleted, StepCompleted, HealthCheckAttempted),
        )
        actions = register_store_actions(
            ActionRegistry(),
            CacheStore(storage, scope=definition.name),
            ArtifactStore(
                storage, default_retention_days=config.engine.artifact_retention_days
            ),
            root=workdir,
        )
        deployment = None
        if definition.deployment is not None:
            assert deploy_command is not None and rollback_command is not None
            deployment = DeploymentStateMachine(
                ShellDeployTarget(deploy_command, rollback_command),
                probe,
                storage=storage,
                observer_manager=observers,
            )
        registry = RunRegistry(storage)
        engine = PipelineEngine(
            ShellStepRunner(),
            registry=registry,
            actions=actions,
            observer_manager=observers,
            deployment=deployment,
            max_parallel=config.engine.max_parallel,
            default_step_timeout=config.engine.default_step_timeout,
            secrets=config.secrets,
            workdir=workdir,
        )
        try:
            run_id = await engine.atrigger(definition, event)
            if run_id is None:
                return None
            report = await engine.await_run(run_id)
            run = await registry.aget(run_id)
            assert run is not None
            return report, run
        finally:
            await engine.ashutdown()
            await probe.aclose()
            await storage.aclose()


def run(
    ctx: typer.Context,
    pipeline_file: Annotated[
        Path,
        typer.Argument(help="Pipeline YAML file", exists=True, dir_okay=False, readable=True),
    ],
    event: Annotated[
        TriggerKind, typer.Option("--event", "-e", help="Trigger event kind")
    ] = TriggerKind.MANUAL,
    ref: Annotated[
        str | None, typer.Option("--ref", help="Git ref, e.g. refs/heads/main or refs/tags/v1")
    ] = None,
    sha: Annotated[str | None, typer.Option("--sha", help="Commit SHA")] = None,
    max_parallel: Annotated[
        int | None, typer.Option("--max-parallel", "-j", min=1, help="Global job cap")
    ] = None,
    state: Annotated[
        Path | None, typer.Option("--state", help="SQLite state file (default from config)")
    ] = None,
    workdir: Annotated[
        Path | None, typer.Option("--workdir", "-C", help="Working directory for steps")
    ] = None,
    deploy_command: Annotated[
        str | None,
        typer.Option("--deploy-command", help="Deploy command template (${{ environment }}, ...)"),
    ] = None,
    rollback_command: Annotated[
        str | None, typer.Option("--rollback-command", help="Rollback command template")
    ] = None,
) -> None:
    """Run a pipeline locally and print the per-job report.

    Exits with status 1 unless the run succeeds.

    Examples
    --------
    hexci run ci.yaml
    hexci run ci.yaml --event push --ref refs/heads/main -j 4
    """
    config = get_config(ctx)
    if max_parallel is not None:
        config = dataclasses.replace(
            config, engine=dataclasses.replace(config.engine, max_parallel=max_parallel)
        )

    try:
        definition = load_pipeline(pipeline_file, config.health_check)
        result = asyncio.run(
            run_pipeline(
                definition,
                TriggerEvent(kind=event, ref=ref, sha=sha),
                config,
                state_path=state or config.engine.state_file,
                workdir=(workdir or Path.cwd()).resolve(),
                deploy_command=deploy_command,
                rollback_command=rollback_command,
            )
        )
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if result is None:
        console.print(f"[yellow]Event '{event}' does not trigger pipeline '{definition.name}'[/]")
        return

    report, record = result
    console.print(jobs_table(record))
    console.print(f"Run [bold]{report.run_id}[/bold]: {styled_status(str(report.status))}")
    if report.error:
        console.print(f"[red]{report.error}[/red]")
    if report.deployment is not None:
        outcome = report.deployment
        console.print(
            f"Deployment {outcome.service} {outcome.version} → {outcome.environment}: "
            f"{styled_status(outcome.final_status)}"
            + (" (rolled back)" if outcome.rolled_back else "")
        )
    if report.status is not RunStatus.SUCCEEDED:
        raise typer.Exit(1)
