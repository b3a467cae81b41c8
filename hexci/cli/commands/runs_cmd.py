"""Runs commands for hexci CLI: inspect and archive recorded runs."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from hexci.cli.utils import get_config, jobs_table, print_output, styled_status
from hexci.kernel.domain.pipeline_run import PipelineRun, RunStatus, pipeline_run_to_storage
from hexci.stdlib.adapters.sqlite.collection_sqlite import SQLiteCollectionStorage
from hexci.stdlib.lib.cache_store import ArtifactStore
from hexci.stdlib.lib.run_registry import RunRegistry

app = typer.Typer()
console = Console()

StateOption = Annotated[
    Path | None, typer.Option("--state", help="SQLite state file (default from config)")
]


def _state_path(ctx: typer.Context, state: Path | None) -> Path:
    path = state or get_config(ctx).engine.state_file
    if not path.exists():
        console.print(f"[red]No state file at {path}[/red]")
        raise typer.Exit(1)
    return path


def _timestamp(value: float | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


async def _alist(
    path: Path, status: RunStatus | None, limit: int, archived: bool
) -> list[PipelineRun]:
    async with SQLiteCollectionStorage(db_path=str(path)) as storage:
        registry = RunRegistry(storage)
        if archived:
            return await registry.alist_archived(limit=limit)
        return await registry.alist(status=status, limit=limit)


async def _aget(path: Path, run_id: str) -> tuple[PipelineRun | None, list[str]]:
    async with SQLiteCollectionStorage(db_path=str(path)) as storage:
        run = await RunRegistry(storage).aget(run_id)
        artifacts = await ArtifactStore(storage).alist(run_id)
        return run, [artifact.name for artifact in artifacts]


async def _aarchive(path: Path, days: float) -> tuple[list[str], int]:
    async with SQLiteCollectionStorage(db_path=str(path)) as storage:
        archived = await RunRegistry(storage).aarchive_expired(days)
        purged = await ArtifactStore(storage).apurge_expired()
        return archived, len(purged)


@app.command("list")
def list_runs(
    ctx: typer.Context,
    status: Annotated[
        RunStatus | None, typer.Option("--status", "-s", help="Only runs with this status")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum rows")] = 20,
    archived: Annotated[bool, typer.Option("--archived", help="List archived runs")] = False,
    state: StateOption = None,
) -> None:
    """List recorded runs, newest first."""
    runs = asyncio.run(_alist(_state_path(ctx, state), status, limit, archived))
    if ctx.obj and ctx.obj.get("output_format") in {"json", "yaml"}:
        print_output([pipeline_run_to_storage(run) for run in runs], ctx)
        return
    if not runs:
        console.print("[yellow]No runs recorded[/yellow]")
        return

    table = Table(title="Archived runs" if archived else "Runs")
    table.add_column("Run ID", style="cyan")
    table.add_column("Pipeline")
    table.add_column("Status")
    table.add_column("Created")
    table.add_column("Failed jobs", style="red")
    for run in runs:
        table.add_row(
            run.run_id,
            run.pipeline_name,
            styled_status(str(run.status)),
            _timestamp(run.created_at),
            ", ".join(run.failed_jobs) or "-",
        )
    console.print(table)


@app.command("status")
def run_status(
    ctx: typer.Context,
    run_id: Annotated[str, typer.Argument(help="Run ID")],
    steps: Annotated[bool, typer.Option("--steps", help="Show per-step state")] = False,
    state: StateOption = None,
) -> None:
    """Show per-job (and per-step) state of a run."""
    run, artifacts = asyncio.run(_aget(_state_path(ctx, state), run_id))
    if run is None:
        console.print(f"[red]Run {run_id} not found[/red]")
        raise typer.Exit(1)
    if ctx.obj and ctx.obj.get("output_format") in {"json", "yaml"}:
        print_output({**pipeline_run_to_storage(run), "artifacts": artifacts}, ctx)
        return

    console.print(jobs_table(run, steps=steps))
    console.print(f"Status: {styled_status(str(run.status))}")
    if run.error:
        console.print(f"[red]{run.error}[/red]")
    if run.deployment is not None:
        outcome = run.deployment
        console.print(
            f"Deployment {outcome.service} {outcome.version} → {outcome.environment}: "
            f"{styled_status(outcome.final_status)}"
        )
    if artifacts:
        console.print(f"Artifacts: {', '.join(artifacts)}")


@app.command("archive")
def archive_runs(
    ctx: typer.Context,
    days: Annotated[
        float | None,
        typer.Option("--days", help="Retention period in days (default from config)"),
    ] = None,
    state: StateOption = None,
) -> None:
    """Archive finished runs older than the retention period and purge expired artifacts."""
    retention = days if days is not None else get_config(ctx).engine.run_retention_days
    archived, purged = asyncio.run(_aarchive(_state_path(ctx, state), retention))
    console.print(
        f"[green]Archived {len(archived)} run(s)[/green], purged {purged} expired artifact(s)"
    )
    for run_id in archived:
        console.print(f"  {run_id}")
