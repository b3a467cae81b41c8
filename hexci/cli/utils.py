"""CLI helper utilities for hexci commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import typer
import yaml
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from hexci.kernel.config import HealthCheckDefaults, HexCIConfig, load_config
from hexci.kernel.domain.pipeline import PipelineDefinition
from hexci.kernel.domain.pipeline_run import PipelineRun
from hexci.kernel.exceptions import ConfigurationError

console = Console()

_HEALTH_CHECK_KEYS = (
    "health_check",
    "health-check",
    "staging_health_check",
    "staging-health-check",
)


class ContextProtocol(Protocol):
    """Protocol for the parts of a Typer context the helpers use."""

    @property
    def obj(self) -> dict[str, Any] | None: ...


def get_config(ctx: ContextProtocol | None) -> HexCIConfig:
    """Configuration loaded by the root callback, or loaded now."""
    obj = getattr(ctx, "obj", None)
    if isinstance(obj, dict) and isinstance(obj.get("config"), HexCIConfig):
        return obj["config"]
    return load_config()


def print_output(obj: Any, ctx: ContextProtocol | None = None) -> None:
    """Print `obj` according to `ctx.obj['output_format']`.

    If ctx is None or no format specified, pretty-print using rich.console.
    """
    fmt = None
    if ctx is not None:
        settings = getattr(ctx, "obj", None)
        if isinstance(settings, dict):
            fmt = settings.get("output_format")

    if fmt == "json":
        typer.echo(json.dumps(obj, default=str, indent=2))
    elif fmt == "yaml":
        typer.echo(yaml.safe_dump(obj, sort_keys=False))
    elif isinstance(obj, (str, int, float)):
        typer.echo(str(obj))
    else:
        console.print(obj)


def apply_health_defaults(data: dict[str, Any], defaults: HealthCheckDefaults) -> dict[str, Any]:
    """Fill health-check fields the pipeline leaves unset from configured defaults."""
    deployment = data.get("deployment")
    if not isinstance(deployment, dict):
        return data

    deployment = dict(deployment)
    for key in _HEALTH_CHECK_KEYS:
        policy = deployment.get(key)
        if not isinstance(policy, dict):
            continue
        policy = dict(policy)
        for name, value in defaults.as_policy_data().items():
            if name not in policy and name.replace("_", "-") not in policy:
                policy[name] = value
        deployment[key] = policy
    return {**data, "deployment": deployment}


def load_pipeline(
    path: Path, health_defaults: HealthCheckDefaults | None = None
) -> PipelineDefinition:
    """Read a pipeline YAML file into a validated definition.

    Raises
    ------
    ConfigurationError
        If the file cannot be read, is not valid YAML, or does not describe a pipeline
    """
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(str(path), f"invalid YAML: {e}") from e
    except OSError as e:
        raise ConfigurationError(str(path), str(e)) from e

    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "a pipeline document must be a mapping")
    if health_defaults is not None:
        data = apply_health_defaults(data, health_defaults)
    data.setdefault("name", path.stem)

    try:
        return PipelineDefinition.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(str(path), str(e)) from e


_STATUS_STYLES = {
    "succeeded": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
    "running": "cyan",
    "pending": "white",
}


def styled_status(status: str) -> str:
    """Rich markup for a run, job or step status."""
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def format_duration(started_at: float | None, completed_at: float | None) -> str:
    if started_at is None or completed_at is None:
        return "-"
    return f"{completed_at - started_at:.1f}s"


def jobs_table(run: PipelineRun, *, steps: bool = False) -> Table:
    """Per-job (and optionally per-step) status table of a run."""
    table = Table(title=f"Run {run.run_id} ({run.pipeline_name})")
    table.add_column("Job", style="bold")
    if steps:
        table.add_column("Step")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", style="dim")

    for job in run.jobs.values():
        detail = job.error or job.skip_reason or "; ".join(job.warnings) or ""
        duration = format_duration(job.started_at, job.completed_at)
        if not steps:
            table.add_row(job.name, styled_status(str(job.status)), duration, detail)
            continue
        table.add_row(job.name, "", styled_status(str(job.status)), duration, detail)
        for step in job.steps:
            table.add_row(
                "",
                step.name,
                styled_status(str(step.status)),
                format_duration(step.started_at, step.completed_at),
                step.error or "",
            )
    return table
