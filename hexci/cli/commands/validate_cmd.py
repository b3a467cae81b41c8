"""Pipeline validation command for hexci CLI."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from hexci.cli.utils import get_config, load_pipeline
from hexci.kernel.exceptions import ConfigurationError, DirectedGraphError, ValidationError
from hexci.kernel.orchestration.graph_builder import build_graph

console = Console()


def validate(
    ctx: typer.Context,
    pipeline_file: Annotated[
        Path,
        typer.Argument(
            help="Path to YAML pipeline file to validate",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
) -> None:
    """Validate a pipeline file and show its execution waves.

    This command checks:
    - YAML syntax and the pipeline schema
    - Job, concurrency group and environment names
    - Dependency references and cycles
    - Matrix expansion

    Examples
    --------
    hexci validate .hexci/ci.yaml
    """
    config = get_config(ctx)
    try:
        definition = load_pipeline(pipeline_file, config.health_check)
        graph = build_graph(definition)
    except (ConfigurationError, DirectedGraphError, ValidationError) as e:
        console.print(f"[red]✗ Validation failed:[/red] {pipeline_file}")
        console.print(f"  {e}")
        raise typer.Exit(1) from e

    console.print(
        f"[green]✓ Validation successful:[/green] {pipeline_file} "
        f"([bold]{definition.name}[/bold], {len(graph)} job(s))"
    )

    table = Table(title="Execution waves")
    table.add_column("Wave", justify="right", style="cyan")
    table.add_column("Job")
    table.add_column("Needs", style="dim")
    table.add_column("Concurrency group", style="magenta")
    for index, wave in enumerate(graph.waves(), start=1):
        for name in wave:
            node = graph.nodes[name]
            table.add_row(
                str(index),
                name,
                ", ".join(sorted(node.deps)) or "-",
                node.concurrency_group or "-",
            )
    console.print(table)

    if definition.deployment is not None:
        deployment = definition.deployment
        console.print(
            f"Deployment: [bold]{deployment.service}[/bold] "
            f"{deployment.staging_environment} → {deployment.environment} "
            f"({deployment.strategy})"
        )
