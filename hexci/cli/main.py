"""hexci CLI - Main entrypoint."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from hexci import __version__
from hexci.cli.commands import run_cmd, runs_cmd, validate_cmd
from hexci.kernel.config import load_config
from hexci.kernel.exceptions import ConfigurationError
from hexci.kernel.logging import configure_logging

# Create the main Typer app
app = typer.Typer(
    name="hexci",
    help="hexCI - Pipeline orchestration engine: jobs, matrices, caches and staged deployments.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()

app.command("validate", help="Validate a pipeline file and show its execution waves")(
    validate_cmd.validate
)
app.command("run", help="Run a pipeline locally")(run_cmd.run)
app.add_typer(runs_cmd.app, name="runs", help="Inspect and archive recorded runs")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold blue]hexCI[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Suppress non-error output"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable verbose logging"),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Output machine-readable YAML"),
    config_path: Path | None = typer.Option(
        None, "--config", "-c", help="Configuration file (hexci.toml or pyproject.toml)"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level: debug|info|warning|error"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """hexCI - run CI/CD pipelines from declarative YAML files.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if ctx.obj is None:
        ctx.obj = {}

    try:
        config = load_config(config_path)
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    output_format = "pretty"
    if json_out:
        output_format = "json"
    elif yaml_out:
        output_format = "yaml"

    # Flags win over configuration
    effective_level = (log_level or config.logging.level).upper()
    if quiet:
        effective_level = "ERROR"
    elif verbose:
        effective_level = "DEBUG"
    if effective_level == "WARN":
        effective_level = "WARNING"

    configure_logging(
        level=effective_level,  # type: ignore[arg-type]
        format=config.logging.format,
        output_file=config.logging.output_file,
        use_color=config.logging.use_color,
        include_timestamp=config.logging.include_timestamp,
        enable_stdlib_bridge=config.logging.enable_stdlib_bridge,
        backtrace=config.logging.backtrace,
        diagnose=config.logging.diagnose,
    )

    ctx.obj.update({
        "config": config,
        "quiet": quiet,
        "verbose": verbose,
        "output_format": output_format,
        "log_level": effective_level,
    })


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
