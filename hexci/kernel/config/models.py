"""Configuration data models for hexCI."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from hexci.kernel.exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for hexCI.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, rich)
    output_file : str | None, default=None
        Optional file path to write logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    enable_stdlib_bridge : bool, default=False
        Enable interception of stdlib logging for third-party libraries
    backtrace : bool, default=True
        Enable backtrace for debugging
    diagnose : bool, default=True
        Enable diagnose mode with variable values (disable in production)

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.hexci.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export HEXCI_LOG_LEVEL=DEBUG
    export HEXCI_LOG_FORMAT=json
    export HEXCI_LOG_FILE=/var/log/hexci/engine.log
    ```
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    enable_stdlib_bridge: bool = False
    backtrace: bool = True
    diagnose: bool = True


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Execution defaults for the pipeline engine.

    Attributes
    ----------
    max_parallel : int | None
        Global cap on concurrently running jobs. None means unbounded.
    default_step_timeout : float | None
        Timeout in seconds for steps that declare none. None means no timeout.
    state_path : str
        SQLite file holding runs, caches, artifacts and deployment states.
    run_retention_days : float
        Finished runs older than this are archived.
    artifact_retention_days : float
        Default artifact retention.
    """

    max_parallel: int | None = None
    default_step_timeout: float | None = 3600.0
    state_path: str = ".hexci/state.db"
    run_retention_days: float = 30.0
    artifact_retention_days: float = 90.0

    def __post_init__(self) -> None:
        """Validate engine limits.

        Raises
        ------
        ValidationError
            If a limit is not positive
        """
        if self.max_parallel is not None and self.max_parallel < 1:
            raise ValidationError("engine.max_parallel", "must be at least 1", self.max_parallel)
        if self.default_step_timeout is not None and self.default_step_timeout <= 0:
            raise ValidationError(
                "engine.default_step_timeout", "must be positive", self.default_step_timeout
            )
        if self.run_retention_days <= 0:
            raise ValidationError(
                "engine.run_retention_days", "must be positive", self.run_retention_days
            )
        if self.artifact_retention_days <= 0:
            raise ValidationError(
                "engine.artifact_retention_days", "must be positive", self.artifact_retention_days
            )

    @property
    def state_file(self) -> Path:
        return Path(self.state_path)


@dataclass(frozen=True, slots=True)
class HealthCheckDefaults:
    """Defaults applied to deployment health checks that leave a field unset."""

    interval: float = 10.0
    timeout: float = 5.0
    retries: int = 3
    start_period: float = 0.0
    expected_status: int = 200

    def as_policy_data(self) -> dict[str, Any]:
        """Field values in the shape accepted by ``HealthCheckPolicy``."""
        return {
            "interval": self.interval,
            "timeout": self.timeout,
            "retries": self.retries,
            "start_period": self.start_period,
            "expected_status": self.expected_status,
        }


@dataclass(slots=True)
class HexCIConfig:
    """Complete hexCI configuration.

    Examples
    --------
    TOML configuration in pyproject.toml:

    ```toml
    [tool.hexci.logging]
    level = "DEBUG"

    [tool.hexci.engine]
    max_parallel = 4
    default_step_timeout = 900
    state_path = ".hexci/state.db"

    [tool.hexci.health_check]
    retries = 5

    [tool.hexci.secrets]
    DEPLOY_TOKEN = "${DEPLOY_TOKEN}"
    ```
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    health_check: HealthCheckDefaults = field(default_factory=HealthCheckDefaults)
    secrets: dict[str, str] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)
