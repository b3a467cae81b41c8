"""TOML configuration loader for hexCI."""

from __future__ import annotations

import os
import re
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from hexci.kernel.config.models import EngineConfig, HealthCheckDefaults, HexCIConfig, LoggingConfig
from hexci.kernel.exceptions import ConfigurationError
from hexci.kernel.logging import get_logger

logger = get_logger(__name__)

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

CONFIG_PATH_ENV = "HEXCI_CONFIG_PATH"
SEARCH_PATHS = ("hexci.toml", ".hexci.toml", "pyproject.toml")


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


def _optional_number(value: str, cast: type[int] | type[float]) -> int | float | None:
    return None if value.strip().lower() in {"", "none", "unbounded"} else cast(value)


class ConfigLoader:
    """Loads and processes hexCI configuration from TOML files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

    def load_from_toml(self, path: str | Path | None = None) -> HexCIConfig:
        """Load configuration from a TOML file.

        Parameters
        ----------
        path : str | Path | None
            Path to TOML file. If None, searches ``HEXCI_CONFIG_PATH``,
            hexci.toml, .hexci.toml and pyproject.toml (``[tool.hexci]``)

        Raises
        ------
        FileNotFoundError
            If no configuration file is found
        ConfigurationError
            If the file is not valid TOML or a value is invalid
        """
        config_path = self._find_config_file(path)
        return _load_and_parse_cached(str(config_path.absolute()))

    def _load_and_parse(self, config_path: Path) -> HexCIConfig:
        logger.debug("Loading configuration from {}", config_path)
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(str(config_path), f"invalid TOML: {e}") from e

        if "tool" in data and "hexci" in data["tool"]:
            section = data["tool"]["hexci"]
        elif config_path.name == "pyproject.toml":
            logger.debug("No [tool.hexci] section found in pyproject.toml, using defaults")
            section = {}
        else:
            section = data

        return self._parse_config(self._substitute_env_vars(section))

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv(CONFIG_PATH_ENV):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from {}: {}", CONFIG_PATH_ENV, config_path)
                return config_path
            logger.warning("{} set but file not found: {}", CONFIG_PATH_ENV, config_path)

        for candidate in SEARCH_PATHS:
            config_path = Path(candidate)
            if config_path.exists():
                return config_path

        raise FileNotFoundError(
            f"No configuration file found. Searched for: {', '.join(SEARCH_PATHS)}"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` with environment values (unknown ones are kept)."""
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name = match.group(1)
                value = os.environ.get(var_name)
                if value is None:
                    logger.debug(
                        "Environment variable ${{{}}} not found, keeping placeholder", var_name
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> HexCIConfig:
        try:
            return HexCIConfig(
                logging=self._parse_logging_config(data.get("logging", {})),
                engine=self._parse_engine_config(data.get("engine", {})),
                health_check=HealthCheckDefaults(**data.get("health_check", {})),
                secrets={k: str(v) for k, v in data.get("secrets", {}).items()},
                settings=dict(data.get("settings", {})),
            )
        except TypeError as e:
            raise ConfigurationError("hexci", str(e)) from e

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        """Parse logging configuration with environment variable overrides.

        Environment variables take precedence over TOML configuration:
        - HEXCI_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - HEXCI_LOG_FORMAT: Output format (console, json, structured, rich)
        - HEXCI_LOG_FILE: Optional file path for log output
        - HEXCI_LOG_COLOR: Use color output (true/false)
        """
        values = dict(logging_data)

        if env_level := os.getenv("HEXCI_LOG_LEVEL"):
            values["level"] = env_level.upper()
        if env_format := os.getenv("HEXCI_LOG_FORMAT"):
            values["format"] = env_format.lower()
        if env_file := os.getenv("HEXCI_LOG_FILE"):
            values["output_file"] = env_file
        if env_color := os.getenv("HEXCI_LOG_COLOR"):
            try:
                values["use_color"] = _parse_bool_env(env_color)
            except ValueError as e:
                logger.warning("Invalid HEXCI_LOG_COLOR value: {}", e)

        return LoggingConfig(**values)

    def _parse_engine_config(self, engine_data: dict[str, Any]) -> EngineConfig:
        """Parse engine configuration with environment variable overrides.

        - HEXCI_MAX_PARALLEL: global job cap ("none" for unbounded)
        - HEXCI_STEP_TIMEOUT: default step timeout in seconds ("none" to disable)
        - HEXCI_STATE_PATH: SQLite state file
        """
        values = dict(engine_data)

        try:
            if (env_parallel := os.getenv("HEXCI_MAX_PARALLEL")) is not None:
                values["max_parallel"] = _optional_number(env_parallel, int)
            if (env_timeout := os.getenv("HEXCI_STEP_TIMEOUT")) is not None:
                values["default_step_timeout"] = _optional_number(env_timeout, float)
        except ValueError as e:
            raise ConfigurationError("engine", f"invalid environment override: {e}") from e
        if env_state := os.getenv("HEXCI_STATE_PATH"):
            values["state_path"] = env_state

        return EngineConfig(**values)


@lru_cache(maxsize=32)
def _load_and_parse_cached(path_str: str) -> HexCIConfig:
    """Cached configuration loader."""
    return ConfigLoader()._load_and_parse(Path(path_str))


def load_config(path: str | Path | None = None) -> HexCIConfig:
    """Load configuration from a TOML file, or return defaults if none is found.

    An explicitly given *path* that does not exist is an error.
    """
    try:
        return ConfigLoader().load_from_toml(path)
    except FileNotFoundError:
        if path:
            raise
        logger.debug("No configuration file found, using defaults")
        return get_default_config()


def get_default_config() -> HexCIConfig:
    """Default configuration, with environment overrides applied."""
    return ConfigLoader()._parse_config({})


def clear_config_cache() -> None:
    """Clear the configuration cache (tests, or after editing the file)."""
    _load_and_parse_cached.cache_clear()
