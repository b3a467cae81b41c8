"""hexCI configuration: TOML files with environment overrides."""

from hexci.kernel.config.loader import ConfigLoader, clear_config_cache, load_config
from hexci.kernel.config.models import EngineConfig, HealthCheckDefaults, HexCIConfig, LoggingConfig

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "HealthCheckDefaults",
    "HexCIConfig",
    "LoggingConfig",
    "clear_config_cache",
    "load_config",
]
