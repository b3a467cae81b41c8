"""Centralized logging configuration for hexCI using Loguru.

Provides consistent logging across the engine with support for:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based configuration
- Correlation IDs (the engine binds the pipeline run ID)
- Idempotent configuration

Examples
--------
Basic usage:

>>> from hexci.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Run started", run_id="123")

Configure logging globally::

    from hexci.kernel.logging import configure_logging
    configure_logging(level="DEBUG", format="json")
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from loguru import logger
from rich.logging import RichHandler

if TYPE_CHECKING:
    import types

    from loguru import Logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich"]

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []

# Correlation ID context variable, set to the run ID while a run executes
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _inject_correlation_id(record: dict) -> None:
    record["extra"].setdefault("cid", correlation_id.get())


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    enable_stdlib_bridge: bool = False,
    backtrace: bool = True,
    diagnose: bool = True,
) -> None:
    """Configure global logging for hexCI.

    Calling it again with the same configuration is a no-op.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output
    format : LogFormat, default="structured"
        Output format:
        - "console": Simple console output (no colors)
        - "json": JSON lines for log aggregation
        - "structured": Loguru format with colors and correlation ID
        - "rich": Rich console handler
    output_file : str | Path | None, default=None
        Optional file path to write JSON logs to (in addition to console)
    use_color : bool, default=True
        Use ANSI color codes in structured format (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    force_reconfigure : bool, default=False
        Force reconfiguration even if already configured with same settings
    enable_stdlib_bridge : bool, default=False
        Route stdlib logging (httpx, aiosqlite) through Loguru
    backtrace : bool, default=True
        Enable backtrace for debugging
    diagnose : bool, default=True
        Enable diagnose mode with variable values (disable in production)
    """
    global _CURRENT_CONFIG

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "enable_stdlib_bridge": enable_stdlib_bridge,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Remove only handlers we added, pytest and embedding apps keep theirs
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()

    logger.configure(patcher=_inject_correlation_id)

    if format == "rich":
        rich_handler = RichHandler(
            rich_tracebacks=True,
            markup=False,
            show_time=include_timestamp,
            show_level=True,
            show_path=True,
        )
        handler_id = logger.add(
            sink=rich_handler,
            level=level,
            format="[{extra[cid]}] {message}",
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    elif format == "json":
        handler_id = logger.add(
            sink=sys.stderr,
            level=level,
            serialize=True,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    elif format == "structured":
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        colorize = use_color and sys.stderr.isatty()
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}] <magenta>{{extra[cid]}}</magenta> "
            "<cyan>{name}:{function}:{line}</cyan> | <level>{message}</level>"
        )
        handler_id = logger.add(
            sink=sys.stderr,
            level=level,
            format=structured_format,
            colorize=colorize,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        console_format = f"{timestamp_fmt}{{level: <8}} | {{extra[cid]}} | {{name}} | {{message}}"
        handler_id = logger.add(
            sink=sys.stderr,
            level=level,
            format=console_format,
            colorize=False,
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        handler_id = logger.add(
            sink=output_path,
            level=level,
            serialize=True,
            rotation="10 MB",
            retention="1 week",
            compression="zip",
            backtrace=backtrace,
            diagnose=diagnose,
        )
        _HANDLER_IDS.append(handler_id)

    if enable_stdlib_bridge:
        enable_stdlib_logging_bridge()

    _CURRENT_CONFIG = current_config


@lru_cache(maxsize=256)
def get_logger(name: str) -> Logger:
    """Get a logger bound with the given module name (cached).

    If ``configure_logging()`` has not been called yet, logging is initialised
    from ``HEXCI_LOG_LEVEL`` / ``HEXCI_LOG_FORMAT``.

    Examples
    --------
    >>> logger = get_logger(__name__)
    >>> logger.debug("Dispatching job {job}", job="build")
    """
    _ensure_configured()
    return logger.bind(module=name)


def enable_stdlib_logging_bridge() -> None:
    """Redirect stdlib ``logging`` records to Loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            level: str | int
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            frame: types.FrameType | None = sys._getframe(6)
            depth = 6
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def set_correlation_id(cid: str) -> contextvars.Token[str]:
    """Set the correlation ID for the current context and return the reset token."""
    return correlation_id.set(cid)


def get_correlation_id() -> str:
    """Get the current correlation ID, or "-" if not set.

    Examples
    --------
    >>> clear_correlation_id()
    >>> get_correlation_id()
    '-'
    """
    return correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current context."""
    correlation_id.set("-")


def _ensure_configured() -> None:
    global _CURRENT_CONFIG

    if _CURRENT_CONFIG is None:
        level = os.getenv("HEXCI_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("HEXCI_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
