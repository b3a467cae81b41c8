"""hexCI - CI/CD pipeline orchestration engine.

Declarative pipelines (jobs, steps, matrices, triggers) are validated into a
DAG, scheduled with dependency policies and concurrency limits, and handed
over to a health-check-gated deployment state machine.
"""

from typing import TYPE_CHECKING, Any

# Version is defined in pyproject.toml and read dynamically
try:
    from importlib.metadata import version

    __version__ = version("hexci")
except Exception:
    __version__ = "0.0.0.dev0"  # Fallback for development installs

from hexci.kernel.domain import (
    JobStatus,
    PipelineDefinition,
    PipelineGraph,
    RunReport,
    RunStatus,
    TriggerEvent,
    TriggerKind,
)
from hexci.kernel.engine import PipelineEngine
from hexci.kernel.exceptions import HexCIError
from hexci.kernel.orchestration.deployment import DeploymentStateMachine
from hexci.kernel.orchestration.graph_builder import build_graph

if TYPE_CHECKING:
    from hexci.drivers.step_runner.shell import ShellStepRunner
    from hexci.stdlib.adapters.memory.collection_memory import InMemoryCollectionStorage
    from hexci.stdlib.adapters.sqlite.collection_sqlite import SQLiteCollectionStorage

_LAZY_EXPORTS = {
    "ShellStepRunner": "hexci.drivers.step_runner.shell",
    "InMemoryCollectionStorage": "hexci.stdlib.adapters.memory.collection_memory",
    "SQLiteCollectionStorage": "hexci.stdlib.adapters.sqlite.collection_sqlite",
}


def __getattr__(name: str) -> Any:
    """Lazy import for drivers and storage adapters.

    Raises
    ------
    AttributeError
        If the attribute does not exist
    """
    if module_name := _LAZY_EXPORTS.get(name):
        import importlib

        return getattr(importlib.import_module(module_name), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "DeploymentStateMachine",
    "HexCIError",
    "InMemoryCollectionStorage",
    "JobStatus",
    "PipelineDefinition",
    "PipelineEngine",
    "PipelineGraph",
    "RunReport",
    "RunStatus",
    "SQLiteCollectionStorage",
    "ShellStepRunner",
    "TriggerEvent",
    "TriggerKind",
    "build_graph",
    "__version__",
]
