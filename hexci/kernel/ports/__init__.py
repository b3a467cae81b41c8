"""Port interfaces for hexCI's external collaborators."""

from hexci.kernel.ports.data_store import SupportsCollectionStorage
from hexci.kernel.ports.deploy_target import DeployTarget
from hexci.kernel.ports.health_probe import HealthProbe, ProbeResult
from hexci.kernel.ports.observer_manager import Observer, ObserverManager
from hexci.kernel.ports.step_runner import StepInvocation, StepResult, StepRunner

__all__ = [
    "DeployTarget",
    "HealthProbe",
    "Observer",
    "ObserverManager",
    "ProbeResult",
    "StepInvocation",
    "StepResult",
    "StepRunner",
    "SupportsCollectionStorage",
]
