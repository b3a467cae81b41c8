"""Observer manager drivers."""

from hexci.drivers.observer_manager.local import (
    FunctionObserver,
    LocalObserverManager,
    LoggingObserver,
)

__all__ = ["FunctionObserver", "LocalObserverManager", "LoggingObserver"]
