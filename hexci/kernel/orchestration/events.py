"""Simple event data classes for the hexCI event system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hexci.kernel.ports.observer_manager import ObserverManager


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event."""
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Run events
@dataclass(slots=True)
class RunStarted(Event):
    """A pipeline run has started (or resumed)."""

    run_id: str
    pipeline_name: str
    jobs: int
    resumed: bool = False

    def log_message(self) -> str:
        verb = "resumed" if self.resumed else "started"
        return f"Run '{self.run_id}' ({self.pipeline_name}) {verb} with {self.jobs} job(s)"


@dataclass(slots=True)
class RunCompleted(Event):
    """A pipeline run reached a terminal status."""

    run_id: str
    status: str
    failed_jobs: list[str] = field(default_factory=list)
    skipped_jobs: list[str] = field(default_factory=list)

    def log_message(self) -> str:
        failed = f", failed: {', '.join(self.failed_jobs)}" if self.failed_jobs else ""
        return f"Run '{self.run_id}' finished: {self.status}{failed}"


# Job events
@dataclass(slots=True)
class JobStarted(Event):
    """A job was dispatched."""

    run_id: str
    name: str
    dependencies: tuple[str, ...] = ()

    def log_message(self) -> str:
        deps = f" (needs: {', '.join(self.dependencies)})" if self.dependencies else ""
        return f"Job '{self.name}' started{deps}"


@dataclass(slots=True)
class JobCompleted(Event):
    """A job reached a terminal status after running."""

    run_id: str
    name: str
    status: str
    duration_ms: float
    warnings: list[str] = field(default_factory=list)

    def log_message(self) -> str:
        extra = f" with {len(self.warnings)} warning(s)" if self.warnings else ""
        return f"Job '{self.name}' {self.status} in {self.duration_ms / 1000:.2f}s{extra}"


@dataclass(slots=True)
class JobSkipped(Event):
    """A job was skipped because of its dependencies."""

    run_id: str
    name: str
    reason: str | None = None

    def log_message(self) -> str:
        return f"Job '{self.name}' skipped: {self.reason or 'unknown'}"


@dataclass(slots=True)
class JobCancelled(Event):
    """A job was cancelled before or while running."""

    run_id: str
    name: str
    reason: str | None = None

    def log_message(self) -> str:
        return f"Job '{self.name}' cancelled: {self.reason or 'unknown'}"


# Step events
@dataclass(slots=True)
class StepCompleted(Event):
    """A step finished (successfully or not)."""

    run_id: str
    job: str
    step: str
    status: str
    duration_ms: float
    error: str | None = None

    def log_message(self) -> str:
        error = f": {self.error}" if self.error else ""
        return f"Step '{self.step}' of job '{self.job}' {self.status}{error}"


# Deployment events
@dataclass(slots=True)
class DeploymentTransitioned(Event):
    """The deployment state machine changed state."""

    service: str
    environment: str
    from_state: str
    to_state: str
    reason: str | None = None

    def log_message(self) -> str:
        reason = f" ({self.reason})" if self.reason else ""
        return (
            f"Deployment '{self.service}/{self.environment}': "
            f"{self.from_state} -> {self.to_state}{reason}"
        )


@dataclass(slots=True)
class HealthCheckAttempted(Event):
    """One health probe completed."""

    environment: str
    attempt: int
    healthy: bool
    counted: bool = True
    detail: str | None = None

    def log_message(self) -> str:
        state = "healthy" if self.healthy else "unhealthy"
        grace = "" if self.counted else " (start period)"
        return f"Health check #{self.attempt} for '{self.environment}': {state}{grace}"


async def notify_observer(observer_manager: ObserverManager | None, event: Event) -> None:
    """Notify the observer manager of an event if one is configured."""
    if observer_manager is not None:
        await observer_manager.notify(event)
