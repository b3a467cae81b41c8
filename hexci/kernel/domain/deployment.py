"""Domain models for the deployment state machine.

The machine is driven by
:class:`~hexci.kernel.orchestration.deployment.DeploymentStateMachine`.
Allowed edges::

    idle ─▶ staging_deploying ─▶ staging_healthcheck ─▶ promoting
                 │                      │                   │
                 ▼                      ▼                   ▼
            rolling_back ◀──────────────┴──── production_healthcheck ─▶ monitoring
                 │                                                          │
                 ├─▶ idle                                                   ▼
                 └─▶ failed ─▶ idle (operator reset)              staging_deploying
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class DeploymentStatus(StrEnum):
    """States of a managed service/environment pair."""

    IDLE = "idle"
    STAGING_DEPLOYING = "staging_deploying"
    STAGING_HEALTHCHECK = "staging_healthcheck"
    PROMOTING = "promoting"
    PRODUCTION_HEALTHCHECK = "production_healthcheck"
    MONITORING = "monitoring"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


DEPLOYMENT_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.IDLE: frozenset({DeploymentStatus.STAGING_DEPLOYING}),
    DeploymentStatus.STAGING_DEPLOYING: frozenset(
        {DeploymentStatus.STAGING_HEALTHCHECK, DeploymentStatus.ROLLING_BACK}
    ),
    DeploymentStatus.STAGING_HEALTHCHECK: frozenset(
        {DeploymentStatus.PROMOTING, DeploymentStatus.ROLLING_BACK}
    ),
    DeploymentStatus.PROMOTING: frozenset(
        {DeploymentStatus.PRODUCTION_HEALTHCHECK, DeploymentStatus.ROLLING_BACK}
    ),
    DeploymentStatus.PRODUCTION_HEALTHCHECK: frozenset(
        {DeploymentStatus.MONITORING, DeploymentStatus.ROLLING_BACK}
    ),
    DeploymentStatus.MONITORING: frozenset({DeploymentStatus.STAGING_DEPLOYING}),
    DeploymentStatus.ROLLING_BACK: frozenset({DeploymentStatus.IDLE, DeploymentStatus.FAILED}),
    DeploymentStatus.FAILED: frozenset({DeploymentStatus.IDLE}),
}

# States from which a new rollout may start
ROLLOUT_ENTRY_STATES = frozenset({DeploymentStatus.IDLE, DeploymentStatus.MONITORING})


def is_valid_transition(from_state: DeploymentStatus, to_state: DeploymentStatus) -> bool:
    """Check an edge against the transition table."""
    return to_state in DEPLOYMENT_TRANSITIONS.get(from_state, frozenset())


@dataclass(slots=True)
class DeploymentTransition:
    """Record of a single state change."""

    from_state: DeploymentStatus
    to_state: DeploymentStatus
    timestamp: float = field(default_factory=time.time)
    reason: str | None = None


@dataclass(slots=True)
class DeploymentState:
    """Current state of one service/environment pair."""

    service: str
    environment: str
    status: DeploymentStatus = DeploymentStatus.IDLE
    current_version: str | None = None
    last_known_good: str | None = None
    target_version: str | None = None
    history: list[DeploymentTransition] = field(default_factory=list)

    @property
    def key(self) -> str:
        return deployment_key(self.service, self.environment)


@dataclass(slots=True)
class DeploymentResult:
    """Outcome of one rollout attempt."""

    service: str
    environment: str
    version: str
    final_status: DeploymentStatus
    succeeded: bool
    rolled_back: bool = False
    rollback_succeeded: bool | None = None
    error: Exception | None = None
    transitions: list[DeploymentTransition] = field(default_factory=list)

    @property
    def path(self) -> list[DeploymentStatus]:
        """Visited states, starting with the state the rollout started from."""
        if not self.transitions:
            return [self.final_status]
        return [self.transitions[0].from_state, *(t.to_state for t in self.transitions)]


def deployment_key(service: str, environment: str) -> str:
    """Build a storage key from service and environment."""
    return f"{service}:{environment}"


def deployment_state_to_storage(state: DeploymentState) -> dict[str, Any]:
    """Serialise a DeploymentState to a storage-ready dict."""
    return dataclasses.asdict(state)


def deployment_state_from_storage(data: dict[str, Any]) -> DeploymentState:
    """Reconstruct a DeploymentState from a storage dict."""
    data = dict(data)
    data["status"] = DeploymentStatus(data["status"])
    data["history"] = [
        DeploymentTransition(
            from_state=DeploymentStatus(t["from_state"]),
            to_state=DeploymentStatus(t["to_state"]),
            timestamp=t["timestamp"],
            reason=t.get("reason"),
        )
        for t in data.get("history", [])
    ]
    return DeploymentState(**data)
