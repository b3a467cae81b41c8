"""HealthProbe port: checks whether a deployed version is serving correctly."""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of one probe."""

    healthy: bool
    status_code: int | None = None
    detail: str | None = None


@runtime_checkable
class HealthProbe(Protocol):
    """Port interface for health probes (URL plus success predicate)."""

    @abstractmethod
    async def aprobe(self, url: str, *, timeout: float, expected_status: int) -> ProbeResult:
        """Probe *url* once. Must not raise for an unhealthy target."""
        ...
