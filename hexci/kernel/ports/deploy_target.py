"""DeployTarget port: the cloud-deploy client (SSH, API) seen by the engine."""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from hexci.kernel.domain.pipeline import DeploymentStrategy


@runtime_checkable
class DeployTarget(Protocol):
    """Port interface for pushing a version to an environment."""

    @abstractmethod
    async def adeploy(
        self,
        service: str,
        environment: str,
        version: str,
        strategy: DeploymentStrategy,
    ) -> None:
        """Deploy *version* of *service* to *environment*. Raises on failure."""
        ...

    @abstractmethod
    async def arollback(self, service: str, environment: str, version: str | None) -> None:
        """Restore *version* (the last known-good one, or nothing deployed).

        Raises on failure.
        """
        ...
