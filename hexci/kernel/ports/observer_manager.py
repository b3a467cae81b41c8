"""Observer Manager Port - interface for engine event observation.

Observers are read-only: they cannot affect execution, and an observer
failure never fails a run.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from hexci.kernel.orchestration.events import Event

ObserverFunc = Callable[[Event], None]
AsyncObserverFunc = Callable[[Event], Any]


class Observer(Protocol):
    """Protocol for observers that monitor events."""

    async def handle(self, event: Event) -> None:
        """Handle an event (read-only, no return value)."""
        ...


class ObserverManager(Protocol):
    """Port interface for event observation systems."""

    @abstractmethod
    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
    ) -> str:
        """Register an observer, optionally filtered by event type.

        Returns
        -------
            str: The ID of the registered observer
        """
        ...

    @abstractmethod
    def unregister(self, handler_id: str) -> bool:
        """Unregister an observer by ID."""
        ...

    @abstractmethod
    async def notify(self, event: Event) -> None:
        """Deliver *event* to every matching observer."""
        ...
