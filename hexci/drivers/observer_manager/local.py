"""Local Observer Manager - in-process implementation of the observer port.

This driver provides:
- Event type filtering (subclasses match their base types)
- Concurrent observer execution with a global limit
- Fault isolation - observer failures never fail a run
- Timeout handling for slow observers
- Thread pool for sync observers to avoid blocking the event loop
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, cast

from hexci.kernel.logging import get_logger

if TYPE_CHECKING:
    from hexci.kernel.orchestration.events import Event
    from hexci.kernel.ports.observer_manager import AsyncObserverFunc, Observer, ObserverFunc

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENT_OBSERVERS = 10
DEFAULT_OBSERVER_TIMEOUT = 5.0
DEFAULT_MAX_SYNC_WORKERS = 4


class FunctionObserver:
    """Wrapper to make functions implement the Observer protocol."""

    def __init__(self, func: ObserverFunc | AsyncObserverFunc, executor: ThreadPoolExecutor):
        self._func = func
        self._executor = executor
        self.__name__ = getattr(func, "__name__", "anonymous_observer")

    async def handle(self, event: Event) -> None:
        """Handle the event by calling the wrapped function."""
        if inspect.iscoroutinefunction(self._func):
            await self._func(event)
        else:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self._executor, self._func, event)


class LoggingObserver:
    """Observer that writes every event's ``log_message()`` to the log."""

    __name__ = "LoggingObserver"

    def __init__(self, level: str = "INFO") -> None:
        self.level = level

    async def handle(self, event: Event) -> None:
        logger.log(self.level, event.log_message())


class LocalObserverManager:
    """Local standalone implementation of the observer manager port."""

    def __init__(
        self,
        max_concurrent_observers: int = DEFAULT_MAX_CONCURRENT_OBSERVERS,
        observer_timeout: float | None = DEFAULT_OBSERVER_TIMEOUT,
        max_sync_workers: int = DEFAULT_MAX_SYNC_WORKERS,
    ) -> None:
        """Initialize the local observer manager.

        Args
        ----
            max_concurrent_observers: Maximum number of observers to run concurrently
            observer_timeout: Timeout in seconds for each observer (None = no timeout)
            max_sync_workers: Maximum thread pool workers for sync observers
        """
        self._timeout = observer_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_observers)
        self._executor = ThreadPoolExecutor(max_workers=max_sync_workers)
        self._executor_shutdown = False
        self._handlers: dict[str, Observer] = {}
        self._event_filters: dict[str, tuple[type[Event], ...] | None] = {}

    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
    ) -> str:
        """Register an observer with optional event type filtering.

        Raises
        ------
        ValueError
            If *observer_id* is already registered.
        TypeError
            If *handler* is neither callable nor an Observer.
        """
        resolved_id = observer_id or str(uuid.uuid4())
        if resolved_id in self._handlers:
            raise ValueError(f"Observer '{resolved_id}' already registered")

        if hasattr(handler, "handle"):
            observer = cast("Observer", handler)
        elif callable(handler):
            observer = FunctionObserver(handler, self._executor)
        else:
            raise TypeError(
                f"Observer must be callable or implement Observer protocol, got {type(handler)}"
            )

        if event_types is None:
            filters = None
        elif isinstance(event_types, type):
            filters = (event_types,)
        else:
            filters = tuple(event_types)

        self._handlers[resolved_id] = observer
        self._event_filters[resolved_id] = filters
        return resolved_id

    def unregister(self, handler_id: str) -> bool:
        """Unregister an observer by ID.  Returns ``True`` if it was registered."""
        self._event_filters.pop(handler_id, None)
        return self._handlers.pop(handler_id, None) is not None

    async def notify(self, event: Event) -> None:
        """Deliver *event* to every interested observer.

        Errors and timeouts are logged and never propagate.
        """
        observers = [
            (observer_id, observer)
            for observer_id, observer in self._handlers.items()
            if self._should_notify(observer_id, event)
        ]
        if not observers:
            return
        await asyncio.gather(
            *(self._safe_invoke(oid, observer, event) for oid, observer in observers)
        )

    def clear(self) -> None:
        """Remove all registered observers."""
        self._handlers.clear()
        self._event_filters.clear()

    async def close(self) -> None:
        """Close the manager and cleanup resources."""
        self.clear()
        if not self._executor_shutdown:
            self._executor.shutdown(wait=True)
            self._executor_shutdown = True

    def __len__(self) -> int:
        return len(self._handlers)

    async def __aenter__(self) -> LocalObserverManager:
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    def _should_notify(self, observer_id: str, event: Event) -> bool:
        event_filter = self._event_filters.get(observer_id)
        return event_filter is None or isinstance(event, event_filter)

    async def _safe_invoke(self, observer_id: str, observer: Observer, event: Event) -> None:
        name = getattr(observer, "__name__", observer.__class__.__name__)
        try:
            async with self._semaphore, asyncio.timeout(self._timeout):
                await observer.handle(event)
        except TimeoutError:
            logger.warning(
                "Observer {} ({}) timed out after {}s on {}",
                name,
                observer_id,
                self._timeout,
                type(event).__name__,
            )
        except Exception as e:
            logger.warning(
                "Observer {} ({}) failed for {}: {}", name, observer_id, type(event).__name__, e
            )
