"""Action registry: resolves ``uses:`` references to async callables.

Actions receive an :class:`ActionCall` and return a
:class:`~hexci.kernel.ports.step_runner.StepResult`. Built-in cache and
artifact actions are registered by :func:`hexci.stdlib.actions.register_store_actions`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from hexci.kernel.exceptions import ResourceNotFoundError
from hexci.kernel.ports.step_runner import StepResult


@dataclass(slots=True)
class ActionCall:
    """Inputs of one action invocation."""

    run_id: str
    job: str
    step: str
    inputs: dict[str, Any] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)


Action = Callable[[ActionCall], Awaitable[StepResult]]


class ActionRegistry:
    """Name → action mapping. Versions (``name@v1``) resolve to the bare name."""

    def __init__(self) -> None:
        self._actions: dict[str, Action] = {}

    def register(self, name: str, action: Action) -> None:
        self._actions[name] = action

    def resolve(self, reference: str) -> Action:
        """Look up the action for a ``uses`` reference.

        Raises
        ------
        ResourceNotFoundError
            If no action is registered under the reference.
        """
        name = reference.split("@", 1)[0]
        try:
            return self._actions[name]
        except KeyError:
            raise ResourceNotFoundError("action", reference, sorted(self._actions)) from None

    def __contains__(self, reference: object) -> bool:
        return isinstance(reference, str) and reference.split("@", 1)[0] in self._actions

    def __len__(self) -> int:
        return len(self._actions)
