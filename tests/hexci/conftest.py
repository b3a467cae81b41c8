"""Shared fakes for the hexci test suite.

The kernel ports are small protocols, so the tests drive the engine with
scripted in-process fakes instead of real shells, HTTP endpoints or deploy
tooling:

- ``runner``: a StepRunner answering from a command → ScriptedStep script
- ``checker``: a HealthProbe answering from a per-URL list of outcomes
- ``target``: a DeployTarget recording deploy/rollback calls
- ``recorder``: an ObserverManager collecting every event
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from hexci.kernel.domain.dag import PipelineGraph
from hexci.kernel.domain.pipeline import DeploymentStrategy, PipelineDefinition
from hexci.kernel.orchestration.events import Event
from hexci.kernel.orchestration.graph_builder import build_graph
from hexci.kernel.ports.health_probe import ProbeResult
from hexci.kernel.ports.step_runner import StepInvocation, StepResult


@dataclass
class ScriptedStep:
    exit_code: int = 0
    delay: float = 0.0
    outputs: dict[str, str] = field(default_factory=dict)
    env_updates: dict[str, str] = field(default_factory=dict)
    error: Exception | None = None


class FakeStepRunner:
    """StepRunner whose behaviour per command comes from ``script``."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.script: dict[str, ScriptedStep] = {}
        self.invocations: list[StepInvocation] = []
        self.timeline: list[tuple[str, str]] = []
        self.running = 0
        self.max_running = 0

    def on(self, command: str, **behaviour: Any) -> None:
        self.script[command] = ScriptedStep(**behaviour)

    @property
    def commands(self) -> list[str]:
        return [invocation.command for invocation in self.invocations]

    async def arun(self, invocation: StepInvocation) -> StepResult:
        self.invocations.append(invocation)
        step = self.script.get(invocation.command, ScriptedStep(delay=self.delay))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        self.timeline.append(("start", invocation.job))
        try:
            if step.delay:
                await asyncio.sleep(step.delay)
            if step.error is not None:
                raise step.error
            return StepResult(
                exit_code=step.exit_code,
                outputs=dict(step.outputs),
                env_updates=dict(step.env_updates),
                stderr="boom" if step.exit_code else "",
            )
        finally:
            self.running -= 1
            self.timeline.append(("end", invocation.job))


class FakeHealthProbe:
    """HealthProbe answering from ``responses[url]``; the last outcome repeats."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.responses: dict[str, list[bool]] = {}
        self.calls: list[str] = []
        self.error: Exception | None = None

    def calls_to(self, url: str) -> int:
        return self.calls.count(url)

    async def aprobe(self, url: str, *, timeout: float, expected_status: int) -> ProbeResult:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        outcomes = self.responses.get(url, [True])
        healthy = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        return ProbeResult(
            healthy=healthy,
            status_code=expected_status if healthy else 503,
            detail=None if healthy else "HTTP 503",
        )


class FakeDeployTarget:
    """DeployTarget recording ``(action, environment, version)`` calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_deploy: set[str] = set()
        self.fail_rollback = False

    async def adeploy(
        self, service: str, environment: str, version: str, strategy: DeploymentStrategy
    ) -> None:
        self.calls.append(("deploy", environment, version))
        if environment in self.fail_deploy:
            raise RuntimeError(f"cannot reach {environment}")

    async def arollback(self, service: str, environment: str, version: str | None) -> None:
        self.calls.append(("rollback", environment, version))
        if self.fail_rollback:
            raise RuntimeError("rollback refused")


class EventRecorder:
    """ObserverManager that keeps every event it is notified of."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def notify(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture()
def runner() -> FakeStepRunner:
    return FakeStepRunner()


@pytest.fixture()
def checker() -> FakeHealthProbe:
    return FakeHealthProbe()


@pytest.fixture()
def target() -> FakeDeployTarget:
    return FakeDeployTarget()


@pytest.fixture()
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture()
def make_graph() -> Callable[[dict[str, Any]], PipelineGraph]:
    """Build a validated graph from a pipeline mapping (``name`` defaults to "ci")."""

    def _make(data: dict[str, Any]) -> PipelineGraph:
        return build_graph(PipelineDefinition.model_validate({"name": "ci", **data}))

    return _make
