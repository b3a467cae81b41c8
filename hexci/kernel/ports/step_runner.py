"""StepRunner port: executes the shell command of a step.

The engine only depends on this protocol; the default driver is
:class:`~hexci.drivers.step_runner.shell.ShellStepRunner`.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable


@dataclass(slots=True)
class StepInvocation:
    """Everything a runner needs to execute one command."""

    job: str
    step: str
    command: str
    env: dict[str, str] = field(default_factory=dict)
    workdir: Path | None = None
    runs_on: str | None = None


@dataclass(slots=True)
class StepResult:
    """Result of a command.

    ``outputs`` are named string values for later steps; ``env_updates``
    are exported variables applied to the remaining steps of the job.
    """

    exit_code: int = 0
    outputs: dict[str, str] = field(default_factory=dict)
    env_updates: dict[str, str] = field(default_factory=dict)
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class StepRunner(Protocol):
    """Port interface for running step commands."""

    @abstractmethod
    async def arun(self, invocation: StepInvocation) -> StepResult:
        """Run the command and return its result.

        Implementations must be cancellable: the executor enforces timeouts
        by cancelling the awaiting task.
        """
        ...
