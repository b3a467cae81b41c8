"""Step runner drivers."""

from hexci.drivers.step_runner.shell import ShellStepRunner

__all__ = ["ShellStepRunner"]
