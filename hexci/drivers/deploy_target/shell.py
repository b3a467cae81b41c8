"""DeployTarget driver that delegates to shell commands.

The commands are templates rendered with ``${{ service }}``,
``${{ environment }}``, ``${{ version }}`` and ``${{ strategy }}``::

    target = ShellDeployTarget(
        deploy_command="./deploy.sh ${{ environment }} ${{ version }}",
        rollback_command="./rollback.sh ${{ environment }} ${{ version }}",
    )
"""

from __future__ import annotations

from hexci.kernel.domain.pipeline import DeploymentStrategy
from hexci.kernel.exceptions import DeploymentError
from hexci.kernel.expressions import render
from hexci.kernel.logging import get_logger
from hexci.kernel.ports.step_runner import StepInvocation, StepRunner

logger = get_logger(__name__)


class ShellDeployTarget:
    """Runs a deploy or rollback command through a StepRunner."""

    def __init__(
        self,
        deploy_command: str,
        rollback_command: str,
        runner: StepRunner | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        if runner is None:
            from hexci.drivers.step_runner.shell import ShellStepRunner  # noqa: PLC0415

            runner = ShellStepRunner()
        self.deploy_command = deploy_command
        self.rollback_command = rollback_command
        self.runner = runner
        self.env = dict(env or {})

    async def adeploy(
        self,
        service: str,
        environment: str,
        version: str,
        strategy: DeploymentStrategy,
    ) -> None:
        """Run the deploy command.  Raises DeploymentError on a non-zero exit."""
        await self._arun(
            "deploy",
            self.deploy_command,
            service,
            environment,
            {"version": version, "strategy": str(strategy)},
        )

    async def arollback(self, service: str, environment: str, version: str | None) -> None:
        """Run the rollback command.  Raises DeploymentError on a non-zero exit."""
        await self._arun(
            "rollback",
            self.rollback_command,
            service,
            environment,
            {"version": version or "", "strategy": ""},
        )

    async def _arun(
        self,
        action: str,
        template: str,
        service: str,
        environment: str,
        extra: dict[str, str],
    ) -> None:
        context = {"service": service, "environment": environment, **extra}
        command = render(template, context, strict=True)
        logger.info("{} '{}' to '{}': {}", action.title(), service, environment, command)
        invocation = StepInvocation(
            job=f"{action}:{service}", step=environment, command=command, env=self.env
        )
        result = await self.runner.arun(invocation)
        if not result.ok:
            detail = result.stderr.strip() or f"exit code {result.exit_code}"
            raise DeploymentError(service, environment, f"{action} command failed: {detail}")
