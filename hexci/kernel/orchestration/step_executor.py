"""Step executor: runs a job's steps strictly in declaration order.

This module provides the StepExecutor class that handles executing one job
with full lifecycle management: environment scoping, reference rendering,
per-step and per-job timeouts, continue-on-error policy, output capture and
cooperative cancellation at step boundaries.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from hexci.kernel.domain.pipeline import ErrorPolicy, StepSpec
from hexci.kernel.domain.pipeline_run import JobInstance, JobStatus, StepRecord, StepStatus
from hexci.kernel.exceptions import (
    HexCIError,
    JobTimeoutError,
    StepExecutionError,
    StepTimeoutError,
)
from hexci.kernel.expressions import render, render_value
from hexci.kernel.logging import get_logger
from hexci.kernel.orchestration.actions import ActionCall, ActionRegistry
from hexci.kernel.orchestration.events import StepCompleted, notify_observer
from hexci.kernel.ports.step_runner import StepInvocation, StepResult, StepRunner
from hexci.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from hexci.kernel.domain.dag import JobNode
    from hexci.kernel.ports.observer_manager import ObserverManager

logger = get_logger(__name__)

ChangeCallback = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class JobContext:
    """Run-level inputs handed to each job.

    ``env`` is the pipeline-level environment; the executor copies it, so
    nothing a job does leaks into another job.
    """

    run_id: str
    env: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)
    needs: dict[str, dict[str, Any]] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    workdir: Path | None = None
    runs_on: str | None = None


class StepExecutor:
    """Executes the steps of a single job.

    - **Ordering**: steps run one after another on a single worker
    - **Timeouts**: per-step timeout (``StepTimeoutError``) bounded by the
      remaining job timeout (``JobTimeoutError``)
    - **Error policy**: the first failing step without continue-on-error
      aborts the job; continue-on-error failures become job warnings
    - **Outputs**: ``steps.<id>.outputs`` feed later steps, declared job
      outputs feed dependent jobs through ``needs.<job>.outputs``
    - **Cancellation**: checked between steps, never mid-step

    Examples
    --------
    Example usage::

        executor = StepExecutor(ShellStepRunner(), default_step_timeout=600)
        status = await executor.aexecute_job(node, instance, JobContext(run_id="r1"))
    """

    def __init__(
        self,
        step_runner: StepRunner,
        actions: ActionRegistry | None = None,
        default_step_timeout: float | None = None,
        observer_manager: ObserverManager | None = None,
    ) -> None:
        """Initialize the step executor.

        Parameters
        ----------
        step_runner : StepRunner
            Port used for ``run:`` steps.
        actions : ActionRegistry | None
            Registry used for ``uses:`` steps.
        default_step_timeout : float | None
            Timeout in seconds for steps that declare none. None means no timeout.
        observer_manager : ObserverManager | None
            Receives a StepCompleted event per step.
        """
        self.step_runner = step_runner
        self.actions = actions or ActionRegistry()
        self.default_step_timeout = default_step_timeout
        self.observer_manager = observer_manager

    async def aexecute_job(
        self,
        node: JobNode,
        instance: JobInstance,
        context: JobContext,
        on_change: ChangeCallback | None = None,
    ) -> JobStatus:
        """Run every step of *node*, recording progress on *instance*.

        Step failures are contained here and reported via the returned
        status; only ``asyncio.CancelledError`` propagates.

        Returns
        -------
        JobStatus
            SUCCEEDED, FAILED or CANCELLED
        """
        spec = node.spec
        env = dict(context.env)
        expr_context: dict[str, Any] = {
            "env": env,
            "matrix": dict(spec.matrix_values),
            "steps": {},
            "needs": context.needs,
            "secrets": context.secrets,
            "run": {"id": context.run_id},
            "job": {"name": node.name},
        }
        env.update({k: render(v, expr_context) for k, v in spec.env.items()})

        instance.steps = [StepRecord(name=step.display_name) for step in spec.steps]
        deadline = time.monotonic() + spec.timeout if spec.timeout else None
        status = JobStatus.SUCCEEDED

        for index, step in enumerate(spec.steps):
            record = instance.steps[index]

            if context.cancel_event.is_set():
                self._finish_remaining(instance, index, StepStatus.CANCELLED)
                logger.info("Job '{}' cancelled before step '{}'", node.name, record.name)
                status = JobStatus.CANCELLED
                break

            record.status = StepStatus.RUNNING
            record.started_at = time.time()
            await _call(on_change)
            timer = Timer()

            try:
                result = await self._run_step(node.name, step, env, expr_context, context, deadline)
            except JobTimeoutError as e:
                self._record_failure(record, e)
                self._finish_remaining(instance, index + 1, StepStatus.SKIPPED)
                instance.error = str(e)
                logger.warning("{}", e)
                status = JobStatus.FAILED
                await self._notify_step(context, node.name, record, timer)
                break
            except StepExecutionError as e:
                self._record_failure(record, e)
                if step.id:
                    expr_context["steps"][step.id] = {"outputs": {}, "outcome": "failure"}
                await self._notify_step(context, node.name, record, timer)
                if step.continue_on_error is ErrorPolicy.CONTINUE:
                    instance.warnings.append(str(e))
                    logger.warning("{} (continuing)", e)
                    continue
                self._finish_remaining(instance, index + 1, StepStatus.SKIPPED)
                instance.error = str(e)
                logger.error("{}", e)
                status = JobStatus.FAILED
                break

            record.status = StepStatus.SUCCEEDED
            record.exit_code = result.exit_code
            record.outputs = dict(result.outputs)
            record.completed_at = time.time()
            env.update(result.env_updates)
            if step.id:
                expr_context["steps"][step.id] = {
                    "outputs": dict(result.outputs),
                    "outcome": "success",
                }
            await self._notify_step(context, node.name, record, timer)

        if status is JobStatus.SUCCEEDED:
            instance.outputs = {k: render(v, expr_context) for k, v in spec.outputs.items()}
        return status

    async def _run_step(
        self,
        job: str,
        step: StepSpec,
        env: dict[str, str],
        expr_context: dict[str, Any],
        context: JobContext,
        deadline: float | None,
    ) -> StepResult:
        step_env = {**env, **{k: render(v, expr_context) for k, v in step.env.items()}}
        step_context = {**expr_context, "env": step_env}
        name = step.display_name

        timeout = step.timeout or self.default_step_timeout
        job_bound = False
        if deadline is not None:
            remaining = max(deadline - time.monotonic(), 0.0)
            if timeout is None or remaining < timeout:
                timeout, job_bound = remaining, True

        try:
            async with asyncio.timeout(timeout):
                if step.uses is not None:
                    action = self.actions.resolve(step.uses)
                    result = await action(
                        ActionCall(
                            run_id=context.run_id,
                            job=job,
                            step=name,
                            inputs=render_value(dict(step.with_), step_context),
                            env=step_env,
                        )
                    )
                else:
                    assert step.run is not None
                    result = await self.step_runner.arun(
                        StepInvocation(
                            job=job,
                            step=name,
                            command=render(step.run, step_context),
                            env=step_env,
                            workdir=context.workdir,
                            runs_on=context.runs_on,
                        )
                    )
        except TimeoutError:
            if job_bound:
                raise JobTimeoutError(job, timeout or 0.0) from None
            raise StepTimeoutError(job, name, timeout or 0.0) from None
        except StepExecutionError:
            raise
        except asyncio.CancelledError:
            raise
        except HexCIError as e:
            raise StepExecutionError(job, name, str(e)) from e
        except Exception as e:
            # Runner/action crashes are step failures, never scheduler failures
            raise StepExecutionError(job, name, f"{type(e).__name__}: {e}") from e

        if not result.ok:
            raise StepExecutionError(
                job, name, f"exited with code {result.exit_code}", exit_code=result.exit_code
            )
        return result

    @staticmethod
    def _record_failure(record: StepRecord, error: Exception) -> None:
        record.status = StepStatus.FAILED
        record.error = str(error)
        record.exit_code = getattr(error, "exit_code", None)
        record.completed_at = time.time()

    @staticmethod
    def _finish_remaining(instance: JobInstance, start: int, status: StepStatus) -> None:
        for record in instance.steps[start:]:
            record.status = status

    async def _notify_step(
        self, context: JobContext, job: str, record: StepRecord, timer: Timer
    ) -> None:
        await notify_observer(
            self.observer_manager,
            StepCompleted(
                run_id=context.run_id,
                job=job,
                step=record.name,
                status=record.status,
                duration_ms=timer.duration_ms,
                error=record.error,
            ),
        )


async def _call(callback: ChangeCallback | None) -> None:
    if callback is not None:
        await callback()
