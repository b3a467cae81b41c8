"""Tests for StepExecutor: ordering, timeouts, outputs and cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from hexci.kernel.domain.dag import JobNode, PipelineGraph
from hexci.kernel.domain.pipeline_run import JobInstance, JobStatus, StepStatus
from hexci.kernel.orchestration.actions import ActionCall, ActionRegistry
from hexci.kernel.orchestration.events import StepCompleted
from hexci.kernel.orchestration.step_executor import JobContext, StepExecutor
from hexci.kernel.ports.step_runner import StepResult

MakeGraph = Callable[[dict[str, Any]], PipelineGraph]


@pytest.fixture()
def job(make_graph: MakeGraph) -> Callable[..., tuple[JobNode, JobInstance]]:
    """Build a single-job graph and return its node with a fresh instance."""

    def _job(steps: list[dict[str, Any]], **fields: Any) -> tuple[JobNode, JobInstance]:
        graph = make_graph({"jobs": {"build": {"steps": steps, **fields}}})
        node = graph.nodes["build"]
        return node, JobInstance(name=node.name, template=node.template)

    return _job


class TestOrdering:
    @pytest.mark.asyncio()
    async def test_steps_run_in_order(self, runner: Any, job: Any) -> None:
        node, instance = job([{"run": "one"}, {"run": "two"}, {"run": "three"}])

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.SUCCEEDED
        assert runner.commands == ["one", "two", "three"]
        assert [s.status for s in instance.steps] == [StepStatus.SUCCEEDED] * 3

    @pytest.mark.asyncio()
    async def test_failure_skips_remaining_steps(self, runner: Any, job: Any) -> None:
        runner.on("two", exit_code=1)
        node, instance = job([{"run": "one"}, {"run": "two"}, {"run": "three"}])

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.FAILED
        assert runner.commands == ["one", "two"]
        assert [s.status for s in instance.steps] == [
            StepStatus.SUCCEEDED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
        ]
        assert instance.steps[1].exit_code == 1
        assert "exited with code 1" in (instance.error or "")

    @pytest.mark.asyncio()
    async def test_continue_on_error_records_warning(self, runner: Any, job: Any) -> None:
        runner.on("lint", exit_code=2)
        node, instance = job(
            [
                {"id": "lint", "run": "lint", "continue-on-error": True},
                {"run": "echo ${{ steps.lint.outcome }}"},
            ]
        )

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.SUCCEEDED
        instance.status = status
        assert instance.succeeded_with_warnings
        assert "exited with code 2" in instance.warnings[0]
        assert instance.steps[0].status is StepStatus.FAILED
        assert runner.commands[-1] == "echo failure"

    @pytest.mark.asyncio()
    async def test_runner_exception_is_a_step_failure(self, runner: Any, job: Any) -> None:
        runner.on("crash", error=OSError("no shell"))
        node, instance = job([{"run": "crash"}])

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.FAILED
        assert "OSError: no shell" in (instance.steps[0].error or "")


class TestTimeouts:
    @pytest.mark.asyncio()
    async def test_step_timeout(self, runner: Any, job: Any) -> None:
        runner.on("slow", delay=1.0)
        node, instance = job([{"run": "slow", "timeout": 0.05}, {"run": "after"}])

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.FAILED
        assert "timed out after 0.05s" in (instance.steps[0].error or "")
        assert instance.steps[1].status is StepStatus.SKIPPED

    @pytest.mark.asyncio()
    async def test_default_step_timeout(self, runner: Any, job: Any) -> None:
        runner.on("slow", delay=1.0)
        node, instance = job([{"run": "slow"}])

        executor = StepExecutor(runner, default_step_timeout=0.05)
        status = await executor.aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.FAILED
        assert "timed out" in (instance.error or "")

    @pytest.mark.asyncio()
    async def test_job_timeout_bounds_steps(self, runner: Any, job: Any) -> None:
        for command in ("a", "b", "c"):
            runner.on(command, delay=0.06)
        node, instance = job([{"run": "a"}, {"run": "b"}, {"run": "c"}], timeout=0.1)

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.FAILED
        assert "Job 'build' timed out" in (instance.error or "")
        assert [s.status for s in instance.steps] == [
            StepStatus.SUCCEEDED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
        ]


class TestOutputsAndEnvironment:
    @pytest.mark.asyncio()
    async def test_step_outputs_feed_later_steps_and_job_outputs(
        self, runner: Any, job: Any
    ) -> None:
        runner.on("describe", outputs={"sha": "abc123"})
        node, instance = job(
            [{"id": "meta", "run": "describe"}, {"run": "tag ${{ steps.meta.outputs.sha }}"}],
            outputs={"sha": "${{ steps.meta.outputs.sha }}"},
        )

        await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert runner.commands == ["describe", "tag abc123"]
        assert instance.steps[0].outputs == {"sha": "abc123"}
        assert instance.outputs == {"sha": "abc123"}

    @pytest.mark.asyncio()
    async def test_failed_job_publishes_no_outputs(self, runner: Any, job: Any) -> None:
        runner.on("describe", outputs={"sha": "abc123"})
        runner.on("explode", exit_code=1)
        node, instance = job(
            [{"id": "meta", "run": "describe"}, {"run": "explode"}],
            outputs={"sha": "${{ steps.meta.outputs.sha }}"},
        )

        await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert instance.outputs == {}

    @pytest.mark.asyncio()
    async def test_environment_scoping(self, runner: Any, job: Any) -> None:
        runner.on("first", env_updates={"EXPORTED": "yes"})
        node, instance = job(
            [{"run": "first", "env": {"STEP_ONLY": "1"}}, {"run": "second"}],
            env={"JOB": "${{ env.PIPELINE }}-job"},
        )
        context = JobContext(run_id="r1", env={"PIPELINE": "p"})

        await StepExecutor(runner).aexecute_job(node, instance, context)

        first, second = runner.invocations
        assert first.env == {"PIPELINE": "p", "JOB": "p-job", "STEP_ONLY": "1"}
        assert second.env == {"PIPELINE": "p", "JOB": "p-job", "EXPORTED": "yes"}
        assert context.env == {"PIPELINE": "p"}

    @pytest.mark.asyncio()
    async def test_references_to_needs_secrets_and_run(self, runner: Any, job: Any) -> None:
        node, instance = job(
            [
                {
                    "run": "deploy ${{ needs.build.outputs.version }} ${{ needs.build.result }} "
                    "${{ secrets.TOKEN }} ${{ run.id }} ${{ job.name }}"
                }
            ]
        )
        context = JobContext(
            run_id="r-9",
            secrets={"TOKEN": "s3cret"},
            needs={"build": {"outputs": {"version": "1.2"}, "result": "succeeded"}},
        )

        await StepExecutor(runner).aexecute_job(node, instance, context)

        assert runner.commands == ["deploy 1.2 succeeded s3cret r-9 build"]

    @pytest.mark.asyncio()
    async def test_matrix_values_and_runner_label(
        self, runner: Any, make_graph: MakeGraph
    ) -> None:
        graph = make_graph(
            {
                "jobs": {
                    "test": {
                        "strategy": {"matrix": {"py": ["3.12"]}},
                        "runs-on": "${{ matrix.py }}-runner",
                        "steps": [{"run": "tox -e py${{ matrix.py }}"}],
                    }
                }
            }
        )
        node = graph.nodes["test (3.12)"]
        instance = JobInstance(name=node.name, template=node.template)

        await StepExecutor(runner).aexecute_job(
            node, instance, JobContext(run_id="r1", runs_on=node.spec.runs_on)
        )

        assert runner.commands == ["tox -e py3.12"]
        assert runner.invocations[0].runs_on == "3.12-runner"


class TestActions:
    @pytest.mark.asyncio()
    async def test_uses_step_calls_registered_action(self, runner: Any, job: Any) -> None:
        calls: list[ActionCall] = []

        async def greet(call: ActionCall) -> StepResult:
            calls.append(call)
            return StepResult(outputs={"message": f"hello {call.inputs['who']}"})

        actions = ActionRegistry()
        actions.register("greet", greet)
        node, instance = job(
            [
                {"id": "hi", "uses": "greet@v1", "with": {"who": "${{ env.USER_NAME }}"}},
                {"run": "echo ${{ steps.hi.outputs.message }}"},
            ],
            env={"USER_NAME": "ada"},
        )

        status = await StepExecutor(runner, actions=actions).aexecute_job(
            node, instance, JobContext(run_id="r1")
        )

        assert status is JobStatus.SUCCEEDED
        assert calls[0].inputs == {"who": "ada"}
        assert (calls[0].run_id, calls[0].job) == ("r1", "build")
        assert runner.commands == ["echo hello ada"]

    @pytest.mark.asyncio()
    async def test_unknown_action_fails_the_step(self, runner: Any, job: Any) -> None:
        node, instance = job([{"uses": "missing/action"}])

        status = await StepExecutor(runner).aexecute_job(node, instance, JobContext(run_id="r1"))

        assert status is JobStatus.FAILED
        assert "not found" in (instance.steps[0].error or "")


class TestCancellationAndEvents:
    @pytest.mark.asyncio()
    async def test_cancellation_between_steps(self, runner: Any, job: Any) -> None:
        runner.on("first", delay=0.05)
        node, instance = job([{"run": "first"}, {"run": "second"}])
        context = JobContext(run_id="r1")

        task = asyncio.create_task(StepExecutor(runner).aexecute_job(node, instance, context))
        await asyncio.sleep(0.01)
        context.cancel_event.set()
        status = await task

        assert status is JobStatus.CANCELLED
        assert runner.commands == ["first"]
        assert [s.status for s in instance.steps] == [StepStatus.SUCCEEDED, StepStatus.CANCELLED]

    @pytest.mark.asyncio()
    async def test_events_and_change_callback(
        self, runner: Any, recorder: Any, job: Any
    ) -> None:
        runner.on("two", exit_code=3)
        node, instance = job([{"run": "one"}, {"run": "two", "name": "Second"}])
        changes = 0

        async def on_change() -> None:
            nonlocal changes
            changes += 1

        executor = StepExecutor(runner, observer_manager=recorder)
        await executor.aexecute_job(node, instance, JobContext(run_id="r1"), on_change=on_change)

        events = recorder.of_type(StepCompleted)
        assert [(e.step, e.status) for e in events] == [("one", "succeeded"), ("Second", "failed")]
        assert events[1].error is not None
        assert changes == 2
