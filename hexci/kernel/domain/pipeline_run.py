"""Domain model for pipeline run tracking.

A :class:`PipelineRun` owns one :class:`JobInstance` per concrete graph node.
Records are mutated only by the scheduler and the step executor and are
persisted by :class:`~hexci.stdlib.lib.run_registry.RunRegistry` after every
status change, so a crashed run can resume from its last recorded state.
"""

from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class JobStatus(StrEnum):
    """Lifecycle status of a job instance."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class StepStatus(StrEnum):
    """Lifecycle status of a step inside a job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class StepRecord:
    """Outcome of a single step."""

    name: str
    status: StepStatus = StepStatus.PENDING
    outputs: dict[str, str] = field(default_factory=dict)
    exit_code: int | None = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None


@dataclass(slots=True)
class JobInstance:
    """A concrete node of the pipeline graph for one run."""

    name: str
    template: str
    status: JobStatus = JobStatus.PENDING
    matrix: dict[str, Any] = field(default_factory=dict)
    needs: list[str] = field(default_factory=list)
    concurrency_group: str | None = None
    environment: str | None = None
    runs_on: str | None = None
    steps: list[StepRecord] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    skip_reason: str | None = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def succeeded_with_warnings(self) -> bool:
        """Succeeded, but at least one continue-on-error step failed."""
        return self.status is JobStatus.SUCCEEDED and bool(self.warnings)


@dataclass(slots=True)
class DeploymentOutcome:
    """Deployment summary attached to a run report."""

    service: str
    environment: str
    version: str
    final_status: str
    succeeded: bool
    rolled_back: bool = False
    rollback_succeeded: bool | None = None
    error: str | None = None


@dataclass(slots=True)
class PipelineRun:
    """Record of a single pipeline execution."""

    run_id: str
    pipeline_name: str
    trigger: dict[str, Any] = field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    jobs: dict[str, JobInstance] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None
    error: str | None = None
    deployment: DeploymentOutcome | None = None
    archived: bool = False

    def jobs_with_status(self, *statuses: JobStatus) -> list[str]:
        """Job names with one of *statuses*, in completion order."""
        selected = [job for job in self.jobs.values() if job.status in statuses]
        selected.sort(key=lambda j: (j.completed_at or float("inf"), j.name))
        return [job.name for job in selected]

    @property
    def failed_jobs(self) -> list[str]:
        return self.jobs_with_status(JobStatus.FAILED)

    @property
    def skipped_jobs(self) -> list[str]:
        return self.jobs_with_status(JobStatus.SKIPPED)


@dataclass(slots=True)
class RunReport:
    """What a caller sees when a run reaches a terminal state."""

    run_id: str
    status: RunStatus
    failed_jobs: list[str]
    skipped_jobs: list[str]
    cancelled_jobs: list[str]
    warnings: dict[str, list[str]]
    error: str | None = None
    deployment: DeploymentOutcome | None = None

    @classmethod
    def from_run(cls, run: PipelineRun) -> RunReport:
        return cls(
            run_id=run.run_id,
            status=run.status,
            failed_jobs=run.failed_jobs,
            skipped_jobs=run.skipped_jobs,
            cancelled_jobs=run.jobs_with_status(JobStatus.CANCELLED),
            warnings={name: list(job.warnings) for name, job in run.jobs.items() if job.warnings},
            error=run.error,
            deployment=run.deployment,
        )


def pipeline_run_to_storage(run: PipelineRun) -> dict[str, Any]:
    """Serialise a PipelineRun to a storage-ready dict."""
    return dataclasses.asdict(run)


def pipeline_run_from_storage(data: dict[str, Any]) -> PipelineRun:
    """Reconstruct a PipelineRun from a storage dict."""
    data = dict(data)
    data["status"] = RunStatus(data["status"])
    jobs: dict[str, JobInstance] = {}
    for name, raw in (data.get("jobs") or {}).items():
        raw = dict(raw)
        raw["status"] = JobStatus(raw["status"])
        raw["steps"] = [
            StepRecord(**{**step, "status": StepStatus(step["status"])})
            for step in raw.get("steps", [])
        ]
        jobs[name] = JobInstance(**raw)
    data["jobs"] = jobs
    if data.get("deployment") is not None:
        data["deployment"] = DeploymentOutcome(**data["deployment"])
    return PipelineRun(**data)
