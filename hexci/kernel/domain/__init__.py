"""Domain layer exports for hexCI."""

from hexci.kernel.domain.dag import JobNode, PipelineGraph
from hexci.kernel.domain.pipeline import (
    DependencyPolicy,
    DeploymentSpec,
    ErrorPolicy,
    HealthCheckPolicy,
    JobSpec,
    MatrixStrategy,
    PipelineDefinition,
    StepSpec,
    TriggerEvent,
    TriggerKind,
)
from hexci.kernel.domain.pipeline_run import (
    JobInstance,
    JobStatus,
    PipelineRun,
    RunReport,
    RunStatus,
    StepStatus,
)

__all__ = [
    # DAG primitives
    "JobNode",
    "PipelineGraph",
    # Definitions
    "DependencyPolicy",
    "DeploymentSpec",
    "ErrorPolicy",
    "HealthCheckPolicy",
    "JobSpec",
    "MatrixStrategy",
    "PipelineDefinition",
    "StepSpec",
    "TriggerEvent",
    "TriggerKind",
    # Run records
    "JobInstance",
    "JobStatus",
    "PipelineRun",
    "RunReport",
    "RunStatus",
    "StepStatus",
]
