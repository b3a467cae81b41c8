"""Pipeline Graph Builder: definition → validated PipelineGraph."""

from __future__ import annotations

import re
from collections import Counter

from hexci.kernel.domain.dag import JobNode, PipelineGraph
from hexci.kernel.domain.pipeline import JobSpec, PipelineDefinition
from hexci.kernel.exceptions import DuplicateJobError, ValidationError
from hexci.kernel.logging import get_logger
from hexci.kernel.orchestration.matrix import expand_matrix

logger = get_logger(__name__)

# Concurrency groups and environments: letters, digits, "_", "-", ".", "/"
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-/]{0,127}$")
_JOB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][\w.\- ]{0,127}$")


def validate_name(field: str, value: str) -> None:
    """Raise ValidationError if *value* is not a well-formed group/environment name."""
    if not NAME_PATTERN.match(value):
        raise ValidationError(field, f"must match {NAME_PATTERN.pattern}", value)


def _validate_job(job: JobSpec) -> None:
    if not job.name or not _JOB_NAME_PATTERN.match(job.name):
        raise ValidationError("jobs.name", f"must match {_JOB_NAME_PATTERN.pattern}", job.name)
    if not job.steps:
        raise ValidationError(f"jobs.{job.name}.steps", "a job needs at least one step")
    step_ids = Counter(step.id for step in job.steps if step.id is not None)
    if duplicated := sorted(sid for sid, count in step_ids.items() if count > 1):
        raise ValidationError(f"jobs.{job.name}.steps", "step ids must be unique", duplicated)


def build_graph(definition: PipelineDefinition) -> PipelineGraph:
    """Validate *definition*, expand matrices and build the job DAG.

    Raises
    ------
    DuplicateJobError
        If two jobs share a name.
    ValidationError
        If a job, concurrency group or environment name is malformed.
    UnknownDependencyError
        If a job needs a job that does not exist.
    CyclicDependencyError
        If the dependencies contain a cycle (reports the members).
    """
    seen: set[str] = set()
    for job in definition.jobs:
        if job.name in seen:
            raise DuplicateJobError(job.name)
        seen.add(job.name)
        _validate_job(job)

    if definition.deployment is not None:
        validate_name("deployment.environment", definition.deployment.environment)
        validate_name("deployment.staging_environment", definition.deployment.staging_environment)

    jobs = expand_matrix(list(definition.jobs))

    for job in jobs:
        if job.concurrency_group is not None:
            validate_name(f"jobs.{job.name}.concurrency_group", job.concurrency_group)
        if job.environment is not None:
            validate_name(f"jobs.{job.name}.environment", job.environment)

    graph = PipelineGraph(
        [JobNode(job.name, job, deps=frozenset(job.needs)) for job in jobs],
        definition=definition,
    )
    logger.debug(
        "Built graph for pipeline '{}': {} job(s) in {} wave(s)",
        definition.name,
        len(graph),
        len(graph.waves()),
    )
    return graph
