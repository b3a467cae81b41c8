"""Pipeline definition models.

These Pydantic models are the validated form of a declarative pipeline
document (jobs, steps, dependency edges, triggers and the optional deployment
section). Loading the document itself (YAML, JSON, API payload) happens
outside the engine; the models accept plain mappings.

Example
-------
```yaml
name: ci
on:
  push:
    branches: [main, "release/*"]
  pull_request: {}
env:
  NODE_VERSION: "20"
jobs:
  build:
    strategy:
      matrix:
        os: [ubuntu, macos]
    steps:
      - id: deps
        uses: cache/restore
        with:
          key: "${{ matrix.os }}-node-abc"
          restore-keys: "${{ matrix.os }}-node-"
      - run: npm ci
  test:
    needs: [build]
    continue-on-error: true
    steps:
      - run: npm test
        timeout: 600
  deploy:
    needs: [test]
    deploy: true
    concurrency: production
    environment: production
    steps:
      - run: ./deploy.sh
deployment:
  service: web
  environment: production
  version: "${{ run.id }}"
  health_check:
    url: https://example.com/health
    retries: 3
```
"""

from __future__ import annotations

import fnmatch
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class ErrorPolicy(StrEnum):
    """What a failing step does to its job."""

    FAIL = "fail"
    CONTINUE = "continue"


class DependencyPolicy(StrEnum):
    """When a job may run given the outcome of its dependencies.

    - ``on_success``: every dependency succeeded (default)
    - ``always``: every dependency reached a terminal status
    - ``on_failure``: at least one dependency failed
    """

    ON_SUCCESS = "on_success"
    ALWAYS = "always"
    ON_FAILURE = "on_failure"


class DeploymentStrategy(StrEnum):
    """How the deploy target swaps versions."""

    ROLLING = "rolling"
    BLUE_GREEN = "blue_green"


class TriggerKind(StrEnum):
    """Event kinds a pipeline can be triggered by."""

    PUSH = "push"
    PULL_REQUEST = "pull_request"
    TAG = "tag"
    SCHEDULE = "schedule"
    MANUAL = "manual"


def _coerce_error_policy(value: Any) -> Any:
    if isinstance(value, bool):
        return ErrorPolicy.CONTINUE if value else ErrorPolicy.FAIL
    return value


class StepSpec(BaseModel):
    """A single step inside a job: a shell command or an action reference."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    id: str | None = Field(default=None, description="Step identifier used in output references")
    name: str | None = Field(default=None, description="Display name")
    run: str | None = Field(default=None, description="Shell command")
    uses: str | None = Field(default=None, description="Action reference, e.g. cache/restore")
    with_: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("with", "with_"),
        serialization_alias="with",
        description="Action inputs",
    )
    env: dict[str, str] = Field(default_factory=dict, description="Step environment overrides")
    continue_on_error: ErrorPolicy = Field(
        default=ErrorPolicy.FAIL,
        validation_alias=AliasChoices("continue-on-error", "continue_on_error"),
    )
    timeout: float | None = Field(default=None, gt=0, description="Timeout in seconds")

    @field_validator("continue_on_error", mode="before")
    @classmethod
    def _coerce_policy(cls, value: Any) -> Any:
        return _coerce_error_policy(value)

    @model_validator(mode="after")
    def _run_xor_uses(self) -> StepSpec:
        if (self.run is None) == (self.uses is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        return self

    @property
    def display_name(self) -> str:
        """Name shown in status output."""
        return self.name or self.id or self.run or self.uses or "step"


class MatrixStrategy(BaseModel):
    """Matrix expansion of a job into the cross product of its dimensions."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    dimensions: dict[str, list[Any]] = Field(
        default_factory=dict, validation_alias=AliasChoices("matrix", "dimensions")
    )
    include: list[dict[str, Any]] = Field(default_factory=list)
    exclude: list[dict[str, Any]] = Field(default_factory=list)
    fail_fast: bool = Field(default=True, validation_alias=AliasChoices("fail-fast", "fail_fast"))
    max_parallel: int | None = Field(
        default=None, ge=1, validation_alias=AliasChoices("max-parallel", "max_parallel")
    )

    @model_validator(mode="before")
    @classmethod
    def _split_matrix_block(cls, data: Any) -> Any:
        # GitHub-style: include/exclude live inside the matrix mapping
        if isinstance(data, dict) and isinstance(data.get("matrix"), dict):
            data = dict(data)
            matrix = dict(data.pop("matrix"))
            data.setdefault("include", matrix.pop("include", []))
            data.setdefault("exclude", matrix.pop("exclude", []))
            data["dimensions"] = matrix
        return data


class JobSpec(BaseModel):
    """A job template: ordered steps plus scheduling metadata."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    name: str = ""
    steps: list[StepSpec] = Field(default_factory=list)
    needs: list[str] = Field(default_factory=list)
    if_: DependencyPolicy = Field(
        default=DependencyPolicy.ON_SUCCESS,
        validation_alias=AliasChoices("if", "if_", "policy"),
    )
    concurrency_group: str | None = Field(
        default=None, validation_alias=AliasChoices("concurrency", "concurrency_group")
    )
    environment: str | None = None
    runs_on: str | None = Field(default=None, validation_alias=AliasChoices("runs-on", "runs_on"))
    env: dict[str, str] = Field(default_factory=dict)
    outputs: dict[str, str] = Field(default_factory=dict)
    timeout: float | None = Field(default=None, gt=0)
    continue_on_error: bool = Field(
        default=False, validation_alias=AliasChoices("continue-on-error", "continue_on_error")
    )
    strategy: MatrixStrategy | None = None
    deploy: bool = False
    matrix_values: dict[str, Any] = Field(default_factory=dict)
    template: str | None = None

    @field_validator("needs", mode="before")
    @classmethod
    def _normalise_needs(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("if_", mode="before")
    @classmethod
    def _normalise_policy(cls, value: Any) -> Any:
        aliases = {
            "success()": DependencyPolicy.ON_SUCCESS,
            "always()": DependencyPolicy.ALWAYS,
            "failure()": DependencyPolicy.ON_FAILURE,
        }
        if isinstance(value, str):
            return aliases.get(value.strip(), value)
        return value

    @property
    def required(self) -> bool:
        """Whether a failure of this job fails the run."""
        return not self.continue_on_error


class TriggerFilter(BaseModel):
    """Branch and tag filters for one trigger kind (glob patterns)."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    branches: list[str] = Field(default_factory=list)
    branches_ignore: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("branches-ignore", "branches_ignore")
    )
    tags: list[str] = Field(default_factory=list)

    def matches(self, event: TriggerEvent) -> bool:
        """Check whether *event* passes this filter."""
        if event.tag is not None:
            return not self.tags or any(fnmatch.fnmatchcase(event.tag, p) for p in self.tags)
        if event.branch is None:
            return not self.branches
        if any(fnmatch.fnmatchcase(event.branch, p) for p in self.branches_ignore):
            return False
        return not self.branches or any(fnmatch.fnmatchcase(event.branch, p) for p in self.branches)


class TriggerEvent(BaseModel):
    """Descriptor of the event that triggered a run."""

    model_config = ConfigDict(extra="allow", frozen=True)

    kind: TriggerKind = TriggerKind.MANUAL
    ref: str | None = None
    sha: str | None = None
    actor: str | None = None

    @property
    def branch(self) -> str | None:
        """Branch name derived from ``ref`` (``refs/heads/x`` or bare name)."""
        if self.ref is None or self.ref.startswith("refs/tags/"):
            return None
        return self.ref.removeprefix("refs/heads/")

    @property
    def tag(self) -> str | None:
        """Tag name when the ref is a tag ref."""
        if self.ref is not None and self.ref.startswith("refs/tags/"):
            return self.ref.removeprefix("refs/tags/")
        return None


class HealthCheckPolicy(BaseModel):
    """Polling policy for deployment health checks."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    url: str = ""
    interval: float = Field(default=10.0, ge=0)
    timeout: float = Field(default=5.0, gt=0)
    retries: int = Field(default=3, ge=1)
    start_period: float = Field(
        default=0.0, ge=0, validation_alias=AliasChoices("start-period", "start_period")
    )
    expected_status: int = Field(
        default=200, validation_alias=AliasChoices("expected-status", "expected_status")
    )


class DeploymentSpec(BaseModel):
    """Staged rollout of a service once the deploy-stage jobs succeed."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    service: str
    environment: str = "production"
    staging_environment: str = Field(
        default="staging",
        validation_alias=AliasChoices("staging", "staging_environment"),
    )
    version: str
    strategy: DeploymentStrategy = DeploymentStrategy.ROLLING
    health_check: HealthCheckPolicy = Field(
        default_factory=HealthCheckPolicy,
        validation_alias=AliasChoices("health-check", "health_check"),
    )
    staging_health_check: HealthCheckPolicy | None = Field(
        default=None,
        validation_alias=AliasChoices("staging-health-check", "staging_health_check"),
    )


class PipelineDefinition(BaseModel):
    """A complete declarative pipeline."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    name: str
    on: dict[TriggerKind, TriggerFilter] = Field(
        default_factory=dict, validation_alias=AliasChoices("on", "triggers")
    )
    env: dict[str, str] = Field(default_factory=dict)
    jobs: list[JobSpec] = Field(default_factory=list)
    deployment: DeploymentSpec | None = None

    @model_validator(mode="before")
    @classmethod
    def _yaml_on_key(cls, data: Any) -> Any:
        # YAML 1.1 loaders read a bare ``on:`` key as boolean True
        if isinstance(data, dict) and True in data:
            data = dict(data)
            data["on"] = data.pop(True)
        return data

    @field_validator("on", mode="before")
    @classmethod
    def _normalise_triggers(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {value: {}}
        if isinstance(value, list):
            return dict.fromkeys(value, {})
        if isinstance(value, dict):
            return {k: (v if v is not None else {}) for k, v in value.items()}
        return value

    @field_validator("jobs", mode="before")
    @classmethod
    def _jobs_mapping(cls, value: Any) -> Any:
        # Accept ``jobs: {name: {...}}`` as well as a list of jobs with names
        if isinstance(value, dict):
            return [{**(spec or {}), "name": name} for name, spec in value.items()]
        return value

    def matches(self, event: TriggerEvent) -> bool:
        """Check whether *event* satisfies the pipeline's trigger conditions.

        A pipeline without triggers only runs on manual events.
        """
        if not self.on:
            return event.kind is TriggerKind.MANUAL
        trigger = self.on.get(event.kind)
        if trigger is None:
            return False
        return trigger.matches(event)

    def job(self, name: str) -> JobSpec:
        """Look up a job template by name."""
        for job in self.jobs:
            if job.name == name:
                return job
        raise KeyError(name)
