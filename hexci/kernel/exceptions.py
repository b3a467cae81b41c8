"""Core exception hierarchy for hexCI.

All hexCI exceptions inherit from HexCIError so callers can catch every
engine error in one place. Graph errors abort a run before dispatch, job
errors are contained at the job boundary, and deployment errors are reported
through the deployment result.
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class HexCIError(Exception):
    """Base exception for all hexCI errors."""

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(HexCIError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("engine", "max_parallel must be positive")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(HexCIError):
    """Raised when data validation fails.

    Examples
    --------
    Example usage::

        raise ValidationError("concurrency_group", "must be well-formed", value="a b")
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        """Initialize validation error.

        Args
        ----
            field: Name of the field that failed validation
            constraint: Description of the validation constraint
            value: The invalid value (optional)
        """
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class ResourceNotFoundError(HexCIError):
    """Raised when a required resource cannot be found.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("run", "run-123", ["run-1", "run-2"])
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        """Initialize resource not found error.

        Args
        ----
            resource_type: Type of resource (e.g., "run", "artifact", "action")
            resource_id: Identifier of the missing resource
            available: List of available resources (optional)
        """
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


class ExpressionError(HexCIError):
    """Raised when a ``${{ ... }}`` expression cannot be resolved."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Expression error in '{expression}': {reason}")


# ============================================================================
# Graph Errors
# ============================================================================


class DirectedGraphError(HexCIError):
    """Base exception for pipeline graph errors."""


class CyclicDependencyError(DirectedGraphError):
    """Raised when the job dependencies contain a cycle.

    The ``cycle`` attribute lists the members in dependency order, with the
    first member repeated at the end.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(cycle)}")


class UnknownDependencyError(DirectedGraphError):
    """Raised when a job needs a job that does not exist."""

    def __init__(self, job: str, dependency: str) -> None:
        self.job = job
        self.dependency = dependency
        super().__init__(f"Job '{job}' needs unknown job '{dependency}'")


class DuplicateJobError(DirectedGraphError):
    """Raised when two jobs (or two matrix expansions) share a name."""

    def __init__(self, job: str) -> None:
        self.job = job
        super().__init__(f"Job '{job}' is defined more than once")


# ============================================================================
# Execution Errors
# ============================================================================


class StepExecutionError(HexCIError):
    """Raised when a step fails (non-zero exit, action error, runner error)."""

    def __init__(self, job: str, step: str, reason: str, exit_code: int | None = None) -> None:
        self.job = job
        self.step = step
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(f"Step '{step}' in job '{job}' failed: {reason}")


class StepTimeoutError(StepExecutionError):
    """Raised when a step exceeds its timeout."""

    def __init__(self, job: str, step: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(job, step, f"timed out after {timeout}s")


class JobTimeoutError(HexCIError):
    """Raised when a whole job exceeds its timeout."""

    def __init__(self, job: str, timeout: float) -> None:
        self.job = job
        self.timeout = timeout
        super().__init__(f"Job '{job}' timed out after {timeout}s")


class DependencyFailedError(HexCIError):
    """Reason attached to a job skipped because of its dependencies.

    Never raised out of the scheduler; it becomes the job's skip reason.
    """

    def __init__(self, job: str, dependencies: dict[str, str]) -> None:
        self.job = job
        self.dependencies = dependencies
        outcome = ", ".join(f"{name}={status}" for name, status in sorted(dependencies.items()))
        super().__init__(f"Job '{job}' skipped: dependencies did not satisfy policy ({outcome})")


# ============================================================================
# Storage Errors
# ============================================================================


class DuplicateKeyError(HexCIError):
    """Raised when writing a key that already exists in an append-only store."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Key '{key}' already exists")


# ============================================================================
# Deployment Errors
# ============================================================================


class InvalidTransitionError(HexCIError):
    """Raised when a deployment transition does not match the observed state."""

    def __init__(self, expected: str, target: str, actual: str) -> None:
        self.expected = expected
        self.target = target
        self.actual = actual
        super().__init__(
            f"Cannot transition {expected!r} -> {target!r}: current state is {actual!r}"
        )


class ConcurrentDeploymentError(HexCIError):
    """Raised when a rollout starts while another one owns the environment."""

    def __init__(self, service: str, environment: str, status: str) -> None:
        self.service = service
        self.environment = environment
        self.status = status
        super().__init__(
            f"Deployment of '{service}' to '{environment}' already in progress ({status})"
        )


class DeploymentHealthCheckError(HexCIError):
    """Raised when a health check exhausts its retries. Triggers rollback."""

    def __init__(self, environment: str, attempts: int, last_error: str | None = None) -> None:
        self.environment = environment
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(
            f"Health check for '{environment}' failed after {attempts} attempt(s){detail}"
        )


class DeploymentError(HexCIError):
    """Raised when rollback itself fails. Fatal, no further automation."""

    def __init__(self, service: str, environment: str, reason: str) -> None:
        self.service = service
        self.environment = environment
        self.reason = reason
        super().__init__(f"Deployment of '{service}' to '{environment}' failed: {reason}")


__all__ = [
    # Base
    "HexCIError",
    # Configuration & Validation
    "ConfigurationError",
    "ValidationError",
    "ResourceNotFoundError",
    "ExpressionError",
    # Graph
    "DirectedGraphError",
    "CyclicDependencyError",
    "UnknownDependencyError",
    "DuplicateJobError",
    # Execution
    "StepExecutionError",
    "StepTimeoutError",
    "JobTimeoutError",
    "DependencyFailedError",
    # Storage
    "DuplicateKeyError",
    # Deployment
    "InvalidTransitionError",
    "ConcurrentDeploymentError",
    "DeploymentHealthCheckError",
    "DeploymentError",
]
