"""Deployment state machine with health-check-gated promotion.

Every state change goes through :meth:`DeploymentStateMachine.atransition`,
a compare-and-transition operation: it succeeds only if the observed state
equals the expected one and the edge exists in
:data:`~hexci.kernel.domain.deployment.DEPLOYMENT_TRANSITIONS`.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from hexci.kernel.domain.deployment import (
    ROLLOUT_ENTRY_STATES,
    DeploymentResult,
    DeploymentState,
    DeploymentStatus,
    DeploymentTransition,
    deployment_key,
    deployment_state_from_storage,
    deployment_state_to_storage,
    is_valid_transition,
)
from hexci.kernel.exceptions import (
    ConcurrentDeploymentError,
    ConfigurationError,
    DeploymentError,
    DeploymentHealthCheckError,
    InvalidTransitionError,
)
from hexci.kernel.logging import get_logger
from hexci.kernel.orchestration.events import (
    DeploymentTransitioned,
    HealthCheckAttempted,
    notify_observer,
)
from hexci.kernel.ports.health_probe import ProbeResult

if TYPE_CHECKING:
    from hexci.kernel.domain.pipeline import DeploymentSpec, HealthCheckPolicy
    from hexci.kernel.ports.data_store import SupportsCollectionStorage
    from hexci.kernel.ports.deploy_target import DeployTarget
    from hexci.kernel.ports.health_probe import HealthProbe
    from hexci.kernel.ports.observer_manager import ObserverManager

logger = get_logger(__name__)

_COLLECTION = "deployment_states"


class DeploymentStateMachine:
    """Staged rollout: staging, health check, promotion, health check, monitoring.

    Any health-check failure or deploy-call failure rolls back to the last
    known-good version. A failing rollback leaves the machine ``failed``
    until an operator calls :meth:`areset`.

    Examples
    --------
    Example usage::

        machine = DeploymentStateMachine(target, HttpHealthProbe())
        result = await machine.adeploy(definition.deployment, version="1.4.2")
        if not result.succeeded:
            raise result.error
    """

    def __init__(
        self,
        target: DeployTarget,
        probe: HealthProbe,
        storage: SupportsCollectionStorage | None = None,
        observer_manager: ObserverManager | None = None,
    ) -> None:
        self._target = target
        self._probe = probe
        self._storage = storage
        self._observer_manager = observer_manager
        self._states: dict[str, DeploymentState] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    async def aget_state(self, service: str, environment: str) -> DeploymentState:
        """Current state of a service/environment pair (``idle`` if never deployed)."""
        key = deployment_key(service, environment)
        state = self._states.get(key)
        if state is None and self._storage is not None:
            data = await self._storage.aload(_COLLECTION, key)
            if data is not None:
                state = deployment_state_from_storage(data)
        if state is None:
            state = DeploymentState(service=service, environment=environment)
        self._states[key] = state
        return state

    async def atransition(
        self,
        service: str,
        environment: str,
        expected: DeploymentStatus,
        target: DeploymentStatus,
        reason: str | None = None,
        **updates: Any,
    ) -> DeploymentState:
        """Move from *expected* to *target* atomically.

        Keyword *updates* (``current_version``, ``last_known_good``,
        ``target_version``) are applied together with the status change.

        Raises
        ------
        InvalidTransitionError
            If the observed state differs from *expected* or the edge is not allowed.
        """
        key = deployment_key(service, environment)
        async with self._locks[key]:
            state = await self.aget_state(service, environment)
            if state.status is not expected or not is_valid_transition(expected, target):
                raise InvalidTransitionError(str(expected), str(target), str(state.status))

            state.status = target
            for name, value in updates.items():
                setattr(state, name, value)
            state.history.append(
                DeploymentTransition(from_state=expected, to_state=target, reason=reason)
            )
            if self._storage is not None:
                await self._storage.asave(_COLLECTION, key, deployment_state_to_storage(state))

        logger.info(
            "Deployment '{}/{}': {} -> {}{}",
            service,
            environment,
            expected,
            target,
            f" ({reason})" if reason else "",
        )
        await notify_observer(
            self._observer_manager,
            DeploymentTransitioned(
                service=service,
                environment=environment,
                from_state=str(expected),
                to_state=str(target),
                reason=reason,
            ),
        )
        return state

    async def areset(self, service: str, environment: str, reason: str = "operator reset") -> None:
        """Clear a ``failed`` deployment back to ``idle`` (operator action)."""
        await self.atransition(
            service, environment, DeploymentStatus.FAILED, DeploymentStatus.IDLE, reason
        )

    # ------------------------------------------------------------------
    # Rollout
    # ------------------------------------------------------------------

    async def adeploy(self, spec: DeploymentSpec, version: str | None = None) -> DeploymentResult:
        """Run a staged rollout of *version* (defaults to ``spec.version``).

        Health-check and deploy failures never raise: they roll back and are
        reported on the returned result (``error`` holds a
        ``DeploymentHealthCheckError`` or ``DeploymentError``).

        Raises
        ------
        ConcurrentDeploymentError
            If a rollout of the same service/environment is already active.
        DeploymentError
            If the previous rollback failed and no operator reset happened.
        ConfigurationError
            If the health check has no URL.
        """
        version = version or spec.version
        service, environment = spec.service, spec.environment
        staging_policy = spec.staging_health_check or spec.health_check
        for policy in (staging_policy, spec.health_check):
            if not policy.url:
                raise ConfigurationError(
                    "deployment.health_check", "a health check URL is required"
                )

        state = await self.aget_state(service, environment)
        start = state.status
        if start is DeploymentStatus.FAILED:
            raise DeploymentError(service, environment, "previous rollback failed; reset required")
        if start not in ROLLOUT_ENTRY_STATES:
            raise ConcurrentDeploymentError(service, environment, str(start))

        history_start = len(state.history)
        try:
            await self.atransition(
                service,
                environment,
                start,
                DeploymentStatus.STAGING_DEPLOYING,
                f"deploying {version} to {spec.staging_environment}",
                target_version=version,
            )
        except InvalidTransitionError:
            current = await self.aget_state(service, environment)
            raise ConcurrentDeploymentError(service, environment, str(current.status)) from None

        deployed: list[str] = []
        result = DeploymentResult(
            service=service,
            environment=environment,
            version=version,
            final_status=DeploymentStatus.STAGING_DEPLOYING,
            succeeded=False,
        )

        try:
            error = await self._arollout(spec, version, staging_policy, deployed)
        except BaseException as e:
            # Cancelled or crashed mid-rollout: never leave an in-flight state behind
            state = await self.aget_state(service, environment)
            if state.status not in ROLLOUT_ENTRY_STATES:
                interrupted = DeploymentError(
                    service, environment, f"rollout interrupted: {type(e).__name__}: {e}"
                )
                interrupted.__cause__ = e
                logger.error("Rollout of '{}' {} interrupted, rolling back", service, version)
                await asyncio.shield(
                    self._arollback(service, environment, deployed, interrupted, result)
                )
            raise

        if error is None:
            state = await self.aget_state(service, environment)
            result.succeeded = True
        else:
            logger.warning("Rollout of '{}' {} failed: {}", service, version, error)
            state = await self._arollback(service, environment, deployed, error, result)

        result.final_status = state.status
        result.transitions = list(state.history[history_start:])
        return result

    async def _arollout(
        self,
        spec: DeploymentSpec,
        version: str,
        staging_policy: HealthCheckPolicy,
        deployed: list[str],
    ) -> Exception | None:
        """Drive staging and production phases; return the error that stopped them."""
        service, environment = spec.service, spec.environment
        phases = (
            (
                DeploymentStatus.STAGING_DEPLOYING,
                DeploymentStatus.STAGING_HEALTHCHECK,
                spec.staging_environment,
                staging_policy,
            ),
            (
                DeploymentStatus.PROMOTING,
                DeploymentStatus.PRODUCTION_HEALTHCHECK,
                environment,
                spec.health_check,
            ),
        )
        for deploy_status, check_status, target_env, policy in phases:
            if deploy_status is DeploymentStatus.PROMOTING:
                await self.atransition(
                    service,
                    environment,
                    DeploymentStatus.STAGING_HEALTHCHECK,
                    DeploymentStatus.PROMOTING,
                    f"promoting {version} to {environment}",
                )
            try:
                deployed.append(target_env)
                await self._target.adeploy(service, target_env, version, spec.strategy)
            except Exception as e:
                error = DeploymentError(service, target_env, f"{type(e).__name__}: {e}")
                error.__cause__ = e
                return error

            await self.atransition(service, environment, deploy_status, check_status)
            try:
                await self.acheck_health(target_env, policy)
            except DeploymentHealthCheckError as e:
                return e

        await self.atransition(
            service,
            environment,
            DeploymentStatus.PRODUCTION_HEALTHCHECK,
            DeploymentStatus.MONITORING,
            "health checks passed",
            current_version=version,
            last_known_good=version,
            target_version=None,
        )
        return None

    async def _arollback(
        self,
        service: str,
        environment: str,
        deployed: list[str],
        error: Exception,
        result: DeploymentResult,
    ) -> DeploymentState:
        state = await self.aget_state(service, environment)
        restore = state.last_known_good
        await self.atransition(
            service, environment, state.status, DeploymentStatus.ROLLING_BACK, str(error)
        )
        result.rolled_back = True

        try:
            for target_env in reversed(deployed):
                await self._target.arollback(service, target_env, restore)
        except Exception as e:
            logger.error("Rollback of '{}' to {} failed: {}", service, restore, e)
            result.rollback_succeeded = False
            failure = DeploymentError(service, environment, f"rollback failed: {e}")
            failure.__cause__ = error
            result.error = failure
            return await self.atransition(
                service,
                environment,
                DeploymentStatus.ROLLING_BACK,
                DeploymentStatus.FAILED,
                f"rollback failed: {e}",
            )

        result.rollback_succeeded = True
        result.error = error
        return await self.atransition(
            service,
            environment,
            DeploymentStatus.ROLLING_BACK,
            DeploymentStatus.IDLE,
            f"restored {restore}" if restore else "nothing to restore",
            current_version=restore,
            target_version=None,
        )

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def acheck_health(self, environment: str, policy: HealthCheckPolicy) -> int:
        """Poll the health probe until healthy or out of retries.

        Failures during ``start_period`` are not counted. Each probe is
        bounded by ``policy.timeout``.

        Returns
        -------
        int
            Number of probes made

        Raises
        ------
        DeploymentHealthCheckError
            After ``policy.retries`` counted failures.
        """
        started = time.monotonic()
        attempt = failures = 0
        while True:
            attempt += 1
            try:
                async with asyncio.timeout(policy.timeout):
                    probe = await self._probe.aprobe(
                        policy.url, timeout=policy.timeout, expected_status=policy.expected_status
                    )
            except TimeoutError:
                probe = ProbeResult(healthy=False, detail=f"timed out after {policy.timeout}s")
            except Exception as e:
                probe = ProbeResult(healthy=False, detail=f"{type(e).__name__}: {e}")

            counted = time.monotonic() - started >= policy.start_period
            await notify_observer(
                self._observer_manager,
                HealthCheckAttempted(
                    environment=environment,
                    attempt=attempt,
                    healthy=probe.healthy,
                    counted=counted,
                    detail=probe.detail,
                ),
            )
            if probe.healthy:
                logger.debug("'{}' healthy after {} probe(s)", environment, attempt)
                return attempt

            if counted:
                failures += 1
                if failures >= policy.retries:
                    raise DeploymentHealthCheckError(environment, failures, probe.detail)
            await asyncio.sleep(policy.interval)
