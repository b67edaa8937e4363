"""Rollout controller: drives the live service to a new revision.

Issues exactly one update call, then polls the orchestration service at a
fixed interval until the new revision is the only deployment and every
desired task is running, or the stability ceiling elapses.

A timeout is not a failure: the new revision may be partially rolled
out.  Nothing is reverted here.
"""

from __future__ import annotations

import logging
import time

from rollforge.bridge.protocols import BridgeError, OrchestrationService
from rollforge.core.errors import ServiceUpdateError, StabilizationTimeout
from rollforge.core.retry import Clock, Exhausted, Sleep, poll_until
from rollforge.models.definitions import DefinitionRevision
from rollforge.models.deployment import (
    DeploymentStatus,
    ServiceDeployment,
    ServiceObservation,
    ServiceTarget,
)

logger = logging.getLogger(__name__)


class RolloutController:
    """Update-then-wait against one (cluster, service)."""

    def __init__(
        self,
        service: OrchestrationService,
        target: ServiceTarget,
        *,
        poll_seconds: float = 15.0,
        timeout_seconds: float = 600.0,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self._service = service
        self.target = target
        self._poll_seconds = poll_seconds
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self.last_observation: ServiceObservation | None = None

    def update_service(self, revision: DefinitionRevision) -> ServiceDeployment:
        """Point the service at *revision*.  Exactly one update call."""
        logger.info(
            "Updating %s/%s to %s",
            self.target.cluster,
            self.target.service,
            revision.identifier,
        )
        try:
            self._service.update(self.target, revision.identifier)
        except BridgeError as exc:
            logger.error("Service update rejected: %s", exc)
            raise ServiceUpdateError(
                f"Service update rejected: {exc}",
                cluster=self.target.cluster,
                service=self.target.service,
                revision=revision.identifier,
            ) from exc
        return self._deployment(revision, DeploymentStatus.ROLLING_OUT)

    def wait_for_stable(self, revision: DefinitionRevision) -> ServiceDeployment:
        """Block until the service is steady on *revision*.

        Raises
        ------
        ServiceUpdateError
            If the platform reports the rollout failed or describe fails.
        StabilizationTimeout
            If the ceiling elapses first.
        """
        identifier = revision.identifier

        def _probe(attempt: int) -> ServiceObservation | None:
            try:
                observation = self._service.describe(self.target)
            except BridgeError as exc:
                raise ServiceUpdateError(
                    f"Cannot describe service: {exc}",
                    cluster=self.target.cluster,
                    service=self.target.service,
                    revision=identifier,
                ) from exc
            self.last_observation = observation
            logger.debug(
                "Poll %d: revision=%s running=%d/%d deployments=%d state=%s",
                attempt,
                observation.current_revision,
                observation.running_count,
                observation.desired_count,
                observation.deployment_count,
                observation.rollout_state,
            )
            if observation.rollout_failed_for(identifier):
                raise ServiceUpdateError(
                    "Orchestration service reports the rollout failed",
                    cluster=self.target.cluster,
                    service=self.target.service,
                    revision=identifier,
                    observed_revision=observation.current_revision,
                    running=observation.running_count,
                    desired=observation.desired_count,
                )
            return observation if observation.is_steady_for(identifier) else None

        result = poll_until(
            _probe,
            interval=self._poll_seconds,
            timeout=self._timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
            label=f"stability {self.target.service}",
        )
        if isinstance(result, Exhausted):
            last = self.last_observation
            logger.error(
                "Service %s not stable on %s after %.0fs",
                self.target.service,
                identifier,
                self._timeout_seconds,
            )
            raise StabilizationTimeout(
                "Service did not stabilize before the ceiling",
                cluster=self.target.cluster,
                service=self.target.service,
                revision=identifier,
                observed_revision=last.current_revision if last else None,
                running=last.running_count if last else None,
                desired=last.desired_count if last else None,
                polls=result.attempts,
            )

        logger.info(
            "Service %s stable on %s after %d poll(s)",
            self.target.service,
            identifier,
            result.attempts,
        )
        return self._deployment(revision, DeploymentStatus.STABLE)

    def deployment_snapshot(
        self, revision: DefinitionRevision, status: DeploymentStatus
    ) -> ServiceDeployment:
        """The deployment as last observed, tagged with *status*."""
        return self._deployment(revision, status)

    def _deployment(
        self, revision: DefinitionRevision, status: DeploymentStatus
    ) -> ServiceDeployment:
        obs = self.last_observation
        return ServiceDeployment(
            cluster=self.target.cluster,
            service=self.target.service,
            desired_revision=revision.identifier,
            observed_revision=obs.current_revision if obs else None,
            status=status,
            running_count=obs.running_count if obs else 0,
            desired_count=obs.desired_count if obs else 0,
        )
