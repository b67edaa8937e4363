"""Rollout pipeline: the single coordinator of a deploy run.

Wires the bootstrapper, partition selector, publisher, digest resolver,
definition mutator, registrar and rollout controller in strict order:

    bootstrap -> select partition -> lock
        -> publish -> resolve digest -> fetch + mutate -> register
        -> update service -> wait for stable -> write partition state
    -> unlock -> notify

Every ``RolloutError`` raised by a stage becomes a terminal state
(``failed``, or ``timed_out`` for a stabilization timeout) recorded in the
run ledger; the caller receives a ``RolloutResult`` either way.  Any other
exception is a programming or infrastructure error and propagates.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from rollforge.bridge.protocols import (
    ArtifactRegistry,
    DefinitionStore,
    ImageBuilder,
    OrchestrationService,
    StateBackend,
)
from rollforge.core.backend import BackendBootstrapper
from rollforge.core.definition_mutator import DefinitionMutator
from rollforge.core.digest_resolver import DigestResolver
from rollforge.core.errors import (
    PartitionLockError,
    RolloutError,
    StabilizationTimeout,
)
from rollforge.core.partition import PartitionLock, PartitionSelector
from rollforge.core.publisher import ArtifactPublisher
from rollforge.core.registrar import DefinitionRegistrar
from rollforge.core.retry import Clock, RetryPolicy, Sleep
from rollforge.core.rollout_controller import RolloutController
from rollforge.core.rollout_machine import RolloutMachine
from rollforge.core.run_ledger import RunLedger
from rollforge.models.artifacts import Artifact
from rollforge.models.config import PipelineConfig
from rollforge.models.definitions import DefinitionRevision
from rollforge.models.deployment import (
    DeploymentStatus,
    RolloutResult,
    RolloutState,
    ServiceDeployment,
)
from rollforge.models.environment import Environment, PartitionRecord
from rollforge.models.notifications import RolloutNotification
from rollforge.routing.dispatcher import SinkDispatchError, SinkDispatcher

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"rf-{ts}-{uuid.uuid4().hex[:6]}"


class RolloutPipeline:
    """Runs deploys for one (repository, family, service) configuration.

    Parameters
    ----------
    config:
        Identifiers and polling policy.
    registry, builder, definitions, service, state:
        Bridges to the external systems.
    ledger:
        Run ledger.  Opened at ``config.ledger_db_path`` if not given.
    dispatcher:
        Notification dispatcher.  Notifications are skipped if not given.
    sleep, clock:
        Injected into every bounded wait.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        registry: ArtifactRegistry,
        builder: ImageBuilder,
        definitions: DefinitionStore,
        service: OrchestrationService,
        state: StateBackend,
        ledger: RunLedger | None = None,
        dispatcher: SinkDispatcher | None = None,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.ledger = ledger or RunLedger(config.ledger_db_path)
        self.machine = RolloutMachine(self.ledger)
        self.dispatcher = dispatcher
        self._sleep = sleep
        self._clock = clock

        self.bootstrapper = BackendBootstrapper(
            state, config.state_bucket, config.lock_table, config.region
        )
        self.selector = PartitionSelector(state)
        self.publisher = ArtifactPublisher(config.repository, registry, builder)
        self.resolver = DigestResolver(
            registry,
            RetryPolicy.fixed(config.digest_attempts, config.digest_backoff_seconds),
            sleep=sleep,
        )
        self.mutator = DefinitionMutator(definitions)
        self.registrar = DefinitionRegistrar(definitions)
        self._service = service

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(
        self,
        environment: Environment,
        source_ref: str,
        build_id: str,
        *,
        run_id: str | None = None,
    ) -> RolloutResult:
        """Execute one deploy of *source_ref* into *environment*."""
        run_id = run_id or new_run_id()
        self.machine.start(
            run_id,
            environment.name,
            {"source_ref": source_ref, "build_id": build_id, "family": self.config.family},
        )

        controller = RolloutController(
            self._service,
            self.config.service_target,
            poll_seconds=self.config.stability_poll_seconds,
            timeout_seconds=self.config.stability_timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )
        artifact: Artifact | None = None
        revision: DefinitionRevision | None = None
        deployment: ServiceDeployment | None = None

        try:
            backend = self.bootstrapper.ensure_backend_exists()
            partition = self.selector.select_partition(backend, environment)
            lock = partition.lock(
                run_id,
                poll_seconds=self.config.lock_poll_seconds,
                timeout_seconds=self.config.lock_timeout_seconds,
                sleep=self._sleep,
                clock=self._clock,
            )
            lock.acquire()
            try:
                artifact = self.publisher.publish(source_ref, build_id)
                self.machine.transition(
                    run_id, RolloutState.AWAITING_DIGEST, {"tag": artifact.tag}
                )

                artifact = self.resolver.resolve(artifact)
                current = self.mutator.fetch_current(self.config.family)
                draft = self.mutator.mutate(current, artifact)
                revision = self.registrar.register(draft)
                self.machine.transition(
                    run_id,
                    RolloutState.DEFINITION_REGISTERED,
                    {
                        "digest": artifact.digest,
                        "revision": revision.revision_number,
                        "identifier": revision.identifier,
                    },
                )

                deployment = controller.update_service(revision)
                self.machine.transition(
                    run_id,
                    RolloutState.SERVICE_UPDATING,
                    {"cluster": deployment.cluster, "service": deployment.service},
                )

                deployment = controller.wait_for_stable(revision)
                partition.write_state(
                    PartitionRecord(
                        environment=environment.name,
                        family=revision.family,
                        revision_identifier=revision.identifier,
                        container_image_ref=revision.container_image_ref,
                        run_id=run_id,
                        updated_at=datetime.now(timezone.utc).isoformat(),
                    ),
                    owner=run_id,
                )
                self.machine.transition(
                    run_id,
                    RolloutState.STABLE,
                    {
                        "running": deployment.running_count,
                        "desired": deployment.desired_count,
                    },
                )
            finally:
                self._release(lock)

        except RolloutError as exc:
            terminal = (
                RolloutState.TIMED_OUT
                if isinstance(exc, StabilizationTimeout)
                else RolloutState.FAILED
            )
            if revision is not None and controller.last_observation is not None:
                deployment = controller.deployment_snapshot(
                    revision,
                    DeploymentStatus.TIMED_OUT
                    if terminal is RolloutState.TIMED_OUT
                    else DeploymentStatus.FAILED,
                )
            result = self._terminal(
                run_id, environment, terminal, artifact, revision, deployment, exc
            )
        else:
            result = RolloutResult(
                run_id=run_id,
                environment=environment.name,
                state=RolloutState.STABLE,
                artifact=artifact,
                revision=revision,
                deployment=deployment,
            )
            logger.info(
                "Run %s: %s is stable on %s",
                run_id,
                environment.name,
                result.revision_identifier,
            )

        self._notify(result)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _terminal(
        self,
        run_id: str,
        environment: Environment,
        state: RolloutState,
        artifact: Artifact | None,
        revision: DefinitionRevision | None,
        deployment: ServiceDeployment | None,
        exc: RolloutError,
    ) -> RolloutResult:
        context: dict[str, Any] = {k: _jsonable(v) for k, v in exc.context.items()}
        self.machine.fail(
            run_id,
            state,
            {"error_type": type(exc).__name__, "error": str(exc), **context},
        )
        logger.error("Run %s ended %s: %s", run_id, state.value, exc)
        return RolloutResult(
            run_id=run_id,
            environment=environment.name,
            state=state,
            artifact=artifact,
            revision=revision,
            deployment=deployment,
            error_type=type(exc).__name__,
            error_message=str(exc),
            error_context=context,
        )

    @staticmethod
    def _release(lock: PartitionLock) -> None:
        # The lock entry is left for an operator to clear; the outcome stands.
        try:
            lock.release()
        except PartitionLockError:
            logger.exception("Could not release partition lock for %s", lock.owner)

    def _notify(self, result: RolloutResult) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(RolloutNotification.from_result(result))
        except SinkDispatchError as exc:
            logger.warning("Notification for run %s not delivered: %s", result.run_id, exc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
