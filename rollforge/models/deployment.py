"""Rollout state machine and service deployment models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from rollforge.models.artifacts import Artifact
from rollforge.models.definitions import DefinitionRevision


class RolloutState(str, Enum):
    """States of a single pipeline run."""

    INITIATED = "initiated"
    AWAITING_DIGEST = "awaiting_digest"
    DEFINITION_REGISTERED = "definition_registered"
    SERVICE_UPDATING = "service_updating"
    STABLE = "stable"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self]


# Valid state transitions: enforced structurally by RolloutMachine.
# Every non-terminal state may fail; only SERVICE_UPDATING may time out.
VALID_TRANSITIONS: dict[RolloutState, set[RolloutState]] = {
    RolloutState.INITIATED: {RolloutState.AWAITING_DIGEST, RolloutState.FAILED},
    RolloutState.AWAITING_DIGEST: {
        RolloutState.DEFINITION_REGISTERED,
        RolloutState.FAILED,
    },
    RolloutState.DEFINITION_REGISTERED: {
        RolloutState.SERVICE_UPDATING,
        RolloutState.FAILED,
    },
    RolloutState.SERVICE_UPDATING: {
        RolloutState.STABLE,
        RolloutState.FAILED,
        RolloutState.TIMED_OUT,
    },
    RolloutState.STABLE: set(),  # terminal
    RolloutState.FAILED: set(),  # terminal
    RolloutState.TIMED_OUT: set(),  # terminal
}

# CLI exit codes per terminal state.
EXIT_CODES: dict[RolloutState, int] = {
    RolloutState.STABLE: 0,
    RolloutState.FAILED: 1,
    RolloutState.TIMED_OUT: 3,
}


class DeploymentStatus(str, Enum):
    """Status of a (cluster, service) deployment."""

    PENDING = "Pending"
    ROLLING_OUT = "RollingOut"
    STABLE = "Stable"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class ServiceTarget(BaseModel):
    """The live service a rollout drives."""

    model_config = ConfigDict(frozen=True)

    cluster: str
    service: str


class ServiceObservation(BaseModel):
    """One read of the orchestration service's view of a service."""

    model_config = ConfigDict(frozen=True)

    current_revision: str | None  # identifier of the primary deployment's definition
    running_count: int = 0
    desired_count: int = 0
    deployment_count: int = 1
    rollout_state: str | None = None  # platform rollout state, e.g. "COMPLETED"
    # Revisions whose deployment the platform reports as FAILED, PRIMARY or not.
    failed_revisions: tuple[str, ...] = ()

    def rollout_failed_for(self, revision_identifier: str) -> bool:
        """True if the platform gave up on *revision_identifier*.

        Covers both a FAILED primary deployment and a rollback, where the
        previous revision is PRIMARY again and the new one is left FAILED.
        """
        if revision_identifier in self.failed_revisions:
            return True
        return (
            self.current_revision == revision_identifier
            and self.rollout_state == "FAILED"
        )

    def is_steady_for(self, revision_identifier: str) -> bool:
        """True once *revision_identifier* is the only deployment and every
        desired task is running."""
        return (
            self.current_revision == revision_identifier
            and self.deployment_count == 1
            and self.running_count == self.desired_count
        )


class ServiceDeployment(BaseModel):
    """A rollout of one revision to one (cluster, service)."""

    model_config = ConfigDict(frozen=True)

    cluster: str
    service: str
    desired_revision: str
    observed_revision: str | None = None
    status: DeploymentStatus = DeploymentStatus.PENDING
    running_count: int = 0
    desired_count: int = 0


class RolloutResult(BaseModel):
    """The structured outcome of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    environment: str
    state: RolloutState
    artifact: Artifact | None = None
    revision: DefinitionRevision | None = None
    deployment: ServiceDeployment | None = None
    error_type: str | None = None
    error_message: str | None = None
    error_context: dict[str, Any] = {}

    @property
    def succeeded(self) -> bool:
        return self.state == RolloutState.STABLE

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.state, 1)

    @property
    def revision_identifier(self) -> str | None:
        return self.revision.identifier if self.revision else None
