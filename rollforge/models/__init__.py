"""Rollforge data models: all Pydantic v2, all frozen (immutable)."""

from rollforge.models.artifacts import Artifact, is_pinned_ref, is_valid_digest
from rollforge.models.config import PipelineConfig
from rollforge.models.definitions import (
    ContainerDefinition,
    DefinitionDraft,
    DefinitionRevision,
    RegistrableDefinition,
    StoredDefinition,
)
from rollforge.models.deployment import (
    EXIT_CODES,
    VALID_TRANSITIONS,
    DeploymentStatus,
    RolloutResult,
    RolloutState,
    ServiceDeployment,
    ServiceObservation,
    ServiceTarget,
)
from rollforge.models.environment import (
    BackendHandle,
    Environment,
    PartitionRecord,
)
from rollforge.models.ledger import LedgerEntry
from rollforge.models.notifications import RolloutNotification

__all__ = [
    # environment
    "Environment",
    "BackendHandle",
    "PartitionRecord",
    # artifacts
    "Artifact",
    "is_valid_digest",
    "is_pinned_ref",
    # definitions
    "ContainerDefinition",
    "StoredDefinition",
    "RegistrableDefinition",
    "DefinitionDraft",
    "DefinitionRevision",
    # deployment
    "RolloutState",
    "VALID_TRANSITIONS",
    "EXIT_CODES",
    "DeploymentStatus",
    "ServiceTarget",
    "ServiceObservation",
    "ServiceDeployment",
    "RolloutResult",
    # ledger
    "LedgerEntry",
    # notifications
    "RolloutNotification",
    # config
    "PipelineConfig",
]
