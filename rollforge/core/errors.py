"""Rollout error taxonomy.

Every error carries a ``context`` dict (repository, tag/digest, family,
revision...) so a failed run can be diagnosed without re-running it.
All of them are fatal to the pipeline run that raised them.
"""

from __future__ import annotations

from typing import Any


class RolloutError(RuntimeError):
    """Base class for every failure the pipeline converts into a terminal state."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = {
            k: v for k, v in context.items() if v is not None
        }

    def __str__(self) -> str:
        base = super().__str__()
        if not self.context:
            return base
        ctx = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{base} ({ctx})"


class ConfigurationError(RolloutError):
    """Required settings are missing or inconsistent."""


class BackendProvisioningError(RolloutError):
    """The state bucket or lock table could not be created."""


class PartitionLockError(RolloutError):
    """The environment's partition lock could not be acquired or released."""


class ArtifactPublishError(RolloutError):
    """Building or pushing the image failed, or the tag already exists."""


class ArtifactNotFoundError(RolloutError):
    """The registry never exposed a digest for the tag within the retry policy."""


class DefinitionNotFoundError(RolloutError):
    """No active definition exists for the family (it must be pre-seeded)."""


class RegistrationError(RolloutError):
    """The definition store rejected the draft, or the draft is malformed."""


class UnresolvedDigestError(RegistrationError):
    """A definition would reference an image by tag instead of by digest."""


class ServiceUpdateError(RolloutError):
    """The orchestration service rejected the update or reported a failure."""


class StabilizationTimeout(RolloutError):
    """The service did not reach steady state before the ceiling.

    Distinct from outright failure: the new revision may be partially
    rolled out.  Nothing is reverted automatically.
    """


class PartitionStateError(RolloutError):
    """The environment's state document could not be read or written."""
