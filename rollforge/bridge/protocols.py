"""Protocols for the external systems the rollout pipeline drives.

Any object with the right methods satisfies these protocols.  The AWS
implementations live in ``rollforge.bridge.aws``; in-memory ones used by
the demo command and the test-suite live in ``rollforge.bridge.memory``.

Bridge implementations raise ``BridgeError`` (or a subclass) for every
failure of the external call, so the pipeline core never depends on a
vendor SDK's exception types.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from rollforge.models.deployment import ServiceObservation, ServiceTarget


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BridgeError(RuntimeError):
    """An external call failed.  ``code`` is the provider's error code."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code


class ResourceExistsError(BridgeError):
    """A create call lost a race: the resource already exists."""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ArtifactRegistry(Protocol):
    """Container registry metadata (read side)."""

    def tag_exists(self, repository: str, tag: str) -> bool:
        """Return True if *tag* is already present in *repository*."""
        ...

    def describe_digest(self, repository: str, tag: str) -> str | None:
        """Return the digest behind *tag*, or None if not (yet) indexed."""
        ...


@runtime_checkable
class ImageBuilder(Protocol):
    """Builds an image and pushes it to the registry under a tag."""

    def build_and_push(self, repository: str, tag: str, source_ref: str) -> str:
        """Build *source_ref*, push ``repository:tag``, return an opaque push id."""
        ...


@runtime_checkable
class DefinitionStore(Protocol):
    """Append-only store of workload definition revisions."""

    def describe(self, family: str) -> dict[str, Any] | None:
        """Return the active definition payload for *family*, or None."""
        ...

    def register(self, payload: dict[str, Any]) -> tuple[int, str]:
        """Register *payload* as a new revision; return (revision_number, identifier)."""
        ...


@runtime_checkable
class OrchestrationService(Protocol):
    """The managed service scheduler."""

    def update(self, target: ServiceTarget, definition_identifier: str) -> None:
        """Point the live service at *definition_identifier*."""
        ...

    def describe(self, target: ServiceTarget) -> ServiceObservation:
        """Return the current deployment observation for the service."""
        ...


@runtime_checkable
class StateBackend(Protocol):
    """Durable object store plus a mutual-exclusion lock table."""

    def bucket_exists(self, bucket: str) -> bool: ...

    def create_bucket(self, bucket: str) -> None:
        """Create *bucket*; raise ResourceExistsError if it already exists."""
        ...

    def lock_table_exists(self, table: str) -> bool: ...

    def create_lock_table(self, table: str) -> None:
        """Create *table*; raise ResourceExistsError if it already exists."""
        ...

    def get_object(self, bucket: str, key: str) -> bytes | None: ...

    def put_object(self, bucket: str, key: str, body: bytes) -> None: ...

    def try_acquire_lock(self, table: str, lock_id: str, owner: str) -> bool:
        """Atomically take *lock_id* for *owner*; False if someone else holds it."""
        ...

    def release_lock(self, table: str, lock_id: str, owner: str) -> None:
        """Release *lock_id* if held by *owner*."""
        ...
