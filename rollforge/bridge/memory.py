"""In-process bridge implementations.

Used by ``rollforge demo`` and the test-suite.  They model the behaviour
the pipeline has to cope with (registry indexing lag, append-only
revisions, gradual task start-up, conditional lock writes) without any
network access.  All of them are thread-safe.
"""

from __future__ import annotations

import threading
from typing import Any

from rollforge.bridge.protocols import BridgeError, ResourceExistsError
from rollforge.core.hasher import canonical_json_bytes, sha256_hex
from rollforge.models.definitions import RegistrableDefinition
from rollforge.models.deployment import ServiceObservation, ServiceTarget

# Top-level keys accepted on registration (camelCase wire names).
_REGISTRABLE_KEYS = {
    field.alias or name for name, field in RegistrableDefinition.model_fields.items()
}


# ---------------------------------------------------------------------------
# Registry + builder
# ---------------------------------------------------------------------------


class InMemoryRegistry:
    """Tag -> digest map with a configurable indexing lag.

    Parameters
    ----------
    index_after:
        Number of ``describe_digest`` calls per tag that return None before
        the digest becomes visible.  ``None`` means never.
    """

    def __init__(self, index_after: int | None = 0) -> None:
        self.index_after = index_after
        self._images: dict[tuple[str, str], str] = {}
        self._describe_calls: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def push(self, repository: str, tag: str, digest: str) -> str:
        with self._lock:
            if (repository, tag) in self._images:
                raise BridgeError(
                    f"Tag {tag} already exists in {repository}",
                    code="ImageTagAlreadyExistsException",
                )
            self._images[(repository, tag)] = digest
        return f"{repository}:{tag}@{digest}"

    def tag_exists(self, repository: str, tag: str) -> bool:
        with self._lock:
            return (repository, tag) in self._images

    def describe_digest(self, repository: str, tag: str) -> str | None:
        key = (repository, tag)
        with self._lock:
            calls = self._describe_calls.get(key, 0) + 1
            self._describe_calls[key] = calls
            if key not in self._images or self.index_after is None:
                return None
            if calls <= self.index_after:
                return None
            return self._images[key]

    def describe_calls(self, repository: str, tag: str) -> int:
        with self._lock:
            return self._describe_calls.get((repository, tag), 0)


class InMemoryImageBuilder:
    """Pushes a synthetic image into an ``InMemoryRegistry``.

    The digest is the SHA-256 of the build inputs, so the same inputs
    always produce the same digest.
    """

    def __init__(self, registry: InMemoryRegistry, fail_with: str | None = None) -> None:
        self.registry = registry
        self.fail_with = fail_with
        self.builds: list[tuple[str, str, str]] = []

    def build_and_push(self, repository: str, tag: str, source_ref: str) -> str:
        if self.fail_with:
            raise BridgeError(self.fail_with, code="BuildFailed")
        digest = "sha256:" + sha256_hex(
            canonical_json_bytes([repository, tag, source_ref])
        )
        self.builds.append((repository, tag, source_ref))
        return self.registry.push(repository, tag, digest)


# ---------------------------------------------------------------------------
# Definition store
# ---------------------------------------------------------------------------


class InMemoryDefinitionStore:
    """Append-only revisions per family; the latest ACTIVE one is "current"."""

    def __init__(self, arn_prefix: str = "arn:aws:ecs:local:000000000000:task-definition") -> None:
        self.arn_prefix = arn_prefix
        self._revisions: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self.register_calls = 0

    def seed(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Store *payload* as-is (server fields included) as the current revision."""
        family = payload["family"]
        with self._lock:
            self._revisions.setdefault(family, []).append(dict(payload))
        return payload

    def revisions(self, family: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._revisions.get(family, [])]

    def describe(self, family: str) -> dict[str, Any] | None:
        with self._lock:
            revisions = self._revisions.get(family)
            if not revisions:
                return None
            return dict(revisions[-1])

    def register(self, payload: dict[str, Any]) -> tuple[int, str]:
        unknown = sorted(set(payload) - _REGISTRABLE_KEYS)
        if unknown:
            raise BridgeError(
                f"Unknown parameter(s) in input: {', '.join(unknown)}",
                code="ParamValidationError",
            )
        if not payload.get("family") or not payload.get("containerDefinitions"):
            raise BridgeError(
                "family and containerDefinitions are required",
                code="ClientException",
            )
        family = payload["family"]
        with self._lock:
            self.register_calls += 1
            revisions = self._revisions.setdefault(family, [])
            number = max((r.get("revision") or 0 for r in revisions), default=0) + 1
            arn = f"{self.arn_prefix}/{family}:{number}"
            revisions.append(
                {
                    **payload,
                    "taskDefinitionArn": arn,
                    "revision": number,
                    "status": "ACTIVE",
                }
            )
        return number, arn


# ---------------------------------------------------------------------------
# Orchestration service
# ---------------------------------------------------------------------------


class _ServiceState:
    def __init__(self, revision: str | None, desired_count: int) -> None:
        self.revision = revision
        self.desired_count = desired_count
        self.running_new = desired_count
        self.previous_revision: str | None = None
        self.describes_since_update = 0


class InMemoryOrchestrationService:
    """Services whose tasks start one per ``describe`` after an update.

    Parameters
    ----------
    start_after:
        ``describe`` calls after an update before the first new task runs.
        ``None`` means the new revision never starts (stabilization stalls).
    fail_rollout:
        Report the platform rollout as FAILED after an update.
    roll_back:
        With ``fail_rollout``, behave like a deployment circuit breaker:
        the previous revision becomes primary again and only the new
        revision's deployment is reported FAILED.
    """

    def __init__(
        self,
        start_after: int | None = 0,
        fail_rollout: bool = False,
        roll_back: bool = False,
    ) -> None:
        self.start_after = start_after
        self.fail_rollout = fail_rollout
        self.roll_back = roll_back
        self._services: dict[tuple[str, str], _ServiceState] = {}
        self._lock = threading.Lock()
        self.update_calls: list[tuple[ServiceTarget, str]] = []
        self.reject_updates_with: str | None = None

    def create_service(
        self, target: ServiceTarget, revision: str | None = None, desired_count: int = 1
    ) -> None:
        with self._lock:
            self._services[(target.cluster, target.service)] = _ServiceState(
                revision, desired_count
            )

    def _get(self, target: ServiceTarget) -> _ServiceState:
        state = self._services.get((target.cluster, target.service))
        if state is None:
            raise BridgeError(
                f"Service {target.cluster}/{target.service} not found",
                code="ServiceNotFoundException",
            )
        return state

    def update(self, target: ServiceTarget, definition_identifier: str) -> None:
        with self._lock:
            if self.reject_updates_with:
                raise BridgeError(self.reject_updates_with, code="InvalidParameterException")
            state = self._get(target)
            self.update_calls.append((target, definition_identifier))
            state.previous_revision = state.revision
            state.revision = definition_identifier
            state.running_new = 0
            state.describes_since_update = 0

    def describe(self, target: ServiceTarget) -> ServiceObservation:
        with self._lock:
            state = self._get(target)
            state.describes_since_update += 1
            if (
                self.start_after is not None
                and state.describes_since_update > self.start_after
                and state.running_new < state.desired_count
            ):
                state.running_new += 1
            if self.fail_rollout and self.roll_back and state.previous_revision:
                return ServiceObservation(
                    current_revision=state.previous_revision,
                    running_count=state.desired_count,
                    desired_count=state.desired_count,
                    deployment_count=2,
                    rollout_state="IN_PROGRESS",
                    failed_revisions=(state.revision,),
                )
            converged = state.running_new == state.desired_count
            rollout_state = "FAILED" if self.fail_rollout else (
                "COMPLETED" if converged else "IN_PROGRESS"
            )
            return ServiceObservation(
                current_revision=state.revision,
                running_count=state.running_new,
                desired_count=state.desired_count,
                deployment_count=1 if converged or state.previous_revision is None else 2,
                rollout_state=rollout_state,
            )


# ---------------------------------------------------------------------------
# State backend
# ---------------------------------------------------------------------------


class InMemoryStateBackend:
    """Buckets, objects and a lock table held in process memory.

    ``fail_creation_with`` makes every create call fail with that error
    code (e.g. ``"AccessDenied"``) to exercise the fatal path.
    """

    def __init__(self, fail_creation_with: str | None = None) -> None:
        self.fail_creation_with = fail_creation_with
        self._buckets: set[str] = set()
        self._tables: set[str] = set()
        self._objects: dict[tuple[str, str], bytes] = {}
        self._locks: dict[tuple[str, str], str] = {}
        self._mutex = threading.Lock()
        self.create_calls: list[tuple[str, str]] = []

    def bucket_exists(self, bucket: str) -> bool:
        with self._mutex:
            return bucket in self._buckets

    def create_bucket(self, bucket: str) -> None:
        with self._mutex:
            self.create_calls.append(("bucket", bucket))
            if self.fail_creation_with:
                raise BridgeError(
                    f"create_bucket {bucket} denied", code=self.fail_creation_with
                )
            if bucket in self._buckets:
                raise ResourceExistsError(
                    f"Bucket {bucket} already exists", code="BucketAlreadyOwnedByYou"
                )
            self._buckets.add(bucket)

    def lock_table_exists(self, table: str) -> bool:
        with self._mutex:
            return table in self._tables

    def create_lock_table(self, table: str) -> None:
        with self._mutex:
            self.create_calls.append(("table", table))
            if self.fail_creation_with:
                raise BridgeError(
                    f"create_table {table} denied", code=self.fail_creation_with
                )
            if table in self._tables:
                raise ResourceExistsError(
                    f"Lock table {table} already exists", code="ResourceInUseException"
                )
            self._tables.add(table)

    def get_object(self, bucket: str, key: str) -> bytes | None:
        with self._mutex:
            self._require_bucket(bucket)
            return self._objects.get((bucket, key))

    def put_object(self, bucket: str, key: str, body: bytes) -> None:
        with self._mutex:
            self._require_bucket(bucket)
            self._objects[(bucket, key)] = bytes(body)

    def object_keys(self, bucket: str) -> list[str]:
        with self._mutex:
            return sorted(k for b, k in self._objects if b == bucket)

    def try_acquire_lock(self, table: str, lock_id: str, owner: str) -> bool:
        with self._mutex:
            self._require_table(table)
            if (table, lock_id) in self._locks:
                return False
            self._locks[(table, lock_id)] = owner
            return True

    def release_lock(self, table: str, lock_id: str, owner: str) -> None:
        with self._mutex:
            holder = self._locks.get((table, lock_id))
            if holder != owner:
                raise BridgeError(
                    f"Lock {lock_id} is held by {holder!r}, not {owner!r}",
                    code="ConditionalCheckFailedException",
                )
            del self._locks[(table, lock_id)]

    def lock_holder(self, table: str, lock_id: str) -> str | None:
        with self._mutex:
            return self._locks.get((table, lock_id))

    def _require_bucket(self, bucket: str) -> None:
        if bucket not in self._buckets:
            raise BridgeError(f"Bucket {bucket} does not exist", code="NoSuchBucket")

    def _require_table(self, table: str) -> None:
        if table not in self._tables:
            raise BridgeError(
                f"Table {table} does not exist", code="ResourceNotFoundException"
            )
