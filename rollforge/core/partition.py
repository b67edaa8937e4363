"""Environment partition selector and partition lock.

Each environment's state lives under its own object key in the state
bucket (``env:/<name>/<state_key>``), guarded by its own entry in the lock
table.  State written under one partition can never collide with
another, and two pipeline runs for the same environment are serialized by
the lock.
"""

from __future__ import annotations

import json
import logging
import time
from types import TracebackType

from rollforge.bridge.protocols import BridgeError, StateBackend
from rollforge.core.errors import (
    BackendProvisioningError,
    PartitionLockError,
    PartitionStateError,
)
from rollforge.core.retry import Clock, Exhausted, Sleep, poll_until
from rollforge.models.environment import BackendHandle, Environment, PartitionRecord

logger = logging.getLogger(__name__)


class PartitionLock:
    """Distributed mutual exclusion for one partition.

    Acquisition blocks, retrying the conditional write every
    ``poll_seconds``, until it succeeds or ``timeout_seconds`` elapse.
    Usable as a context manager.
    """

    def __init__(
        self,
        partition: PartitionHandle,
        owner: str,
        *,
        poll_seconds: float,
        timeout_seconds: float,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self._partition = partition
        self.owner = owner
        self._poll_seconds = poll_seconds
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self.held = False

    def _try_acquire(self, _attempt: int) -> bool | None:
        p = self._partition
        try:
            acquired = p.store.try_acquire_lock(p.backend.lock_table, p.lock_id, self.owner)
        except BridgeError as exc:
            raise PartitionLockError(
                f"Lock acquisition failed: {exc}",
                environment=p.environment.name,
                lock_id=p.lock_id,
            ) from exc
        return True if acquired else None

    def acquire(self) -> PartitionLock:
        p = self._partition
        logger.info(
            "Acquiring partition lock %s for %s", p.lock_id, self.owner
        )
        result = poll_until(
            self._try_acquire,
            interval=self._poll_seconds,
            timeout=self._timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
            label=f"lock {p.lock_id}",
        )
        if isinstance(result, Exhausted):
            raise PartitionLockError(
                f"Partition is locked by another run; gave up after "
                f"{self._timeout_seconds:.0f}s",
                environment=p.environment.name,
                lock_id=p.lock_id,
            )
        self.held = True
        p._lock_owner = self.owner
        logger.info("Partition lock %s held by %s", p.lock_id, self.owner)
        return self

    def release(self) -> None:
        if not self.held:
            return
        p = self._partition
        try:
            p.store.release_lock(p.backend.lock_table, p.lock_id, self.owner)
        except BridgeError as exc:
            raise PartitionLockError(
                f"Lock release failed: {exc}",
                environment=p.environment.name,
                lock_id=p.lock_id,
            ) from exc
        finally:
            self.held = False
            p._lock_owner = None
        logger.info("Partition lock %s released by %s", p.lock_id, self.owner)

    def __enter__(self) -> PartitionLock:
        return self.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.release()
        except PartitionLockError:
            if exc is None:
                raise
            # Don't mask the original failure with a release failure.
            logger.exception("Releasing %s after failure also failed", self._partition.lock_id)


class PartitionHandle:
    """A bound state partition for one environment."""

    def __init__(
        self,
        store: StateBackend,
        backend: BackendHandle,
        environment: Environment,
    ) -> None:
        self.store = store
        self.backend = backend
        self.environment = environment
        self._lock_owner: str | None = None

    @property
    def state_key(self) -> str:
        return self.environment.state_partition_key

    @property
    def lock_id(self) -> str:
        return f"{self.backend.bucket}/{self.state_key}"

    @property
    def locked_by(self) -> str | None:
        return self._lock_owner

    def lock(
        self,
        owner: str,
        *,
        poll_seconds: float = 5.0,
        timeout_seconds: float = 900.0,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ) -> PartitionLock:
        return PartitionLock(
            self,
            owner,
            poll_seconds=poll_seconds,
            timeout_seconds=timeout_seconds,
            sleep=sleep,
            clock=clock,
        )

    def read_state(self) -> PartitionRecord | None:
        try:
            body = self.store.get_object(self.backend.bucket, self.state_key)
        except BridgeError as exc:
            raise PartitionStateError(
                f"Cannot read partition state: {exc}",
                environment=self.environment.name,
            ) from exc
        if body is None:
            return None
        return PartitionRecord.model_validate_json(body)

    def write_state(self, record: PartitionRecord, owner: str) -> None:
        """Persist *record*; only the current lock holder may write."""
        if self._lock_owner != owner:
            raise PartitionLockError(
                "Partition state may only be written while holding its lock",
                environment=self.environment.name,
                owner=owner,
            )
        if record.environment != self.environment.name:
            raise ValueError(
                f"Record for {record.environment!r} cannot be written to "
                f"partition {self.environment.name!r}"
            )
        body = json.dumps(record.model_dump(mode="json"), sort_keys=True).encode("utf-8")
        try:
            self.store.put_object(self.backend.bucket, self.state_key, body)
        except BridgeError as exc:
            raise PartitionStateError(
                f"Cannot write partition state: {exc}",
                environment=self.environment.name,
            ) from exc

    def __repr__(self) -> str:
        return f"<PartitionHandle env={self.environment.name!r} key={self.state_key!r}>"


class PartitionSelector:
    """Binds environments to their state partitions."""

    def __init__(self, store: StateBackend) -> None:
        self._store = store

    def select_partition(
        self, backend: BackendHandle, environment: Environment
    ) -> PartitionHandle:
        """Bind to *environment*'s partition, creating an empty one if absent."""
        handle = PartitionHandle(self._store, backend, environment)
        try:
            existing = self._store.get_object(backend.bucket, handle.state_key)
            if existing is None:
                logger.info(
                    "Creating state partition %s for environment %s",
                    handle.state_key,
                    environment.name,
                )
                empty = PartitionRecord(environment=environment.name)
                self._store.put_object(
                    backend.bucket,
                    handle.state_key,
                    json.dumps(empty.model_dump(mode="json"), sort_keys=True).encode("utf-8"),
                )
        except BridgeError as exc:
            raise BackendProvisioningError(
                f"Cannot bind state partition: {exc}",
                environment=environment.name,
                key=handle.state_key,
            ) from exc
        return handle
