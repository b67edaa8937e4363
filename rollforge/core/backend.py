"""Backend state bootstrapper.

Ensures the durable state store (object bucket + lock table) exists
before any state-mutating operation proceeds.  Safe to call from several
independent invocations at once: a creation race is detected through the
backend's "already exists" error and resolved by a single re-check.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from rollforge.bridge.protocols import BridgeError, ResourceExistsError, StateBackend
from rollforge.core.errors import BackendProvisioningError
from rollforge.models.environment import BackendHandle

logger = logging.getLogger(__name__)


class BackendBootstrapper:
    """Creates the state bucket and lock table when they are missing.

    Parameters
    ----------
    backend:
        The state backend bridge.
    bucket:
        Name of the object-store bucket holding state documents.
    lock_table:
        Name of the lock table.
    region:
        Recorded on the returned handle.
    """

    def __init__(
        self,
        backend: StateBackend,
        bucket: str,
        lock_table: str,
        region: str = "",
    ) -> None:
        self._backend = backend
        self._handle = BackendHandle(bucket=bucket, lock_table=lock_table, region=region)

    def ensure_backend_exists(self) -> BackendHandle:
        """Return the backend handle, creating missing resources first.

        Raises
        ------
        BackendProvisioningError
            If a resource is missing and cannot be created for any reason
            other than a concurrent creator winning the race.
        """
        self._ensure(
            "bucket",
            self._handle.bucket,
            self._backend.bucket_exists,
            self._backend.create_bucket,
        )
        self._ensure(
            "lock table",
            self._handle.lock_table,
            self._backend.lock_table_exists,
            self._backend.create_lock_table,
        )
        return self._handle

    def _ensure(
        self,
        kind: str,
        name: str,
        exists: Callable[[str], bool],
        create: Callable[[str], None],
    ) -> None:
        try:
            if exists(name):
                logger.debug("State %s %s already present", kind, name)
                return

            logger.info("State %s %s missing; creating", kind, name)
            try:
                create(name)
            except ResourceExistsError:
                # Another invocation created it between our check and create.
                logger.info("State %s %s was created concurrently; re-checking", kind, name)
                if not exists(name):
                    raise BackendProvisioningError(
                        f"State {kind} reported as existing but not visible",
                        resource=name,
                    ) from None
        except BridgeError as exc:
            logger.critical("Cannot provision state %s %s: %s", kind, name, exc)
            raise BackendProvisioningError(
                f"Cannot provision state {kind}: {exc}",
                resource=name,
                code=exc.code or None,
            ) from exc
