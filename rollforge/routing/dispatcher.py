"""SinkDispatcher: fans a rollout notification out to every sink.

Sink failures are logged but do not prevent delivery to the remaining
sinks.  Only a dispatch in which every sink failed raises.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rollforge.models.notifications import RolloutNotification

if TYPE_CHECKING:
    from rollforge.routing.sinks import BaseSink

logger = logging.getLogger(__name__)


class SinkDispatchError(RuntimeError):
    """Raised when every registered sink failed for one notification."""

    def __init__(self, message: str, failures: dict[str, Exception]) -> None:
        super().__init__(message)
        self.failures = failures


class SinkDispatcher:
    """Routes notifications to all configured sinks, in registration order."""

    def __init__(self, sinks: list[BaseSink] | None = None) -> None:
        self._sinks: list[BaseSink] = []
        for sink in sinks or []:
            self.register_sink(sink)

    def register_sink(self, sink: BaseSink) -> None:
        """Register *sink*.  Registering the same instance twice is a no-op."""
        if sink not in self._sinks:
            self._sinks.append(sink)
            logger.info("Registered sink: %s", sink.sink_name)

    @property
    def registered_sinks(self) -> list[BaseSink]:
        return list(self._sinks)

    def dispatch(self, notification: RolloutNotification) -> list[str]:
        """Deliver *notification* to all sinks.

        Returns the names of the sinks that accepted it.

        Raises
        ------
        SinkDispatchError
            If *all* sinks fail.  Individual failures are tolerated.
        """
        label = (
            f"run {notification.run_id} "
            f"({notification.environment}: {notification.status.value})"
        )
        if not self._sinks:
            logger.debug("No sinks registered; %s not announced", label)
            return []

        succeeded: list[str] = []
        failures: dict[str, Exception] = {}
        for sink in self._sinks:
            try:
                sink.accept(notification)
            except Exception as exc:  # noqa: BLE001
                logger.error("Sink %s could not announce %s: %s", sink.sink_name, label, exc)
                failures[sink.sink_name] = exc
            else:
                succeeded.append(sink.sink_name)

        if failures and not succeeded:
            raise SinkDispatchError(
                f"No sink announced {label}: "
                + "; ".join(f"{name}: {exc}" for name, exc in failures.items()),
                failures,
            )
        if failures:
            logger.warning(
                "%s announced via %s; failed on %s",
                label,
                ", ".join(succeeded),
                ", ".join(failures),
            )
        return succeeded
