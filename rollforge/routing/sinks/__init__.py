"""Sink protocol for rollout notifications.

All sinks implement ``BaseSink``: a ``sink_name`` property and an
``accept(notification)`` method.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rollforge.models.notifications import RolloutNotification


@runtime_checkable
class BaseSink(Protocol):
    """Protocol every notification sink implements.

    Attributes
    ----------
    sink_name : str
        A unique identifier for this sink instance (e.g. ``"local_file"``).
    """

    @property
    def sink_name(self) -> str:
        ...

    def accept(self, notification: RolloutNotification) -> None:
        """Deliver *notification*.  May raise; the dispatcher logs and moves on."""
        ...
