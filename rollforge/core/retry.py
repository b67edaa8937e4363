"""Bounded polling with tagged results.

Two shapes of bounded wait are used by the pipeline:

- ``poll``: a fixed number of attempts with a backoff function between
  them (digest resolution).
- ``poll_until``: a fixed interval under an overall deadline (lock
  acquisition, service stabilization).

Both call a *probe* that returns a value when the condition is met and
``None`` otherwise, and both return ``Resolved(value)`` or ``Exhausted``.
Neither ever loops without a bound.  Exceptions raised by the probe are
not retried; they propagate to the caller immediately.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")

Probe = Callable[[int], Any]  # attempt number (1-based) -> value or None
Sleep = Callable[[float], None]
Clock = Callable[[], float]


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    """Backoff function returning the same delay after every attempt."""
    return lambda _attempt: seconds


class RetryPolicy(BaseModel):
    """Attempt count plus a backoff function ``attempt -> delay seconds``."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(ge=1)
    backoff: Callable[[int], float] = fixed_backoff(0.0)

    @classmethod
    def fixed(cls, attempts: int, delay_seconds: float) -> RetryPolicy:
        return cls(attempts=attempts, backoff=fixed_backoff(delay_seconds))

    def delay_after(self, attempt: int) -> float:
        return max(0.0, float(self.backoff(attempt)))


class Resolved(BaseModel, Generic[T]):
    """The probe produced a value."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: T
    attempts: int


class Exhausted(BaseModel):
    """The bound was reached without the probe producing a value."""

    model_config = ConfigDict(frozen=True)

    attempts: int
    elapsed_seconds: float = 0.0


def poll(
    probe: Probe,
    policy: RetryPolicy,
    *,
    sleep: Sleep = time.sleep,
    label: str = "poll",
) -> Resolved | Exhausted:
    """Call *probe* up to ``policy.attempts`` times, backing off in between."""
    for attempt in range(1, policy.attempts + 1):
        value = probe(attempt)
        if value is not None:
            logger.debug("%s resolved on attempt %d", label, attempt)
            return Resolved(value=value, attempts=attempt)
        if attempt < policy.attempts:
            delay = policy.delay_after(attempt)
            logger.info(
                "%s: attempt %d/%d not ready, retrying in %.1fs",
                label,
                attempt,
                policy.attempts,
                delay,
            )
            sleep(delay)
    logger.warning("%s: exhausted after %d attempts", label, policy.attempts)
    return Exhausted(attempts=policy.attempts)


def poll_until(
    probe: Probe,
    *,
    interval: float,
    timeout: float,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
    label: str = "poll",
) -> Resolved | Exhausted:
    """Call *probe* every *interval* seconds until it yields or *timeout* elapses.

    The probe is always called at least once.  The final sleep is clipped
    so the last probe happens at (or just before) the deadline.
    """
    started = clock()
    deadline = started + timeout
    attempt = 0
    while True:
        attempt += 1
        value = probe(attempt)
        if value is not None:
            return Resolved(value=value, attempts=attempt)
        remaining = deadline - clock()
        if remaining <= 0:
            elapsed = clock() - started
            logger.warning(
                "%s: deadline of %.1fs reached after %d attempts",
                label,
                timeout,
                attempt,
            )
            return Exhausted(attempts=attempt, elapsed_seconds=elapsed)
        sleep(min(interval, remaining))
