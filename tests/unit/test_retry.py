"""Tests for bounded polling: fixed attempts and deadline-based waits."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rollforge.core.retry import Exhausted, Resolved, RetryPolicy, poll, poll_until


def _ready_on(n: int, value: str = "ok"):
    calls: list[int] = []

    def probe(attempt: int):
        calls.append(attempt)
        return value if attempt >= n else None

    return probe, calls


class TestPoll:
    def test_resolves_on_last_attempt(self, clock):
        probe, calls = _ready_on(6)
        result = poll(probe, RetryPolicy.fixed(6, 2.0), sleep=clock.sleep)
        assert isinstance(result, Resolved)
        assert result.value == "ok"
        assert result.attempts == 6
        assert calls == [1, 2, 3, 4, 5, 6]
        assert clock.sleeps == [2.0] * 5

    def test_exhausted_without_trailing_sleep(self, clock):
        probe, calls = _ready_on(99)
        result = poll(probe, RetryPolicy.fixed(6, 2.0), sleep=clock.sleep)
        assert isinstance(result, Exhausted)
        assert result.attempts == 6
        assert len(calls) == 6
        assert clock.sleeps == [2.0] * 5

    def test_immediate_success_never_sleeps(self, clock):
        probe, _ = _ready_on(1)
        result = poll(probe, RetryPolicy.fixed(3, 1.0), sleep=clock.sleep)
        assert isinstance(result, Resolved)
        assert clock.sleeps == []

    def test_probe_exception_propagates(self, clock):
        def probe(attempt: int):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            poll(probe, RetryPolicy.fixed(6, 2.0), sleep=clock.sleep)
        assert clock.sleeps == []

    def test_custom_backoff(self, clock):
        probe, _ = _ready_on(4)
        policy = RetryPolicy(attempts=4, backoff=lambda n: 2.0 ** n)
        poll(probe, policy, sleep=clock.sleep)
        assert clock.sleeps == [2.0, 4.0, 8.0]

    def test_policy_requires_an_attempt(self):
        with pytest.raises(ValidationError):
            RetryPolicy.fixed(0, 1.0)


class TestPollUntil:
    def test_deadline_clips_last_sleep(self, clock):
        probe, calls = _ready_on(99)
        result = poll_until(
            probe, interval=3.0, timeout=10.0, sleep=clock.sleep, clock=clock
        )
        assert isinstance(result, Exhausted)
        assert clock.sleeps == [3.0, 3.0, 3.0, 1.0]
        assert result.attempts == len(calls) == 5
        assert result.elapsed_seconds == 10.0

    def test_resolves_before_deadline(self, clock):
        probe, _ = _ready_on(3)
        result = poll_until(
            probe, interval=5.0, timeout=60.0, sleep=clock.sleep, clock=clock
        )
        assert isinstance(result, Resolved)
        assert result.attempts == 3
        assert clock.now == 10.0

    def test_probe_called_at_least_once(self, clock):
        probe, calls = _ready_on(99)
        poll_until(probe, interval=1.0, timeout=0.0, sleep=clock.sleep, clock=clock)
        assert calls == [1]
