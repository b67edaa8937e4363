"""Tests for partition selection, partition state and the partition lock."""

from __future__ import annotations

import threading
import time

import pytest

from rollforge.bridge.memory import InMemoryStateBackend
from rollforge.core.errors import BackendProvisioningError, PartitionLockError
from rollforge.core.partition import PartitionHandle, PartitionSelector
from rollforge.models.environment import BackendHandle, Environment, PartitionRecord

LOCK_ID = "state-bucket/env:/dev/rollforge/state.json"


class TestPartitionSelector:
    def test_creates_empty_partition(self, state, backend_handle, dev):
        handle = PartitionSelector(state).select_partition(backend_handle, dev)
        assert handle.state_key == "env:/dev/rollforge/state.json"
        assert state.object_keys("state-bucket") == [handle.state_key]
        assert handle.read_state() == PartitionRecord(environment="dev")

    def test_environments_isolated(self, state, backend_handle, dev):
        selector = PartitionSelector(state)
        dev_handle = selector.select_partition(backend_handle, dev)
        prod_handle = selector.select_partition(backend_handle, Environment.named("prod"))
        assert dev_handle.state_key != prod_handle.state_key
        assert len(state.object_keys("state-bucket")) == 2

    def test_existing_partition_untouched(self, state, backend_handle, dev):
        selector = PartitionSelector(state)
        handle = selector.select_partition(backend_handle, dev)
        record = PartitionRecord(environment="dev", revision_identifier="arn:8")
        with handle.lock("run-1"):
            handle.write_state(record, owner="run-1")

        again = selector.select_partition(backend_handle, dev)
        assert again.read_state() == record

    def test_missing_bucket_is_provisioning_error(self, dev):
        store = InMemoryStateBackend()
        with pytest.raises(BackendProvisioningError):
            PartitionSelector(store).select_partition(
                BackendHandle(bucket="nope", lock_table="locks"), dev
            )


class TestPartitionState:
    def test_write_requires_lock(self, state, backend_handle, dev):
        handle = PartitionSelector(state).select_partition(backend_handle, dev)
        with pytest.raises(PartitionLockError):
            handle.write_state(PartitionRecord(environment="dev"), owner="run-1")

    def test_write_rejects_other_environment(self, state, backend_handle, dev):
        handle = PartitionSelector(state).select_partition(backend_handle, dev)
        with handle.lock("run-1"):
            with pytest.raises(ValueError):
                handle.write_state(PartitionRecord(environment="prod"), owner="run-1")


class TestPartitionLock:
    def test_context_manager_holds_and_releases(self, state, backend_handle, dev):
        handle = PartitionHandle(state, backend_handle, dev)
        assert handle.lock_id == LOCK_ID
        with handle.lock("run-1"):
            assert state.lock_holder("locks", LOCK_ID) == "run-1"
            assert handle.locked_by == "run-1"
        assert state.lock_holder("locks", LOCK_ID) is None
        assert handle.locked_by is None

    def test_acquire_times_out_when_held(self, state, backend_handle, dev, clock):
        state.try_acquire_lock("locks", LOCK_ID, "other-run")
        handle = PartitionHandle(state, backend_handle, dev)
        lock = handle.lock(
            "run-1", poll_seconds=5, timeout_seconds=15, sleep=clock.sleep, clock=clock
        )
        with pytest.raises(PartitionLockError):
            lock.acquire()
        assert clock.sleeps == [5, 5, 5]
        assert state.lock_holder("locks", LOCK_ID) == "other-run"

    def test_different_environments_do_not_contend(self, state, backend_handle, dev):
        dev_handle = PartitionHandle(state, backend_handle, dev)
        prod_handle = PartitionHandle(state, backend_handle, Environment.named("prod"))
        with dev_handle.lock("run-1"), prod_handle.lock("run-2"):
            assert dev_handle.locked_by == "run-1"
            assert prod_handle.locked_by == "run-2"

    def test_release_failure_does_not_mask_error(self, state, backend_handle, dev):
        handle = PartitionHandle(state, backend_handle, dev)
        with pytest.raises(RuntimeError, match="stage failed"):
            with handle.lock("run-1"):
                state.release_lock("locks", LOCK_ID, "run-1")  # lock lost underneath
                raise RuntimeError("stage failed")

    def test_release_failure_raised_on_clean_exit(self, state, backend_handle, dev):
        handle = PartitionHandle(state, backend_handle, dev)
        with pytest.raises(PartitionLockError):
            with handle.lock("run-1"):
                state.release_lock("locks", LOCK_ID, "run-1")

    def test_concurrent_holders_serialized(self, state, backend_handle, dev):
        events: list[tuple[str, str]] = []
        events_lock = threading.Lock()

        def _critical_section(owner: str) -> None:
            handle = PartitionHandle(state, backend_handle, dev)
            with handle.lock(owner, poll_seconds=0.005, timeout_seconds=10):
                with events_lock:
                    events.append(("enter", owner))
                time.sleep(0.02)
                with events_lock:
                    events.append(("exit", owner))

        threads = [
            threading.Thread(target=_critical_section, args=(f"run-{i}",)) for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(events) == 8
        for i in range(0, 8, 2):
            assert events[i][0] == "enter"
            assert events[i + 1] == ("exit", events[i][1])
