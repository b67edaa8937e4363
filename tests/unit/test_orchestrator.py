"""Tests for RolloutPipeline: stage wiring, terminal states, lock and notifications."""

from __future__ import annotations

from unittest import mock

from botocore.exceptions import EndpointConnectionError

from rollforge.bridge.aws import EcsService
from rollforge.bridge.memory import (
    InMemoryDefinitionStore,
    InMemoryImageBuilder,
    InMemoryOrchestrationService,
    InMemoryRegistry,
    InMemoryStateBackend,
)
from rollforge.bridge.protocols import BridgeError
from rollforge.core.orchestrator import RolloutPipeline
from rollforge.models.deployment import DeploymentStatus, RolloutState
from rollforge.models.environment import Environment
from rollforge.models.notifications import RolloutNotification
from rollforge.routing.dispatcher import SinkDispatcher

GIT_SHA = "abc1234def5678abc1234def5678abc1234def56"
LOCK_ID = "state-bucket/env:/dev/rollforge/state.json"


class _RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.received: list[RolloutNotification] = []

    @property
    def sink_name(self) -> str:
        return "recording"

    def accept(self, notification: RolloutNotification) -> None:
        if self.fail:
            raise ConnectionError("down")
        self.received.append(notification)


class _StickyLockBackend(InMemoryStateBackend):
    def release_lock(self, table: str, lock_id: str, owner: str) -> None:
        raise BridgeError("throttled", code="ProvisionedThroughputExceededException")


class TestRolloutPipeline:
    def test_happy_path(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline()
        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-1")

        assert result.state == RolloutState.STABLE
        assert result.exit_code == 0
        assert result.revision.revision_number == 8
        assert result.deployment.status == DeploymentStatus.STABLE
        assert bridges["state"].lock_holder("locks", LOCK_ID) is None

        transitions = [e.state_transition for e in pipeline.ledger.get_run_entries("run-1")]
        assert transitions == [
            "start->initiated",
            "initiated->awaiting_digest",
            "awaiting_digest->definition_registered",
            "definition_registered->service_updating",
            "service_updating->stable",
        ]
        assert pipeline.ledger.verify_chain("run-1")

    def test_partition_state_records_stable_revision(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline()
        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-1")

        backend = pipeline.bootstrapper.ensure_backend_exists()
        record = pipeline.selector.select_partition(backend, dev).read_state()
        assert record.revision_identifier == result.revision_identifier
        assert record.container_image_ref == result.revision.container_image_ref
        assert record.run_id == "run-1"

    def test_missing_definition_fails_before_update(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline(seed=False)
        result = pipeline.run(dev, GIT_SHA, "42")

        assert result.state == RolloutState.FAILED
        assert result.error_type == "DefinitionNotFoundError"
        assert result.error_context["family"] == "web"
        assert bridges["definitions"].register_calls == 0
        assert bridges["service"].update_calls == []

    def test_stabilization_timeout(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline(start_after=None)
        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-1")

        assert result.state == RolloutState.TIMED_OUT
        assert result.exit_code == 3
        assert result.deployment.status == DeploymentStatus.TIMED_OUT
        assert len(bridges["service"].update_calls) == 1
        assert bridges["state"].lock_holder("locks", LOCK_ID) is None

        backend = pipeline.bootstrapper.ensure_backend_exists()
        record = pipeline.selector.select_partition(backend, dev).read_state()
        assert record.revision_identifier is None  # only stable rollouts are recorded
        assert pipeline.ledger.get_latest("run-1").state_transition == (
            "service_updating->timed_out"
        )

    def test_locked_partition_fails_without_publishing(self, make_pipeline, dev, clock):
        state = InMemoryStateBackend()
        state.create_bucket("state-bucket")
        state.create_lock_table("locks")
        state.try_acquire_lock("locks", LOCK_ID, "someone-else")
        pipeline, bridges = make_pipeline(state=state)

        result = pipeline.run(dev, GIT_SHA, "42")

        assert result.state == RolloutState.FAILED
        assert result.error_type == "PartitionLockError"
        assert bridges["builder"].builds == []
        assert state.lock_holder("locks", LOCK_ID) == "someone-else"
        assert clock.now == 900.0

    def test_other_environment_not_blocked(self, make_pipeline, clock):
        state = InMemoryStateBackend()
        state.create_bucket("state-bucket")
        state.create_lock_table("locks")
        state.try_acquire_lock("locks", LOCK_ID, "someone-else")  # dev is locked
        pipeline, _ = make_pipeline(state=state)

        result = pipeline.run(Environment.named("prod"), GIT_SHA, "42")
        assert result.state == RolloutState.STABLE

    def test_publish_failure(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline()
        bridges["builder"].fail_with = "docker push denied"
        result = pipeline.run(dev, GIT_SHA, "42")
        assert result.state == RolloutState.FAILED
        assert result.error_type == "ArtifactPublishError"
        assert result.artifact is None

    def test_release_failure_does_not_change_outcome(self, make_pipeline, dev):
        pipeline, _ = make_pipeline(state=_StickyLockBackend())
        result = pipeline.run(dev, GIT_SHA, "42")
        assert result.state == RolloutState.STABLE

    def test_consecutive_runs_advance_revision(self, make_pipeline, dev):
        pipeline, _ = make_pipeline()
        first = pipeline.run(dev, GIT_SHA, "42")
        second = pipeline.run(dev, GIT_SHA, "43")
        assert first.revision.revision_number == 8
        assert second.revision.revision_number == 9
        assert second.artifact.tag == "v43-abc1234"

    def test_notification_sent_on_terminal_state(self, make_pipeline, dev):
        sink = _RecordingSink()
        pipeline, _ = make_pipeline()
        pipeline.dispatcher = SinkDispatcher([sink])
        result = pipeline.run(dev, GIT_SHA, "42")

        (notification,) = sink.received
        assert notification.status == RolloutState.STABLE
        assert notification.environment == "dev"
        assert notification.revision_identifier == result.revision_identifier

    def test_notification_failure_ignored(self, make_pipeline, dev):
        pipeline, _ = make_pipeline()
        pipeline.dispatcher = SinkDispatcher([_RecordingSink(fail=True)])
        assert pipeline.run(dev, GIT_SHA, "42").state == RolloutState.STABLE

    def test_rolled_back_deployment_is_failure_not_timeout(self, make_pipeline, dev, clock):
        service = InMemoryOrchestrationService(fail_rollout=True, roll_back=True)
        pipeline, _ = make_pipeline(service=service)
        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-1")

        assert result.state == RolloutState.FAILED
        assert result.error_type == "ServiceUpdateError"
        assert result.deployment.status == DeploymentStatus.FAILED
        assert result.deployment.observed_revision.endswith("web:7")
        assert clock.sleeps == []
        assert pipeline.ledger.get_latest("run-1").state_transition == (
            "service_updating->failed"
        )

    def test_unreachable_service_endpoint_fails_and_notifies(
        self, pipeline_config, dev, clock, make_stored_definition
    ):
        ecs = mock.MagicMock()
        ecs.update_service.return_value = {}
        ecs.describe_services.side_effect = EndpointConnectionError(
            endpoint_url="https://ecs.eu-west-1.amazonaws.com/"
        )
        registry = InMemoryRegistry(index_after=0)
        definitions = InMemoryDefinitionStore()
        definitions.seed(make_stored_definition())
        sink = _RecordingSink()
        state = InMemoryStateBackend()
        pipeline = RolloutPipeline(
            pipeline_config,
            registry=registry,
            builder=InMemoryImageBuilder(registry),
            definitions=definitions,
            service=EcsService(client=ecs),
            state=state,
            dispatcher=SinkDispatcher([sink]),
            sleep=clock.sleep,
            clock=clock,
        )

        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-1")

        assert result.state == RolloutState.FAILED
        assert result.error_type == "ServiceUpdateError"
        assert "Could not connect to the endpoint URL" in result.error_message
        assert pipeline.ledger.get_latest("run-1").state_transition == (
            "service_updating->failed"
        )
        assert pipeline.ledger.verify_chain("run-1")
        (notification,) = sink.received
        assert notification.status == RolloutState.FAILED
        assert state.lock_holder("locks", LOCK_ID) is None
