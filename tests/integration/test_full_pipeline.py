"""Integration tests: full rollouts through every stage on in-memory bridges."""

from __future__ import annotations

from rollforge.bridge.memory import (
    InMemoryImageBuilder,
    InMemoryRegistry,
)
from rollforge.models.artifacts import is_pinned_ref
from rollforge.models.deployment import DeploymentStatus, RolloutState
from rollforge.models.environment import Environment

REPO = "123456789012.dkr.ecr.eu-west-1.amazonaws.com/web"
GIT_SHA = "abc1234def5678abc1234def5678abc1234def56"
DIGEST = "sha256:" + "deadbeef" * 8


class _FixedDigestBuilder(InMemoryImageBuilder):
    """Pushes every build with the same known digest."""

    def build_and_push(self, repository: str, tag: str, source_ref: str) -> str:
        self.builds.append((repository, tag, source_ref))
        return self.registry.push(repository, tag, DIGEST)


class TestFullRollout:
    def test_build_42_reaches_stable(self, make_pipeline, dev):
        registry = InMemoryRegistry(index_after=2)
        pipeline, bridges = make_pipeline(
            registry=registry, builder=_FixedDigestBuilder(registry)
        )

        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-42")

        assert result.state == RolloutState.STABLE
        assert result.exit_code == 0
        assert result.artifact.tag == "v42-abc1234"
        assert result.artifact.digest == DIGEST
        assert registry.describe_calls(REPO, "v42-abc1234") == 3

        assert result.revision.revision_number == 8
        assert result.revision.container_image_ref == f"{REPO}@{DIGEST}"
        assert result.deployment.status == DeploymentStatus.STABLE
        assert result.deployment.running_count == 2
        assert result.deployment.desired_count == 2

        latest = bridges["definitions"].describe("web")
        assert latest["revision"] == 8
        images = [c["image"] for c in latest["containerDefinitions"]]
        assert images == [f"{REPO}@{DIGEST}"] * 2
        assert all(is_pinned_ref(i) for i in images)
        # Everything else about the definition is carried over.
        assert latest["executionRoleArn"] == "arn:aws:iam::123456789012:role/exec"
        assert [c["environment"] for c in latest["containerDefinitions"]] == [
            [{"name": "INDEX", "value": "0"}],
            [{"name": "INDEX", "value": "1"}],
        ]

        assert [call[1] for call in bridges["service"].update_calls] == [
            result.revision_identifier
        ]
        assert pipeline.ledger.verify_chain("run-42")

    def test_digest_never_appears(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline(index_after=None)
        result = pipeline.run(dev, GIT_SHA, "42", run_id="run-x")

        assert result.state == RolloutState.FAILED
        assert result.exit_code != 0
        assert result.error_type == "ArtifactNotFoundError"
        assert bridges["registry"].describe_calls(REPO, "v42-abc1234") == 6
        assert bridges["definitions"].register_calls == 0
        assert bridges["service"].update_calls == []
        assert pipeline.ledger.get_latest("run-x").state_transition == (
            "awaiting_digest->failed"
        )

    def test_rebuilding_same_build_id_is_rejected(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline()
        assert pipeline.run(dev, GIT_SHA, "42").state == RolloutState.STABLE

        again = pipeline.run(dev, GIT_SHA, "42")
        assert again.state == RolloutState.FAILED
        assert again.error_type == "ArtifactPublishError"
        assert len(bridges["service"].update_calls) == 1


class TestEnvironmentIsolation:
    def test_two_environments_keep_separate_state(self, make_pipeline, dev):
        pipeline, bridges = make_pipeline()
        prod = Environment.named("prod")

        first = pipeline.run(dev, GIT_SHA, "42", run_id="run-dev")
        second = pipeline.run(prod, GIT_SHA, "43", run_id="run-prod")
        assert first.succeeded and second.succeeded

        keys = bridges["state"].object_keys("state-bucket")
        assert keys == [
            "env:/dev/rollforge/state.json",
            "env:/prod/rollforge/state.json",
        ]
        backend = pipeline.bootstrapper.ensure_backend_exists()
        dev_state = pipeline.selector.select_partition(backend, dev).read_state()
        prod_state = pipeline.selector.select_partition(backend, prod).read_state()
        assert dev_state.run_id == "run-dev"
        assert prod_state.run_id == "run-prod"
        assert dev_state.revision_identifier != prod_state.revision_identifier

        assert pipeline.ledger.get_environment_run_ids("dev") == ["run-dev"]
        assert pipeline.ledger.get_environment_run_ids("prod") == ["run-prod"]
