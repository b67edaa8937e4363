"""Tests for the Pydantic models: environments, artifacts, definitions, results."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rollforge.models.artifacts import Artifact, is_pinned_ref, is_valid_digest
from rollforge.models.definitions import (
    DefinitionRevision,
    RegistrableDefinition,
    StoredDefinition,
)
from rollforge.models.deployment import (
    RolloutResult,
    RolloutState,
    ServiceObservation,
)
from rollforge.models.environment import Environment, partition_key_for

REPO = "123456789012.dkr.ecr.eu-west-1.amazonaws.com/web"
DIGEST = "sha256:" + "deadbeef" * 8


class TestEnvironment:
    def test_named_derives_partition_key(self):
        env = Environment.named("dev")
        assert env.state_partition_key == "env:/dev/rollforge/state.json"

    def test_partition_keys_differ_per_environment(self):
        assert partition_key_for("dev") != partition_key_for("prod")

    def test_custom_state_key(self):
        env = Environment.named("prod", "app/terraform.tfstate")
        assert env.state_partition_key == "env:/prod/app/terraform.tfstate"

    @pytest.mark.parametrize("name", ["Prod", "", "1dev", "dev_1", "a" * 40])
    def test_invalid_names_rejected(self, name: str):
        with pytest.raises(ValidationError):
            Environment.named(name)

    def test_frozen(self):
        env = Environment.named("dev")
        with pytest.raises(ValidationError):
            env.name = "prod"


class TestArtifact:
    def test_unresolved_has_no_pinned_reference(self):
        art = Artifact(repository=REPO, tag="v42-abc1234", build_id="42")
        assert not art.is_resolved
        assert art.tagged_reference == f"{REPO}:v42-abc1234"
        with pytest.raises(ValueError):
            art.pinned_reference

    def test_with_digest_pins(self):
        art = Artifact(repository=REPO, tag="v42-abc1234", build_id="42")
        resolved = art.with_digest(DIGEST)
        assert resolved.is_resolved
        assert resolved.pinned_reference == f"{REPO}@{DIGEST}"
        assert art.digest is None  # original untouched

    def test_with_digest_rejects_malformed(self):
        art = Artifact(repository=REPO, tag="v1-abc1234", build_id="1")
        with pytest.raises(ValidationError):
            art.with_digest("sha256:abc")

    def test_digest_validated_on_construction(self):
        with pytest.raises(ValidationError):
            Artifact(repository=REPO, tag="t", build_id="1", digest="md5:" + "0" * 32)

    def test_digest_helpers(self):
        assert is_valid_digest(DIGEST)
        assert not is_valid_digest("sha256:" + "DEADBEEF" * 8)
        assert not is_valid_digest(None)
        assert is_pinned_ref(f"{REPO}@{DIGEST}")
        assert is_pinned_ref(f"{REPO}@{DIGEST}", repository=REPO)
        assert not is_pinned_ref(f"{REPO}@{DIGEST}", repository="other/repo")
        assert not is_pinned_ref(f"{REPO}:latest")
        assert not is_pinned_ref(f"@{DIGEST}")


class TestDefinitions:
    def test_registrable_drops_server_fields(self, make_stored_definition):
        stored = StoredDefinition.model_validate(make_stored_definition())
        payload = RegistrableDefinition.from_stored(stored).to_payload()

        for server_field in (
            "taskDefinitionArn",
            "revision",
            "status",
            "requiresAttributes",
            "compatibilities",
            "registeredAt",
            "registeredBy",
            "deregisteredAt",
        ):
            assert server_field not in payload
        assert payload["family"] == "web"
        assert payload["executionRoleArn"].endswith("role/exec")
        assert payload["taskRoleArn"].endswith("role/task")
        assert payload["requiresCompatibilities"] == ["FARGATE"]

    def test_container_settings_carried_through(self, make_stored_definition):
        stored = StoredDefinition.model_validate(make_stored_definition())
        payload = RegistrableDefinition.from_stored(stored).to_payload()
        first = payload["containerDefinitions"][0]
        assert first["essential"] is True
        assert first["environment"] == [{"name": "INDEX", "value": "0"}]

    def test_registrable_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            RegistrableDefinition.model_validate(
                {
                    "family": "web",
                    "containerDefinitions": [{"name": "c", "image": "i"}],
                    "status": "ACTIVE",
                }
            )

    def test_revision_requires_pinned_image(self):
        with pytest.raises(ValidationError):
            DefinitionRevision(
                family="web",
                revision_number=8,
                container_image_ref=f"{REPO}:latest",
                identifier="arn:...:8",
            )

    def test_revision_number_positive(self):
        with pytest.raises(ValidationError):
            DefinitionRevision(
                family="web",
                revision_number=0,
                container_image_ref=f"{REPO}@{DIGEST}",
                identifier="arn",
            )


class TestDeployment:
    def test_terminal_states(self):
        assert RolloutState.STABLE.is_terminal
        assert RolloutState.FAILED.is_terminal
        assert RolloutState.TIMED_OUT.is_terminal
        assert not RolloutState.SERVICE_UPDATING.is_terminal

    def test_steady_requires_revision_counts_and_single_deployment(self):
        obs = ServiceObservation(
            current_revision="arn:8", running_count=2, desired_count=2, deployment_count=1
        )
        assert obs.is_steady_for("arn:8")
        assert not obs.is_steady_for("arn:7")
        assert not obs.model_copy(update={"running_count": 1}).is_steady_for("arn:8")
        assert not obs.model_copy(update={"deployment_count": 2}).is_steady_for("arn:8")

    @pytest.mark.parametrize(
        "state, code",
        [
            (RolloutState.STABLE, 0),
            (RolloutState.FAILED, 1),
            (RolloutState.TIMED_OUT, 3),
        ],
    )
    def test_exit_codes(self, state: RolloutState, code: int):
        result = RolloutResult(run_id="r", environment="dev", state=state)
        assert result.exit_code == code
        assert result.succeeded is (state == RolloutState.STABLE)
