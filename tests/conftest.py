"""Shared test fixtures for Rollforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from rollforge.bridge.memory import (
    InMemoryDefinitionStore,
    InMemoryImageBuilder,
    InMemoryOrchestrationService,
    InMemoryRegistry,
    InMemoryStateBackend,
)
from rollforge.core.orchestrator import RolloutPipeline
from rollforge.core.run_ledger import RunLedger
from rollforge.models.config import PipelineConfig
from rollforge.models.environment import BackendHandle, Environment

REPO = "123456789012.dkr.ecr.eu-west-1.amazonaws.com/web"
FAMILY = "web"
GIT_SHA = "abc1234def5678abc1234def5678abc1234def56"
DIGEST = "sha256:" + "deadbeef" * 8
OTHER_DIGEST = "sha256:" + "0123abcd" * 8
ARN_PREFIX = "arn:aws:ecs:local:000000000000:task-definition"


class FakeClock:
    """Monotonic clock that only advances when ``sleep`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def stored_definition(
    family: str = FAMILY,
    revision: int = 7,
    images: list[str] | None = None,
) -> dict[str, Any]:
    """Wire-format definition as the store returns it, server fields included."""
    images = images or [f"{REPO}:latest", "public.ecr.aws/aws-observability/aws-for-fluent-bit:stable"]
    return {
        "family": family,
        "taskDefinitionArn": f"{ARN_PREFIX}/{family}:{revision}",
        "revision": revision,
        "status": "ACTIVE",
        "requiresAttributes": [{"name": "com.amazonaws.ecs.capability.ecr-auth"}],
        "compatibilities": ["EC2", "FARGATE"],
        "registeredAt": "2026-01-01T00:00:00+00:00",
        "registeredBy": "arn:aws:iam::123456789012:role/ci",
        "networkMode": "awsvpc",
        "requiresCompatibilities": ["FARGATE"],
        "cpu": "256",
        "memory": "512",
        "executionRoleArn": "arn:aws:iam::123456789012:role/exec",
        "taskRoleArn": "arn:aws:iam::123456789012:role/task",
        "containerDefinitions": [
            {
                "name": f"c{i}",
                "image": image,
                "essential": i == 0,
                "environment": [{"name": "INDEX", "value": str(i)}],
            }
            for i, image in enumerate(images)
        ],
    }


@pytest.fixture
def ledger(tmp_path: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_path / "test_ledger.db")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dev() -> Environment:
    return Environment.named("dev")


@pytest.fixture
def state() -> InMemoryStateBackend:
    return InMemoryStateBackend()


@pytest.fixture
def backend_handle(state: InMemoryStateBackend) -> BackendHandle:
    """A state backend whose bucket and lock table already exist."""
    state.create_bucket("state-bucket")
    state.create_lock_table("locks")
    return BackendHandle(bucket="state-bucket", lock_table="locks")


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(
        region="eu-west-1",
        repository=REPO,
        cluster="main",
        service="web",
        family=FAMILY,
        state_bucket="state-bucket",
        lock_table="locks",
        stability_poll_seconds=15.0,
        stability_timeout_seconds=600.0,
        ledger_db_path=tmp_path / "ledger.db",
    )


@pytest.fixture
def make_pipeline(
    pipeline_config: PipelineConfig, clock: FakeClock
) -> Callable[..., tuple[RolloutPipeline, dict[str, Any]]]:
    """Factory fixture: a pipeline wired to fresh in-memory bridges.

    Returns ``(pipeline, bridges)``; the definition store is seeded with
    revision 7 of ``web`` and the service runs it with two tasks.
    """

    def _factory(
        index_after: int | None = 0,
        start_after: int | None = 0,
        desired_count: int = 2,
        seed: bool = True,
        **overrides: Any,
    ) -> tuple[RolloutPipeline, dict[str, Any]]:
        registry = InMemoryRegistry(index_after=index_after)
        bridges: dict[str, Any] = {
            "registry": registry,
            "builder": InMemoryImageBuilder(registry),
            "definitions": InMemoryDefinitionStore(),
            "service": InMemoryOrchestrationService(start_after=start_after),
            "state": InMemoryStateBackend(),
        }
        bridges.update(overrides)
        if seed:
            bridges["definitions"].seed(stored_definition())
        bridges["service"].create_service(
            pipeline_config.service_target,
            f"{ARN_PREFIX}/{FAMILY}:7",
            desired_count=desired_count,
        )
        pipeline = RolloutPipeline(
            pipeline_config, sleep=clock.sleep, clock=clock, **bridges
        )
        return pipeline, bridges

    return _factory


@pytest.fixture
def make_stored_definition() -> Callable[..., dict[str, Any]]:
    """Factory fixture: see ``stored_definition``."""
    return stored_definition
