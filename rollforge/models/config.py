"""Pipeline configuration model."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from rollforge.models.deployment import ServiceTarget
from rollforge.models.environment import DEFAULT_STATE_KEY


class PipelineConfig(BaseModel):
    """Per-pipeline configuration: what to deploy where, and the polling policy.

    Built from ``RollforgeSettings`` by the CLI, or directly in tests.
    """

    model_config = ConfigDict(frozen=True)

    region: str = ""
    repository: str  # registry URI the artifact is pushed to
    cluster: str
    service: str
    family: str
    state_bucket: str
    lock_table: str
    state_key: str = DEFAULT_STATE_KEY

    # Digest resolution: fixed backoff absorbs registry indexing lag.
    digest_attempts: int = Field(default=6, ge=1)
    digest_backoff_seconds: float = Field(default=2.0, ge=0)

    # Stability polling: hard ceiling, not an error-free wait.
    stability_poll_seconds: float = Field(default=15.0, ge=0)
    stability_timeout_seconds: float = Field(default=600.0, gt=0)

    # Partition lock acquisition.
    lock_poll_seconds: float = Field(default=5.0, ge=0)
    lock_timeout_seconds: float = Field(default=900.0, gt=0)

    ledger_db_path: Path = Path(".rollforge/ledger.db")

    @property
    def service_target(self) -> ServiceTarget:
        return ServiceTarget(cluster=self.cluster, service=self.service)
