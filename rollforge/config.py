"""Rollforge settings: env-driven.

Reads ``ROLLFORGE_*`` environment variables and an optional ``.env`` file.
The CLI builds one ``RollforgeSettings`` per invocation and threads it
through; there is no module-level settings object.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rollforge.models.config import PipelineConfig
from rollforge.models.environment import DEFAULT_STATE_KEY, Environment


class RollforgeSettings(BaseSettings):
    """Deployment identifiers and rollout policy.

    Examples
    --------
    Override via environment::

        export ROLLFORGE_REGION=eu-west-1
        export ROLLFORGE_REPOSITORY=123456789012.dkr.ecr.eu-west-1.amazonaws.com/web
        export ROLLFORGE_CLUSTER=main
        export ROLLFORGE_SERVICE=web
        export ROLLFORGE_FAMILY=web
        export ROLLFORGE_STATE_BUCKET=acme-rollforge-state
        export ROLLFORGE_LOCK_TABLE=rollforge-locks
        export ROLLFORGE_BUILD_ID=42
        export ROLLFORGE_SOURCE_REVISION=abc1234...

    Or via .env file::

        ROLLFORGE_ALLOWED_ENVIRONMENTS='["dev", "prod"]'
        ROLLFORGE_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ROLLFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # AWS identifiers
    region: str = ""
    repository: str = ""  # full registry URI
    cluster: str = ""
    service: str = ""
    family: str = ""

    # CI-provided
    build_id: str = ""
    source_revision: str = ""

    # State backend
    state_bucket: str = ""
    lock_table: str = ""
    state_key: str = DEFAULT_STATE_KEY
    allowed_environments: list[str] = Field(
        default_factory=lambda: ["dev", "staging", "prod"]
    )

    # Rollout policy
    digest_attempts: int = 6
    digest_backoff_seconds: float = 2.0
    stability_poll_seconds: float = 15.0
    stability_timeout_seconds: float = 600.0
    lock_poll_seconds: float = 5.0
    lock_timeout_seconds: float = 900.0

    # Local storage
    ledger_path: Path = Path(".rollforge/ledger.db")
    events_path: Path | None = None  # JSONL notification log, off when unset

    # Docker build
    build_context: Path = Path(".")
    dockerfile: str = "Dockerfile"
    platform: str = ""

    # Notifications
    sns_topic_arn: str = ""

    def pipeline_config(self) -> PipelineConfig:
        """Freeze the per-run configuration."""
        return PipelineConfig(
            region=self.region,
            repository=self.repository,
            cluster=self.cluster,
            service=self.service,
            family=self.family,
            state_bucket=self.state_bucket,
            lock_table=self.lock_table,
            state_key=self.state_key,
            digest_attempts=self.digest_attempts,
            digest_backoff_seconds=self.digest_backoff_seconds,
            stability_poll_seconds=self.stability_poll_seconds,
            stability_timeout_seconds=self.stability_timeout_seconds,
            lock_poll_seconds=self.lock_poll_seconds,
            lock_timeout_seconds=self.lock_timeout_seconds,
            ledger_db_path=self.ledger_path,
        )

    def environment(self, name: str) -> Environment:
        """Return the ``Environment`` for *name*.

        Raises ``ValueError`` if *name* is not one of ``allowed_environments``.
        """
        if name not in self.allowed_environments:
            allowed = ", ".join(self.allowed_environments)
            raise ValueError(f"Unknown environment {name!r}; expected one of: {allowed}")
        return Environment.named(name, self.state_key)
