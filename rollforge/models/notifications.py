"""Terminal-state notification model consumed by the notifier sinks."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from rollforge.models.deployment import RolloutResult, RolloutState


class RolloutNotification(BaseModel):
    """``(status, environment, revision_identifier)`` plus enough context
    to act on it without opening the ledger."""

    model_config = ConfigDict(frozen=True)

    notification_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    run_id: str
    status: RolloutState
    environment: str
    revision_identifier: str | None = None
    image_ref: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_result(cls, result: RolloutResult) -> RolloutNotification:
        image_ref = None
        if result.revision is not None:
            image_ref = result.revision.container_image_ref
        elif result.artifact is not None:
            image_ref = result.artifact.tagged_reference
        return cls(
            run_id=result.run_id,
            status=result.state,
            environment=result.environment,
            revision_identifier=result.revision_identifier,
            image_ref=image_ref,
            error_message=result.error_message,
        )

    @property
    def subject(self) -> str:
        return f"[rollforge] {self.environment}: {self.status.value}"
