"""Run ledger entry model (append-only, hash-chained).

The ledger records one entry per rollout state transition.  It is:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous entry of the same run)
- Environment-aware (entries carry the environment they mutated)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only run ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    environment: str
    state_transition: str  # "from_state->to_state", e.g. "initiated->awaiting_digest"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    details: dict[str, Any] = {}  # artifact tag, digest, revision, error...
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
