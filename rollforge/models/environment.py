"""Environment and state-backend handle models.

An ``Environment`` is created once per logical deployment target and is
threaded explicitly through every pipeline call.  It is never read from
ambient process state.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

ENVIRONMENT_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{0,31}$")

DEFAULT_STATE_KEY = "rollforge/state.json"


def partition_key_for(env_name: str, state_key: str = DEFAULT_STATE_KEY) -> str:
    """Return the object key that isolates *env_name*'s state.

    Mirrors the ``env:/<workspace>/<key>`` layout used by workspace-aware
    state backends, so two environments can never share a key.
    """
    return f"env:/{env_name}/{state_key}"


class Environment(BaseModel):
    """A named deployment target with its own state partition."""

    model_config = ConfigDict(frozen=True)

    name: str
    state_partition_key: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not ENVIRONMENT_NAME_RE.match(value):
            raise ValueError(
                f"Invalid environment name {value!r}: expected lowercase "
                "letters, digits and dashes"
            )
        return value

    @classmethod
    def named(cls, name: str, state_key: str = DEFAULT_STATE_KEY) -> Environment:
        """Build an Environment whose partition key derives from *name*."""
        return cls(name=name, state_partition_key=partition_key_for(name, state_key))


class BackendHandle(BaseModel):
    """Identifies the durable state store: object bucket + lock table."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    lock_table: str
    region: str = ""


class PartitionRecord(BaseModel):
    """The state document persisted under an environment's partition key.

    Holds the last rollout that reached ``Stable``; empty on creation.
    """

    model_config = ConfigDict(frozen=True)

    environment: str
    family: str | None = None
    revision_identifier: str | None = None
    container_image_ref: str | None = None
    run_id: str | None = None
    updated_at: str | None = None
