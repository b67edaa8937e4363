"""Workload definition models.

Two shapes describe the same definition:

- ``StoredDefinition`` is what the definition store returns.  It carries
  server-assigned fields (status, revision, ARN, registration metadata).
- ``RegistrableDefinition`` is what may be submitted as a new revision.
  It is an allow-list: building one from a stored definition keeps only
  the fields declared here, and unknown fields are rejected.

Field names are snake_case; the wire format is camelCase (via aliases).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rollforge.models.artifacts import is_pinned_ref

_WIRE_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


class ContainerDefinition(BaseModel):
    """One container entry.  Only ``name`` and ``image`` are interpreted;
    every other container setting is carried through untouched."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    image: str


class _DefinitionBody(BaseModel):
    """Fields that are valid both when stored and when registering."""

    model_config = _WIRE_CONFIG

    family: str
    container_definitions: list[ContainerDefinition]
    task_role_arn: str | None = None
    execution_role_arn: str | None = None
    network_mode: str | None = None
    volumes: list[dict[str, Any]] | None = None
    placement_constraints: list[dict[str, Any]] | None = None
    requires_compatibilities: list[str] | None = None
    cpu: str | None = None
    memory: str | None = None
    pid_mode: str | None = None
    ipc_mode: str | None = None
    proxy_configuration: dict[str, Any] | None = None
    inference_accelerators: list[dict[str, Any]] | None = None
    ephemeral_storage: dict[str, Any] | None = None
    runtime_platform: dict[str, Any] | None = None
    tags: list[dict[str, str]] | None = None


class StoredDefinition(_DefinitionBody):
    """The currently active definition as fetched from the store."""

    model_config = ConfigDict(extra="ignore")

    # Server-assigned; never valid on re-registration.
    task_definition_arn: str | None = None
    revision: int | None = None
    status: str | None = None
    requires_attributes: list[dict[str, Any]] | None = None
    compatibilities: list[str] | None = None
    registered_at: Any = None
    registered_by: str | None = None
    deregistered_at: Any = None


class RegistrableDefinition(_DefinitionBody):
    """A definition that may be submitted as a new revision."""

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_stored(cls, stored: StoredDefinition) -> RegistrableDefinition:
        """Copy only the allow-listed fields out of *stored*."""
        return cls(**{name: getattr(stored, name) for name in cls.model_fields})

    def to_payload(self) -> dict[str, Any]:
        """Wire-format dict suitable for the registration call."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def image_refs(self) -> list[str]:
        return [c.image for c in self.container_definitions]


class DefinitionDraft(BaseModel):
    """A mutated definition awaiting registration."""

    model_config = ConfigDict(frozen=True)

    definition: RegistrableDefinition
    image_ref: str  # the pinned reference applied to every container
    source_revision: int | None = None

    @property
    def family(self) -> str:
        return self.definition.family


class DefinitionRevision(BaseModel):
    """A registered, immutable revision of a definition family."""

    model_config = ConfigDict(frozen=True)

    family: str
    revision_number: int = Field(gt=0)
    container_image_ref: str
    identifier: str  # e.g. the task definition ARN

    @field_validator("container_image_ref")
    @classmethod
    def _check_pinned(cls, value: str) -> str:
        if not is_pinned_ref(value):
            raise ValueError(
                f"Registered revisions must reference a digest, got {value!r}"
            )
        return value
