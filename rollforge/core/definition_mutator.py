"""Definition mutator.

Fetches the active definition for a family and produces a registrable
draft in which every container image is pinned to the artifact's digest.
``mutate`` is pure: it performs no external calls and never modifies its
input.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from rollforge.bridge.protocols import BridgeError, DefinitionStore
from rollforge.core.errors import (
    DefinitionNotFoundError,
    RegistrationError,
    UnresolvedDigestError,
)
from rollforge.models.artifacts import Artifact
from rollforge.models.definitions import (
    DefinitionDraft,
    RegistrableDefinition,
    StoredDefinition,
)

logger = logging.getLogger(__name__)


class DefinitionMutator:
    """Reads the active definition and pins a resolved artifact into a copy of it."""

    def __init__(self, store: DefinitionStore) -> None:
        self._store = store

    def fetch_current(self, family: str) -> StoredDefinition:
        """Return the active definition for *family*.

        Raises
        ------
        DefinitionNotFoundError
            If no definition exists.  Families must be seeded out-of-band.
        """
        try:
            payload = self._store.describe(family)
        except BridgeError as exc:
            raise DefinitionNotFoundError(
                f"Cannot describe definition: {exc}", family=family
            ) from exc
        if payload is None:
            logger.error("No active definition for family %s", family)
            raise DefinitionNotFoundError("No active definition", family=family)
        try:
            return StoredDefinition.model_validate(payload)
        except ValidationError as exc:
            raise DefinitionNotFoundError(
                f"Active definition is malformed: {exc.error_count()} error(s)",
                family=family,
            ) from exc

    @staticmethod
    def mutate(current: StoredDefinition, artifact: Artifact) -> DefinitionDraft:
        """Build a registrable draft pinning every container to *artifact*.

        Sidecars are pinned too: no container of the result refers to an
        image by tag.
        """
        if not artifact.is_resolved:
            raise UnresolvedDigestError(
                "Artifact has no resolved digest",
                repository=artifact.repository,
                tag=artifact.tag,
            )
        pinned = artifact.pinned_reference

        base = RegistrableDefinition.from_stored(current)
        containers = [
            c.model_copy(update={"image": pinned}) for c in base.container_definitions
        ]
        if not containers:
            raise RegistrationError(
                "Definition has no containers", family=current.family
            )
        definition = base.model_copy(update={"container_definitions": containers})

        logger.debug(
            "Pinned %d container(s) of %s to %s",
            len(containers),
            current.family,
            pinned,
        )
        return DefinitionDraft(
            definition=definition,
            image_ref=pinned,
            source_revision=current.revision,
        )
