"""Definition registrar.

Validates a draft and submits it to the definition store as a new,
immutable revision.  Nothing with a mutable image tag is ever submitted.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from rollforge.bridge.protocols import BridgeError, DefinitionStore
from rollforge.core.errors import RegistrationError, UnresolvedDigestError
from rollforge.models.artifacts import is_pinned_ref
from rollforge.models.definitions import DefinitionDraft, DefinitionRevision

logger = logging.getLogger(__name__)


def validate_draft(draft: DefinitionDraft) -> None:
    """Raise unless *draft* has a family, containers, and only pinned images."""
    definition = draft.definition
    if not definition.family:
        raise RegistrationError("Draft has no family")
    if not definition.container_definitions:
        raise RegistrationError("Draft has no containers", family=definition.family)
    unpinned = [ref for ref in definition.image_refs if not is_pinned_ref(ref)]
    if unpinned or not is_pinned_ref(draft.image_ref):
        raise UnresolvedDigestError(
            "Draft references images by tag",
            family=definition.family,
            images=", ".join(unpinned) or draft.image_ref,
        )


class DefinitionRegistrar:
    """Submits validated drafts as new, immutable revisions."""

    def __init__(self, store: DefinitionStore) -> None:
        self._store = store

    def register(self, draft: DefinitionDraft) -> DefinitionRevision:
        """Register *draft* and return the new revision.

        Raises
        ------
        UnresolvedDigestError
            If any image is not digest-pinned (nothing is submitted).
        RegistrationError
            If the store rejects the draft or returns an implausible revision.
        """
        validate_draft(draft)
        family = draft.family

        try:
            number, identifier = self._store.register(draft.definition.to_payload())
        except BridgeError as exc:
            logger.error("Registration of %s rejected: %s", family, exc)
            raise RegistrationError(
                f"Definition store rejected the draft: {exc}",
                family=family,
                code=exc.code or None,
            ) from exc

        if draft.source_revision is not None and number <= draft.source_revision:
            raise RegistrationError(
                "Store returned a revision that does not advance the family",
                family=family,
                revision=number,
                source_revision=draft.source_revision,
            )

        try:
            revision = DefinitionRevision(
                family=family,
                revision_number=number,
                container_image_ref=draft.image_ref,
                identifier=identifier,
            )
        except ValidationError as exc:
            raise RegistrationError(
                "Store returned an invalid revision", family=family, revision=number
            ) from exc

        logger.info("Registered %s revision %d (%s)", family, number, identifier)
        return revision
