"""Artifact publisher: builds and pushes a uniquely tagged image.

Tags have the form ``v{build_id}-{short_revision_fingerprint}``.  Tags are
never overwritten: publishing onto an existing tag is refused.
"""

from __future__ import annotations

import logging
import re

from rollforge.bridge.protocols import ArtifactRegistry, BridgeError, ImageBuilder
from rollforge.core.errors import ArtifactPublishError
from rollforge.core.hasher import short_revision_fingerprint
from rollforge.models.artifacts import Artifact

logger = logging.getLogger(__name__)

_BUILD_ID_RE = re.compile(r"^[0-9A-Za-z][0-9A-Za-z._-]*$")


def compute_tag(build_id: str, source_ref: str) -> str:
    """``v{build_id}-{fingerprint}``, e.g. ``v42-abc1234``."""
    if not _BUILD_ID_RE.match(build_id):
        raise ValueError(f"Invalid build id {build_id!r}")
    return f"v{build_id}-{short_revision_fingerprint(source_ref)}"


class ArtifactPublisher:
    """Publishes images to one repository."""

    def __init__(
        self,
        repository: str,
        registry: ArtifactRegistry,
        builder: ImageBuilder,
    ) -> None:
        self.repository = repository
        self._registry = registry
        self._builder = builder

    def publish(self, source_ref: str, build_id: str) -> Artifact:
        """Build *source_ref* and push it under its computed tag.

        Returns the (still unresolved) Artifact.

        Raises
        ------
        ArtifactPublishError
            If the tag already exists, or the build or push fails.
        """
        try:
            tag = compute_tag(build_id, source_ref)
        except ValueError as exc:
            raise ArtifactPublishError(
                str(exc), repository=self.repository, build_id=build_id
            ) from exc

        try:
            if self._registry.tag_exists(self.repository, tag):
                raise ArtifactPublishError(
                    "Tag already exists; tags are never overwritten",
                    repository=self.repository,
                    tag=tag,
                )
            logger.info("Publishing %s:%s from %s", self.repository, tag, source_ref)
            push_id = self._builder.build_and_push(self.repository, tag, source_ref)
        except BridgeError as exc:
            logger.error("Publishing %s:%s failed: %s", self.repository, tag, exc)
            raise ArtifactPublishError(
                f"Build or push failed: {exc}",
                repository=self.repository,
                tag=tag,
            ) from exc

        return Artifact(
            repository=self.repository,
            tag=tag,
            build_id=build_id,
            source_revision=source_ref,
            push_identifier=push_id or "",
        )
