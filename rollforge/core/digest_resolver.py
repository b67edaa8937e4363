"""Digest resolver: turns a mutable tag into a content-addressed digest.

Registries index pushes asynchronously, so the digest may not be visible
immediately.  The resolver polls a bounded number of times with a fixed
backoff.  Once it returns, nothing downstream refers to the image by tag.
"""

from __future__ import annotations

import logging
import time

from rollforge.bridge.protocols import ArtifactRegistry, BridgeError
from rollforge.core.errors import ArtifactNotFoundError
from rollforge.core.retry import Exhausted, Resolved, RetryPolicy, Sleep, poll
from rollforge.models.artifacts import Artifact, is_valid_digest

logger = logging.getLogger(__name__)

DEFAULT_POLICY = RetryPolicy.fixed(attempts=6, delay_seconds=2.0)


class DigestResolver:
    """Polls the registry for a tag's digest under a bounded retry policy."""

    def __init__(
        self,
        registry: ArtifactRegistry,
        policy: RetryPolicy = DEFAULT_POLICY,
        *,
        sleep: Sleep = time.sleep,
    ) -> None:
        self._registry = registry
        self.policy = policy
        self._sleep = sleep

    def try_resolve(self, repository: str, tag: str) -> Resolved | Exhausted:
        """Poll without raising; returns the tagged result."""

        def _probe(attempt: int) -> str | None:
            try:
                digest = self._registry.describe_digest(repository, tag)
            except BridgeError as exc:
                raise ArtifactNotFoundError(
                    f"Registry lookup failed: {exc}",
                    repository=repository,
                    tag=tag,
                    attempt=attempt,
                ) from exc
            if digest is None:
                return None
            if not is_valid_digest(digest):
                logger.warning(
                    "Ignoring malformed digest %r for %s:%s", digest, repository, tag
                )
                return None
            return digest

        return poll(
            _probe,
            self.policy,
            sleep=self._sleep,
            label=f"digest {repository}:{tag}",
        )

    def resolve_digest(self, repository: str, tag: str) -> str:
        """Return the ``sha256:...`` digest behind ``repository:tag``.

        Raises
        ------
        ArtifactNotFoundError
            If no digest appeared within the retry policy.
        """
        result = self.try_resolve(repository, tag)
        if isinstance(result, Exhausted):
            raise ArtifactNotFoundError(
                "Registry never exposed a digest for the tag",
                repository=repository,
                tag=tag,
                attempts=result.attempts,
            )
        logger.info(
            "Resolved %s:%s -> %s (attempt %d)",
            repository,
            tag,
            result.value,
            result.attempts,
        )
        return result.value

    def resolve(self, artifact: Artifact) -> Artifact:
        """Return *artifact* with its digest set."""
        if artifact.digest is not None:
            return artifact
        return artifact.with_digest(self.resolve_digest(artifact.repository, artifact.tag))
