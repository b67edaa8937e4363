"""Container artifact models (tags are mutable names, digests are not)."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


def is_valid_digest(value: str | None) -> bool:
    """Return True if *value* is a ``sha256:<64 hex>`` content digest."""
    return bool(value) and DIGEST_RE.match(value) is not None


def pinned_image_ref(repository: str, digest: str) -> str:
    """Return ``repository@digest``.  Raises ValueError for a bad digest."""
    if not is_valid_digest(digest):
        raise ValueError(f"Not a content digest: {digest!r}")
    return f"{repository}@{digest}"


def is_pinned_ref(image_ref: str, repository: str | None = None) -> bool:
    """Return True if *image_ref* is ``<repo>@sha256:<64 hex>``.

    When *repository* is given the repository part must match it exactly.
    """
    repo, sep, digest = image_ref.rpartition("@")
    if not sep or not repo or not is_valid_digest(digest):
        return False
    return repository is None or repo == repository


class Artifact(BaseModel):
    """A published container image.

    ``tag`` is assigned at publish time and never overwritten.  ``digest``
    is None until the registry has indexed the push; once set it is the
    only way downstream stages may reference the image.
    """

    model_config = ConfigDict(frozen=True)

    repository: str  # registry URI, e.g. "123.dkr.ecr.eu-west-1.amazonaws.com/app"
    tag: str
    build_id: str
    source_revision: str = ""
    digest: str | None = None
    push_identifier: str = ""  # opaque id returned by the registry push

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, value: str | None) -> str | None:
        if value is not None and not is_valid_digest(value):
            raise ValueError(f"Not a content digest: {value!r}")
        return value

    @property
    def is_resolved(self) -> bool:
        return self.digest is not None

    @property
    def tagged_reference(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def pinned_reference(self) -> str:
        """``repository@digest``.  Raises ValueError before resolution."""
        if self.digest is None:
            raise ValueError(
                f"Artifact {self.tagged_reference} has no resolved digest"
            )
        return pinned_image_ref(self.repository, self.digest)

    def with_digest(self, digest: str) -> Artifact:
        # model_copy skips validation; re-validate so a bad digest is rejected
        return Artifact.model_validate({**self.model_dump(), "digest": digest})
