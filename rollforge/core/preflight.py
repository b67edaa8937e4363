"""Preflight guard: validates settings before any external call.

Runs once per deploy.  All violations are collected and reported together
so a misconfigured pipeline fails with the complete list, not the first
missing variable.
"""

from __future__ import annotations

import logging

from rollforge.config import RollforgeSettings
from rollforge.core.errors import ConfigurationError
from rollforge.models.environment import ENVIRONMENT_NAME_RE

logger = logging.getLogger(__name__)

# Settings field names a deploy cannot start without.
REQUIRED_FOR_DEPLOY: list[str] = [
    "repository",
    "cluster",
    "service",
    "family",
    "state_bucket",
    "lock_table",
]

REQUIRED_FOR_BOOTSTRAP: list[str] = ["state_bucket", "lock_table"]


def collect_violations(
    settings: RollforgeSettings,
    *,
    required: list[str] | None = None,
    environment: str | None = None,
    build_id: str | None = None,
    source_ref: str | None = None,
) -> list[str]:
    """Return human-readable violations; empty means healthy."""
    violations: list[str] = []

    for field_name in required if required is not None else REQUIRED_FOR_DEPLOY:
        if not getattr(settings, field_name, ""):
            violations.append(
                f"'{field_name}' is not configured. Set ROLLFORGE_{field_name.upper()}."
            )

    if settings.repository and "/" not in settings.repository:
        violations.append(
            f"repository {settings.repository!r} is not a registry URI "
            "(expected <registry-host>/<name>)."
        )
    if "@" in settings.repository or settings.repository.rsplit("/", 1)[-1].count(":"):
        violations.append("repository must not carry a tag or digest.")

    bad_names = [n for n in settings.allowed_environments if not ENVIRONMENT_NAME_RE.match(n)]
    if bad_names:
        violations.append(f"Invalid environment names: {', '.join(bad_names)}.")
    if environment is not None and environment not in settings.allowed_environments:
        violations.append(
            f"Environment {environment!r} is not one of: "
            f"{', '.join(settings.allowed_environments)}."
        )

    if build_id is not None and not build_id:
        violations.append("No build id. Pass --build-id or set ROLLFORGE_BUILD_ID.")
    if source_ref is not None and not source_ref:
        violations.append(
            "No source revision. Pass --source-ref or set ROLLFORGE_SOURCE_REVISION."
        )

    if settings.digest_attempts < 1:
        violations.append("digest_attempts must be at least 1.")
    if settings.stability_timeout_seconds <= 0:
        violations.append("stability_timeout_seconds must be positive.")

    return violations


def enforce_preflight(settings: RollforgeSettings, **kwargs) -> None:
    """Raise ``ConfigurationError`` listing every violation, if any."""
    violations = collect_violations(settings, **kwargs)
    if violations:
        msg = "Preflight check failed.\n" + "\n".join(f"  - {v}" for v in violations)
        logger.critical(msg)
        raise ConfigurationError(msg, violations=len(violations))
    logger.info("Preflight check passed.")
