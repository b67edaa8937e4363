"""Canonical hashing helpers for the ledger chain and revision fingerprints."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

_GIT_SHA_RE = re.compile(r"^[0-9a-f]{7,64}$")

SHORT_FINGERPRINT_LEN = 7


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce deterministic canonical JSON bytes.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def short_revision_fingerprint(source_ref: str) -> str:
    """Short, stable fingerprint of a source revision.

    A git commit SHA is abbreviated to its first 7 characters.  Any other
    reference (branch name, archive path...) is hashed first so the
    fingerprint is still hex and still changes with the reference.
    """
    ref = source_ref.strip().lower()
    if not ref:
        raise ValueError("source_ref must not be empty")
    if not _GIT_SHA_RE.match(ref):
        ref = sha256_hex(ref.encode("utf-8"))
    return ref[:SHORT_FINGERPRINT_LEN]


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself).

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))
