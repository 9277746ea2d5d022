"""Hashing helpers for object fingerprints and desired-state change detection.

``content_hash`` is the MD5 hex digest an object store reports as a
single-part ETag; the synchronizer compares it to skip unchanged uploads.
``fingerprint_path`` names the per-object resource.  Neither is a security
primitive.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from pydantic import BaseModel


def content_hash(data: bytes) -> str:
    """Return the 32-character hex fingerprint of raw bytes."""
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def fingerprint_path(relative_path: str) -> str:
    """Fingerprint a relative path string (not the file bytes).

    Used to name the per-object resource so that two runs publishing the
    same logical path address the same object.
    """
    return content_hash(relative_path.encode("utf-8"))


def _json_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, bytes):
        return content_hash(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=_json_default,
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def definition_hash(kind: str, properties: dict[str, Any]) -> str:
    """SHA-256 of canonical(kind + properties).

    The platform compares this against the stored hash to skip resources
    whose definition did not change between runs.
    """
    return sha256_hex(canonical_json_bytes({"kind": kind, "properties": properties}))
