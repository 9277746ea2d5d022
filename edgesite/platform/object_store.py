"""File-backed object store for the local platform.

Layout:
    {base_path}/objects/{key}        — object bytes
    {base_path}/meta/{key}.json      — ETag, content type, cache control

Writes replace the object in place; a key never has more than one copy.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path

from edgesite.core.hasher import canonical_json_bytes, content_hash
from edgesite.models.artifacts import ObjectHead
from edgesite.platform import ObjectStoreError

logger = logging.getLogger(__name__)


def normalize_key(key: str) -> str:
    """Strip leading slashes, collapse ``//`` runs and reject traversal."""
    k = str(key or "").strip().lstrip("/")
    k = re.sub(r"/{2,}", "/", k)
    if not k:
        raise ObjectStoreError("Invalid storage key: empty")
    if any(part == ".." for part in k.split("/")):
        raise ObjectStoreError(f"Invalid storage key {key!r}: path traversal detected")
    return k


class LocalObjectStore:
    """Stores objects under a directory, one file per key.

    Parameters
    ----------
    base_path:
        Root directory for this bucket.
    """

    def __init__(self, base_path: Path | str) -> None:
        self._base = Path(base_path)
        self._objects = self._base / "objects"
        self._meta = self._base / "meta"
        self._objects.mkdir(parents=True, exist_ok=True)
        self._meta.mkdir(parents=True, exist_ok=True)
        self.put_count = 0
        self._lock = threading.Lock()

    def _object_path(self, key: str) -> Path:
        return self._objects / normalize_key(key)

    def _meta_path(self, key: str) -> Path:
        return self._meta / f"{normalize_key(key)}.json"

    # ------------------------------------------------------------------
    # ObjectStore protocol
    # ------------------------------------------------------------------

    def head(self, key: str) -> ObjectHead | None:
        meta_path = self._meta_path(key)
        if not meta_path.exists() or not self._object_path(key).exists():
            return None
        meta = json.loads(meta_path.read_bytes())
        return ObjectHead(key=normalize_key(key), **meta)

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
    ) -> str:
        path = self._object_path(key)
        meta_path = self._meta_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            etag = content_hash(data)
            meta_path.write_bytes(
                canonical_json_bytes(
                    {
                        "etag": etag,
                        "size_bytes": len(data),
                        "content_type": content_type,
                        "cache_control": cache_control,
                    }
                )
            )
        except OSError as exc:
            raise ObjectStoreError(f"Failed to write {key!r}: {exc}") from exc
        with self._lock:
            self.put_count += 1
        logger.debug("LocalObjectStore: wrote %s (%d bytes)", key, len(data))
        return etag

    def get(self, key: str) -> bytes:
        path = self._object_path(key)
        if not path.exists():
            raise ObjectStoreError(f"Object not found: {key}")
        return path.read_bytes()

    def list_keys(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        for dirpath, _, filenames in os.walk(self._objects):
            for filename in filenames:
                full = Path(dirpath) / filename
                key = full.relative_to(self._objects).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def delete(self, key: str) -> None:
        self._object_path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)
