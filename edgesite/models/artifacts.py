"""Artifact and stored-object models, plus the cache-policy classification."""

from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict

# Store namespaces (key prefixes) inside the site bucket.
ASSETS_NAMESPACE = "_assets"
CACHE_NAMESPACE = "_cache"

# Build output directory holding fingerprinted, never-changing files.
VERSIONED_ASSET_ROOT = "_next"


class CachePolicyClass(str, Enum):
    """Cache-control class applied to a stored object."""

    VERSIONED = "versioned"
    UNVERSIONED = "unversioned"

    @property
    def header(self) -> str:
        """The Cache-Control header value for this class."""
        return CACHE_CONTROL_HEADERS[self]


CACHE_CONTROL_HEADERS: dict[CachePolicyClass, str] = {
    CachePolicyClass.VERSIONED: "public,max-age=31536000,immutable",
    CachePolicyClass.UNVERSIONED: "public,max-age=0,s-maxage=31536000,must-revalidate",
}


def normalize_relative_path(relative_path: str) -> str:
    """Return *relative_path* as a clean POSIX path with no leading slash.

    Empty segments collapse (``a//b`` -> ``a/b``) and backslashes are
    treated as separators.
    """
    cleaned = relative_path.replace("\\", "/").lstrip("/")
    parts = [p for p in cleaned.split("/") if p not in ("", ".")]
    return "/".join(parts)


def classify_cache_policy(relative_path: str) -> CachePolicyClass:
    """Versioned iff the path lies strictly under the versioned-asset root.

    A file named exactly ``_next`` is not under the root, nor is
    ``_nextfoo/x``.
    """
    parts = PurePosixPath(normalize_relative_path(relative_path)).parts
    if len(parts) > 1 and parts[0] == VERSIONED_ASSET_ROOT:
        return CachePolicyClass.VERSIONED
    return CachePolicyClass.UNVERSIONED


def guess_content_type(relative_path: str) -> str | None:
    """Content type from the file extension, ``None`` when unknown."""
    content_type, _ = mimetypes.guess_type(relative_path, strict=False)
    return content_type


def make_store_key(namespace: str, relative_path: str) -> str:
    """Deterministic store key: ``<namespace>/<relative_path>``."""
    return f"{namespace.strip('/')}/{normalize_relative_path(relative_path)}"


class Artifact(BaseModel):
    """One file of the built artifact tree, as read from disk."""

    model_config = ConfigDict(frozen=True)

    relative_path: str
    content: bytes
    content_type: str | None = None

    @classmethod
    def from_bytes(cls, relative_path: str, content: bytes) -> Artifact:
        path = normalize_relative_path(relative_path)
        return cls(
            relative_path=path,
            content=content,
            content_type=guess_content_type(path),
        )


class ObjectRecord(BaseModel):
    """What the synchronizer reconciled for one artifact.

    ``fingerprint`` is the path hash used to name the object resource;
    ``etag`` is the content hash the store reports back.
    """

    model_config = ConfigDict(frozen=True)

    store_key: str
    fingerprint: str
    etag: str
    cache_control: CachePolicyClass | None
    content_type: str | None = None
    resource_name: str
    written: bool = False

    @property
    def cache_control_header(self) -> str | None:
        return self.cache_control.header if self.cache_control else None


class ObjectHead(BaseModel):
    """Metadata the object store reports for a stored key."""

    model_config = ConfigDict(frozen=True)

    key: str
    etag: str
    size_bytes: int = 0
    content_type: str | None = None
    cache_control: str | None = None
