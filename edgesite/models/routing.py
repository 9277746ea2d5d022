"""Edge routing models — origins, behaviors and the ordered routing table.

The edge evaluates ordered behaviors top to bottom and the first matching
pattern wins; the default behavior (no pattern) catches everything else.
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, model_validator

from edgesite.models.resources import Ref

SAFE_METHODS: tuple[str, ...] = ("GET", "HEAD", "OPTIONS")
MUTATING_METHODS: tuple[str, ...] = ("PUT", "PATCH", "POST", "DELETE")
ALL_METHODS: tuple[str, ...] = SAFE_METHODS + MUTATING_METHODS


class RoutingTableError(RuntimeError):
    """Raised when a routing table violates its ordering invariants.

    Not a ``ValueError``, so it escapes model validation unwrapped.
    """


class OriginRef(str, Enum):
    """The three backends a behavior can target."""

    SERVER = "server"
    IMAGE = "image"
    STATIC = "static"


@lru_cache(maxsize=256)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate an edge path pattern into a regex.

    ``*`` matches any run of characters (``/`` included), ``?`` exactly one.
    Everything else is literal and matching is case-sensitive.
    """
    body = "".join(
        ".*" if ch == "*" else "." if ch == "?" else re.escape(ch)
        for ch in pattern.lstrip("/")
    )
    return re.compile(rf"\A{body}\Z", re.DOTALL)


class RoutingRule(BaseModel):
    """One behavior: a path pattern bound to an origin and a cache policy.

    ``path_pattern`` is ``None`` only for the default rule.
    ``request_transform`` holds the viewer-request function ARN (or a Ref
    to it) when the rule rewrites requests before they reach the origin.
    """

    model_config = ConfigDict(frozen=True)

    path_pattern: str | None
    origin: OriginRef
    mutable: bool = True
    cache_policy_id: str | Ref
    compress: bool = True
    request_transform: str | Ref | None = None
    viewer_protocol_policy: str = "redirect-to-https"

    @property
    def allowed_methods(self) -> tuple[str, ...]:
        return ALL_METHODS if self.mutable else SAFE_METHODS

    @property
    def cached_methods(self) -> tuple[str, ...]:
        return SAFE_METHODS

    @property
    def is_default(self) -> bool:
        return self.path_pattern is None

    def matches(self, path: str) -> bool:
        """Whether a request path falls under this rule."""
        if self.path_pattern is None:
            return True
        return _compile_pattern(self.path_pattern).match(path.lstrip("/")) is not None

    def to_behavior(self) -> dict:
        """Render as an edge behavior definition (Refs left unresolved)."""
        behavior: dict = {
            "allowedMethods": list(self.allowed_methods),
            "cachedMethods": list(self.cached_methods),
            "cachePolicyId": self.cache_policy_id,
            "compress": self.compress,
            "targetOriginId": self.origin.value,
            "viewerProtocolPolicy": self.viewer_protocol_policy,
        }
        if self.path_pattern is not None:
            behavior["pathPattern"] = self.path_pattern
        if self.request_transform is not None:
            behavior["functionAssociations"] = [
                {"eventType": "viewer-request", "functionArn": self.request_transform}
            ]
        return behavior


class RoutingTable(BaseModel):
    """Ordered behaviors plus exactly one default rule."""

    model_config = ConfigDict(frozen=True)

    rules: tuple[RoutingRule, ...]
    default: RoutingRule

    @model_validator(mode="after")
    def _check_invariants(self) -> RoutingTable:
        if not self.default.is_default:
            raise RoutingTableError("The default rule must not carry a path pattern")
        patterns = [rule.path_pattern for rule in self.rules]
        if any(p is None for p in patterns):
            raise RoutingTableError("Only the default rule may omit its path pattern")
        duplicates = sorted({p for p in patterns if patterns.count(p) > 1})
        if duplicates:
            raise RoutingTableError(f"Duplicate path patterns: {duplicates}")
        shadowed = self.shadowed_rules()
        if shadowed:
            raise RoutingTableError(
                "Misordered behaviors: "
                + "; ".join(f"{a!r} swallows {b!r}" for a, b in shadowed)
            )
        return self

    def __len__(self) -> int:
        return len(self.rules) + 1

    @property
    def patterns(self) -> list[str]:
        return [rule.path_pattern for rule in self.rules]  # type: ignore[misc]

    def resolve(self, path: str) -> RoutingRule:
        """First-match-wins by declaration order, falling back to the default."""
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return self.default

    def shadowed_rules(self) -> list[tuple[str, str]]:
        """Pairs ``(earlier, later)`` where the earlier pattern swallows the later.

        A later pattern is considered shadowed when the earlier pattern
        matches the later pattern's literal text (wildcards read as
        literal characters), the way a misordered ``_next/*`` would swallow
        ``_next/data/*``.
        """
        shadowed: list[tuple[str, str]] = []
        for i, later in enumerate(self.rules):
            probe = later.path_pattern.replace("*", "x").replace("?", "x")  # type: ignore[union-attr]
            for earlier in self.rules[:i]:
                if earlier.matches(probe):
                    shadowed.append((earlier.path_pattern, later.path_pattern))  # type: ignore[arg-type]
                    break
        return shadowed
