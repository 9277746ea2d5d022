"""Routing table builder — the ordered behaviors the edge evaluates.

Precedence is a literal list, most specific first.  First match wins, so a
misordered wildcard silently swallows a more specific route; the
``RoutingTable`` model rejects that at construction time.

Order:
    1. ``api/*``            dynamic API routes       -> server
    2. ``_next/data/*``     data-fetch routes        -> server
    3. ``_next/image*``     image optimization       -> image
    4. ``BUILD_ID``         exact static filenames   -> static
    5. ``next.svg``
    6. ``vercel.svg``
    7. ``_next/*``          versioned static prefix  -> static
    default                 everything else          -> server
"""

from __future__ import annotations

from edgesite.models.resources import Ref, ResourceSpec
from edgesite.models.routing import OriginRef, RoutingRule, RoutingTable

# Managed "CachingOptimized" policy used for static files.
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"

# Exact static filenames emitted by the framework build.
RESERVED_STATIC_FILES: tuple[str, ...] = ("BUILD_ID", "next.svg", "vercel.svg")

# The server origin is addressed by a generated domain, so the public Host
# header is forwarded in a custom header before the request leaves the edge.
HOST_FORWARDING_FUNCTION_CODE = (
    "function handler(event) { var request = event.request; "
    'request.headers["x-forwarded-host"] = request.headers.host; return request; }'
)

SERVER_CACHE_HEADERS: tuple[str, ...] = (
    "accept",
    "rsc",
    "next-router-prefetch",
    "next-router-state-tree",
    "next-url",
)


def host_forwarding_function_resource(site_name: str) -> ResourceSpec:
    """The viewer-request function that copies ``host`` to ``x-forwarded-host``."""
    return ResourceSpec(
        kind="edge:Function",
        name=f"{site_name}-cloudfront-function",
        properties={
            "code": HOST_FORWARDING_FUNCTION_CODE,
            "runtime": "cloudfront-js-1.0",
            "publish": True,
        },
    )


def server_cache_policy_resource(site_name: str) -> ResourceSpec:
    """Cache policy for server-rendered responses (TTL 0 by default, up to a year)."""
    return ResourceSpec(
        kind="edge:CachePolicy",
        name=f"{site_name}-cachepolicy",
        properties={
            "comment": "Server response cache policy",
            "defaultTtl": 0,
            "maxTtl": 31536000,
            "minTtl": 0,
            "parametersInCacheKeyAndForwardedToOrigin": {
                "cookiesConfig": {"cookieBehavior": "none"},
                "enableAcceptEncodingBrotli": True,
                "enableAcceptEncodingGzip": True,
                "headersConfig": {
                    "headerBehavior": "whitelist",
                    "headers": {"items": list(SERVER_CACHE_HEADERS)},
                },
                "queryStringsConfig": {"queryStringBehavior": "all"},
            },
        },
    )


class RoutingTableBuilder:
    """Builds the ordered routing table for one site.

    Parameters
    ----------
    server_cache_policy_id:
        Cache policy for server and image routes (usually a Ref).
    host_forwarding_arn:
        ARN of the host-forwarding viewer-request function (usually a Ref).
    static_cache_policy_id:
        Cache policy for static routes.
    extra_static_files:
        Additional exact filenames served from the static origin; placed
        with the reserved filenames, ahead of the static prefix.
    """

    def __init__(
        self,
        *,
        server_cache_policy_id: str | Ref,
        host_forwarding_arn: str | Ref,
        static_cache_policy_id: str | Ref = CACHING_OPTIMIZED_POLICY_ID,
        extra_static_files: tuple[str, ...] = (),
    ) -> None:
        self._server_policy = server_cache_policy_id
        self._host_forwarding = host_forwarding_arn
        self._static_policy = static_cache_policy_id
        self._extra_static = tuple(
            f for f in extra_static_files if f not in RESERVED_STATIC_FILES
        )

    def _server_rule(self, pattern: str | None) -> RoutingRule:
        return RoutingRule(
            path_pattern=pattern,
            origin=OriginRef.SERVER,
            mutable=True,
            cache_policy_id=self._server_policy,
            request_transform=self._host_forwarding,
        )

    def _static_rule(self, pattern: str) -> RoutingRule:
        return RoutingRule(
            path_pattern=pattern,
            origin=OriginRef.STATIC,
            mutable=False,
            cache_policy_id=self._static_policy,
        )

    def precedence(self) -> list[RoutingRule]:
        """The ordered (non-default) rules, most specific first."""
        return [
            self._server_rule("api/*"),
            self._server_rule("_next/data/*"),
            RoutingRule(
                path_pattern="_next/image*",
                origin=OriginRef.IMAGE,
                mutable=True,
                cache_policy_id=self._server_policy,
            ),
            *(self._static_rule(name) for name in RESERVED_STATIC_FILES),
            *(self._static_rule(name) for name in self._extra_static),
            self._static_rule("_next/*"),
        ]

    def default_rule(self) -> RoutingRule:
        return self._server_rule(None)

    def build(self) -> RoutingTable:
        return RoutingTable(rules=tuple(self.precedence()), default=self.default_rule())
