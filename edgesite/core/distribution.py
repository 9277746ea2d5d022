"""Edge distribution assembler.

Fronts the three origins with a single edge distribution:

- server  custom origin on the server unit's invocation URL host
- image   custom origin on the image unit's invocation URL host
- static  the private bucket, read through an origin-access identity,
          rooted at the asset namespace

The bucket itself is never public; the identity's canonical user is the only
principal granted object reads.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from edgesite.models.artifacts import ASSETS_NAMESPACE
from edgesite.models.distribution import VALID_TRANSITIONS, DistributionState, OriginSpec
from edgesite.models.resources import Ref, ResourceSpec, interpolate
from edgesite.models.routing import OriginRef, RoutingTable

logger = logging.getLogger(__name__)

SERVER_READ_TIMEOUT_SECONDS = 10


class InvalidTransitionError(RuntimeError):
    """Raised when a distribution lifecycle transition is not permitted."""


class DistributionLifecycle:
    """Tracks one distribution's state and rejects invalid transitions."""

    def __init__(self, state: DistributionState = DistributionState.UNPROVISIONED) -> None:
        self.state = state

    def can_advance(self, target: DistributionState) -> bool:
        return target in VALID_TRANSITIONS[self.state]

    def advance(self, target: DistributionState) -> DistributionState:
        if not self.can_advance(target):
            raise InvalidTransitionError(
                f"Invalid distribution transition: {self.state.value} -> {target.value}"
            )
        self.state = target
        return target

    def __repr__(self) -> str:
        return f"DistributionLifecycle(state={self.state.value})"


def public_url(domain_name: str) -> str:
    """The site's public URL for a distribution domain."""
    return f"https://{domain_name}"


def origin_domain(function_url: str) -> str:
    """Host part of an invocation URL (``https://host/`` -> ``host``)."""
    host = urlparse(function_url).hostname
    if not host:
        raise ValueError(f"Not an absolute URL: {function_url!r}")
    return host


class EdgeDistributionAssembler:
    """Composes the distribution and the bucket access resources.

    Parameters
    ----------
    site_name:
        Prefix for resource names.
    routing_table:
        The ordered behaviors; origins are referenced by ``OriginRef`` id.
    bucket_name, bucket_arn, bucket_domain:
        References to the site bucket.
    server_domain, image_domain:
        Hosts of the server and image invocation URLs.
    """

    def __init__(
        self,
        site_name: str,
        *,
        routing_table: RoutingTable,
        bucket_name: str | Ref,
        bucket_arn: str | Ref,
        bucket_domain: str | Ref,
        server_domain: str | Ref,
        image_domain: str | Ref,
    ) -> None:
        self.site_name = site_name
        self._table = routing_table
        self._bucket_name = bucket_name
        self._bucket_arn = bucket_arn
        self._bucket_domain = bucket_domain
        self._server_domain = server_domain
        self._image_domain = image_domain

    @property
    def identity_name(self) -> str:
        return f"{self.site_name}-origin-identity"

    @property
    def distribution_name(self) -> str:
        return f"{self.site_name}-distribution"

    def origins(self) -> list[OriginSpec]:
        identity_path = Ref(
            resource=self.identity_name, attribute="cloudfront_access_identity_path"
        )
        return [
            OriginSpec(
                origin_id=OriginRef.SERVER.value,
                domain_name=self._server_domain,
                read_timeout_seconds=SERVER_READ_TIMEOUT_SECONDS,
            ),
            OriginSpec(origin_id=OriginRef.IMAGE.value, domain_name=self._image_domain),
            OriginSpec(
                origin_id=OriginRef.STATIC.value,
                domain_name=self._bucket_domain,
                origin_path=f"/{ASSETS_NAMESPACE}",
                access_identity=identity_path,
            ),
        ]

    def access_resources(self) -> list[ResourceSpec]:
        """Identity, public-access block and the bucket read policy."""
        identity = ResourceSpec(
            kind="edge:OriginAccessIdentity",
            name=self.identity_name,
            properties={"comment": f"Static asset access for {self.site_name}"},
        )
        block = ResourceSpec(
            kind="storage:BucketPublicAccessBlock",
            name=f"{self.site_name}-public-access-block",
            properties={
                "bucket": self._bucket_name,
                "blockPublicAcls": True,
                "blockPublicPolicy": True,
                "ignorePublicAcls": True,
                "restrictPublicBuckets": True,
            },
        )
        policy = ResourceSpec(
            kind="storage:BucketPolicy",
            name=f"{self.site_name}-bucket-policy",
            properties={
                "bucket": self._bucket_name,
                "policy": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": ["s3:GetObject"],
                            "Principal": {
                                "CanonicalUser": Ref(
                                    resource=identity.name, attribute="s3_canonical_user_id"
                                )
                            },
                            "Resource": [interpolate("{0}/*", self._bucket_arn)],
                        }
                    ],
                },
            },
            depends_on=(block.name,),
        )
        return [identity, block, policy]

    def distribution_resource(self) -> ResourceSpec:
        return ResourceSpec(
            kind="edge:Distribution",
            name=self.distribution_name,
            properties={
                "enabled": True,
                "httpVersion": "http2",
                "isIpv6Enabled": True,
                "aliases": [],
                "origins": [origin.to_origin() for origin in self.origins()],
                "orderedCacheBehaviors": [rule.to_behavior() for rule in self._table.rules],
                "defaultCacheBehavior": self._table.default.to_behavior(),
                "restrictions": {"geoRestriction": {"restrictionType": "none"}},
                "viewerCertificate": {"cloudfrontDefaultCertificate": True},
            },
            depends_on=(f"{self.site_name}-bucket-policy",),
        )

    def resources(self) -> list[ResourceSpec]:
        resources = self.access_resources() + [self.distribution_resource()]
        logger.debug(
            "Assembled distribution %s with %d behaviors",
            self.distribution_name, len(self._table),
        )
        return resources
