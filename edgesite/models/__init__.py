"""edgesite data models — all Pydantic v2, all frozen (immutable)."""

from edgesite.models.artifacts import (
    ASSETS_NAMESPACE,
    CACHE_NAMESPACE,
    Artifact,
    CachePolicyClass,
    ObjectHead,
    ObjectRecord,
)
from edgesite.models.compute import (
    ComputeUnitKind,
    ComputeUnitSpec,
    PermissionGrant,
    PolicyStatement,
)
from edgesite.models.config import SiteConfig
from edgesite.models.distribution import DistributionState, OriginSpec
from edgesite.models.outcomes import (
    BuildOutcome,
    BuildReport,
    DeploymentResult,
    SyncReport,
)
from edgesite.models.queue import (
    ConsumerBinding,
    QueueMessage,
    QueueSpec,
    ReceivedMessage,
)
from edgesite.models.resources import DesiredState, Ref, ResourceSpec, interpolate
from edgesite.models.routing import OriginRef, RoutingRule, RoutingTable

__all__ = [
    # artifacts
    "ASSETS_NAMESPACE",
    "CACHE_NAMESPACE",
    "Artifact",
    "CachePolicyClass",
    "ObjectHead",
    "ObjectRecord",
    # compute
    "ComputeUnitKind",
    "ComputeUnitSpec",
    "PermissionGrant",
    "PolicyStatement",
    # config
    "SiteConfig",
    # distribution
    "DistributionState",
    "OriginSpec",
    # outcomes
    "BuildOutcome",
    "BuildReport",
    "DeploymentResult",
    "SyncReport",
    # queue
    "ConsumerBinding",
    "QueueMessage",
    "QueueSpec",
    "ReceivedMessage",
    # resources
    "DesiredState",
    "Ref",
    "ResourceSpec",
    "interpolate",
    # routing
    "OriginRef",
    "RoutingRule",
    "RoutingTable",
]
