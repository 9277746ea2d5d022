"""Edge distribution lifecycle model."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from edgesite.models.resources import Interpolation, Ref


class DistributionState(str, Enum):
    """Lifecycle of the edge distribution, driven by the platform."""

    UNPROVISIONED = "unprovisioned"
    PROVISIONING = "provisioning"
    LIVE = "live"
    UPDATING = "updating"
    DESTROYED = "destroyed"


# DESTROYED is terminal.
VALID_TRANSITIONS: dict[DistributionState, set[DistributionState]] = {
    DistributionState.UNPROVISIONED: {DistributionState.PROVISIONING},
    DistributionState.PROVISIONING: {DistributionState.LIVE, DistributionState.DESTROYED},
    DistributionState.LIVE: {DistributionState.UPDATING, DistributionState.DESTROYED},
    DistributionState.UPDATING: {DistributionState.LIVE, DistributionState.DESTROYED},
    DistributionState.DESTROYED: set(),
}


class OriginSpec(BaseModel):
    """A backend endpoint the distribution can route to."""

    model_config = ConfigDict(frozen=True)

    origin_id: str
    domain_name: str | Ref | Interpolation
    origin_path: str | None = None
    protocol_policy: str | None = "https-only"
    read_timeout_seconds: int | None = None
    access_identity: str | Ref | None = None

    def to_origin(self) -> dict:
        origin: dict = {"originId": self.origin_id, "domainName": self.domain_name}
        if self.origin_path:
            origin["originPath"] = self.origin_path
        if self.access_identity is not None:
            origin["s3OriginConfig"] = {"originAccessIdentity": self.access_identity}
        else:
            custom: dict = {
                "httpPort": 80,
                "httpsPort": 443,
                "originProtocolPolicy": self.protocol_policy,
                "originSslProtocols": ["TLSv1.2"],
            }
            if self.read_timeout_seconds is not None:
                custom["originReadTimeout"] = self.read_timeout_seconds
            origin["customOriginConfig"] = custom
        return origin
