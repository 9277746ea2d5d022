"""Platform protocols — the boundary to storage, compute, queue and edge providers.

The orchestrator depends only on these protocols.  ``LocalPlatform`` and
``LocalObjectStore`` implement them against the local filesystem;
``S3ObjectStore`` implements ``ObjectStore`` over boto3.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from edgesite.models.artifacts import ObjectHead
from edgesite.models.distribution import DistributionState
from edgesite.models.resources import DesiredState


class ObjectStoreError(RuntimeError):
    """Raised when a storage operation fails."""


class ProvisioningFailure(RuntimeError):
    """The platform rejected a resource definition.  Fatal for the run.

    Attributes
    ----------
    resource:
        Name of the offending resource.
    """

    def __init__(self, resource: str, reason: str) -> None:
        super().__init__(f"Resource {resource!r} could not be provisioned: {reason}")
        self.resource = resource
        self.reason = reason


class ProvisionedResource(BaseModel):
    """A converged resource and the outputs the platform assigned it."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str
    outputs: dict[str, Any] = {}
    definition_hash: str = ""
    changed: bool = False


class ProvisionedState(BaseModel):
    """Result of applying a DesiredState."""

    model_config = ConfigDict(frozen=True)

    resources: dict[str, ProvisionedResource] = {}

    def output(self, name: str, attribute: str) -> Any:
        try:
            return self.resources[name].outputs[attribute]
        except KeyError as exc:
            raise KeyError(f"{name}.{attribute}") from exc

    @property
    def changed(self) -> list[str]:
        return [name for name, res in self.resources.items() if res.changed]


@runtime_checkable
class ObjectStore(Protocol):
    """Per-bucket object operations with metadata."""

    def head(self, key: str) -> ObjectHead | None:
        """Return metadata for *key*, or ``None`` if absent."""
        ...

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
    ) -> str:
        """Write *data* under *key*, returning the stored ETag."""
        ...

    def get(self, key: str) -> bytes:
        ...

    def list_keys(self, prefix: str = "") -> list[str]:
        ...

    def delete(self, key: str) -> None:
        ...


@runtime_checkable
class ResourcePlatform(Protocol):
    """A reconciling provider: accepts desired state, converges asynchronously."""

    def apply(self, desired: DesiredState) -> ProvisionedState:
        """Submit the desired state and return the provisioned outputs.

        Raises
        ------
        ProvisioningFailure
            If any resource definition is rejected.
        """
        ...

    def destroy(self, site_name: str) -> list[str]:
        """Remove every resource of *site_name*, returning their names."""
        ...

    def object_store(self, bucket: str) -> ObjectStore:
        ...

    def distribution_state(self, name: str) -> DistributionState:
        ...
