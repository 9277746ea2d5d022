"""Compute unit and permission-grant models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from edgesite.models.resources import Interpolation, Ref

ResourceScope = str | Ref | Interpolation


class ComputeUnitKind(str, Enum):
    """The three serverless units a site runs on."""

    SERVER = "server"
    IMAGE = "image"
    REVALIDATION = "revalidation"


class PolicyStatement(BaseModel):
    """An allow statement: a set of actions over explicit resources."""

    model_config = ConfigDict(frozen=True)

    actions: tuple[str, ...]
    resources: tuple[ResourceScope, ...]

    def to_document(self) -> dict[str, Any]:
        return {
            "Action": list(self.actions),
            "Effect": "Allow",
            "Resource": list(self.resources),
        }


class PermissionGrant(BaseModel):
    """The single grant set a compute unit owns."""

    model_config = ConfigDict(frozen=True)

    principal: ComputeUnitKind
    statements: tuple[PolicyStatement, ...]

    @property
    def actions(self) -> set[str]:
        return {a for s in self.statements for a in s.actions}

    @property
    def resources(self) -> list[ResourceScope]:
        return [r for s in self.statements for r in s.resources]

    def to_policy_document(self) -> dict[str, Any]:
        return {
            "Statement": [s.to_document() for s in self.statements],
            "Version": "2012-10-17",
        }


class ComputeUnitSpec(BaseModel):
    """Everything needed to provision one compute unit."""

    model_config = ConfigDict(frozen=True)

    kind: ComputeUnitKind
    code_path: str
    handler: str = "index.handler"
    runtime: str = "nodejs18.x"
    architectures: tuple[str, ...] = ()
    memory_mb: int | None = None
    timeout_seconds: int
    environment: dict[str, Any] = {}
    grant: PermissionGrant
    public: bool = False
