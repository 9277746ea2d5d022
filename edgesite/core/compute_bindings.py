"""Compute binding manager — the three compute units and their grants.

Each unit gets its own execution role with exactly one inline policy scoped
to the resources it touches:

- server:        read/write/list/delete on the asset and cache prefixes,
                 send-message on the revalidation queue.
- image:         read-only on the asset prefix.
- revalidation:  receive/delete/visibility on the queue only.

Server and image are exposed through a direct invocation URL with no
authorization; access control lives in the edge layer in front of them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from edgesite.models.artifacts import ASSETS_NAMESPACE, CACHE_NAMESPACE
from edgesite.models.compute import (
    ComputeUnitKind,
    ComputeUnitSpec,
    PermissionGrant,
    PolicyStatement,
)
from edgesite.models.resources import Ref, ResourceSpec, interpolate

logger = logging.getLogger(__name__)

BASIC_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)

SERVER_STORE_ACTIONS: tuple[str, ...] = (
    "s3:GetObject*",
    "s3:GetBucket*",
    "s3:List*",
    "s3:DeleteObject*",
    "s3:PutObject",
    "s3:PutObjectTagging",
    "s3:Abort*",
)
SERVER_QUEUE_ACTIONS: tuple[str, ...] = (
    "sqs:SendMessage",
    "sqs:GetQueueAttributes",
    "sqs:GetQueueUrl",
)
IMAGE_STORE_ACTIONS: tuple[str, ...] = ("s3:GetObject",)
CONSUMER_QUEUE_ACTIONS: tuple[str, ...] = (
    "sqs:ReceiveMessage",
    "sqs:DeleteMessage",
    "sqs:ChangeMessageVisibility",
    "sqs:GetQueueAttributes",
    "sqs:GetQueueUrl",
)

# Substrings marking an action as mutating.
_WRITE_MARKERS = ("Put", "Delete", "Abort", "Send", "Create", "Update", "*")

CODE_DIRECTORIES: dict[ComputeUnitKind, str] = {
    ComputeUnitKind.SERVER: "server-function",
    ComputeUnitKind.IMAGE: "image-optimization-function",
    ComputeUnitKind.REVALIDATION: "revalidation-function",
}


def function_name(site_name: str, kind: ComputeUnitKind) -> str:
    return f"{site_name}-{kind.value}-function"


def merge_environment(
    overrides: dict[str, Any], required: dict[str, Any], *, unit: str = ""
) -> dict[str, Any]:
    """Caller overrides first, the unit's required bindings on top.

    A caller key that collides with a required binding is dropped; this is
    not an error.
    """
    collisions = sorted(set(overrides) & set(required))
    if collisions:
        logger.debug(
            "Compute unit %s: required bindings take precedence over %s", unit, collisions
        )
    merged = dict(overrides)
    merged.update(required)
    return merged


def least_privilege_violations(grant: PermissionGrant) -> list[str]:
    """Return the ways *grant* exceeds its unit's allowance (empty if none)."""
    violations: list[str] = []
    for resource in grant.resources:
        if resource == "*":
            violations.append(f"{grant.principal.value}: wildcard resource")
    actions = grant.actions
    if grant.principal == ComputeUnitKind.IMAGE:
        for action in sorted(actions):
            if not action.startswith("s3:"):
                violations.append(f"image: non-store action {action}")
            elif any(marker in action.split(":", 1)[1] for marker in _WRITE_MARKERS):
                violations.append(f"image: mutating action {action}")
    if grant.principal == ComputeUnitKind.REVALIDATION:
        for action in sorted(actions):
            if action.startswith("s3:"):
                violations.append(f"revalidation: store action {action}")
    return violations


class ComputeBindingManager:
    """Provisions the server, image and revalidation compute units.

    Parameters
    ----------
    site_name:
        Prefix for every resource name.
    code_root:
        Build output directory holding the packaged function code.
    bucket_name, bucket_arn:
        References to the site bucket.
    queue_arn, queue_url:
        References to the revalidation queue.
    environment:
        Caller-supplied variables, forwarded below each unit's bindings.
    region:
        Region the units are told the bucket and queue live in.
    """

    def __init__(
        self,
        site_name: str,
        *,
        code_root: Path,
        bucket_name: str | Ref,
        bucket_arn: str | Ref,
        queue_arn: str | Ref,
        queue_url: str | Ref,
        environment: dict[str, Any] | None = None,
        region: str = "us-west-2",
    ) -> None:
        self.site_name = site_name
        self._code_root = Path(code_root)
        self._bucket_name = bucket_name
        self._bucket_arn = bucket_arn
        self._queue_arn = queue_arn
        self._queue_url = queue_url
        self._environment = dict(environment or {})
        self._region = region

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def grant_for(self, kind: ComputeUnitKind) -> PermissionGrant:
        assets = interpolate("{0}/" + ASSETS_NAMESPACE + "/*", self._bucket_arn)
        cache = interpolate("{0}/" + CACHE_NAMESPACE + "/*", self._bucket_arn)
        if kind == ComputeUnitKind.SERVER:
            statements = (
                PolicyStatement(
                    actions=SERVER_STORE_ACTIONS,
                    resources=(self._bucket_arn, assets, cache),
                ),
                PolicyStatement(actions=SERVER_QUEUE_ACTIONS, resources=(self._queue_arn,)),
            )
        elif kind == ComputeUnitKind.IMAGE:
            statements = (PolicyStatement(actions=IMAGE_STORE_ACTIONS, resources=(assets,)),)
        else:
            statements = (
                PolicyStatement(actions=CONSUMER_QUEUE_ACTIONS, resources=(self._queue_arn,)),
            )
        return PermissionGrant(principal=kind, statements=statements)

    # ------------------------------------------------------------------
    # Unit specs
    # ------------------------------------------------------------------

    def _required_bindings(self, kind: ComputeUnitKind) -> dict[str, Any]:
        if kind == ComputeUnitKind.SERVER:
            return {
                "CACHE_BUCKET_NAME": self._bucket_name,
                "CACHE_BUCKET_KEY_PREFIX": CACHE_NAMESPACE,
                "CACHE_BUCKET_REGION": self._region,
                "REVALIDATION_QUEUE_URL": self._queue_url,
                "REVALIDATION_QUEUE_REGION": self._region,
            }
        if kind == ComputeUnitKind.IMAGE:
            return {
                "BUCKET_NAME": self._bucket_name,
                "BUCKET_KEY_PREFIX": ASSETS_NAMESPACE,
            }
        return {
            "REVALIDATION_QUEUE_URL": self._queue_url,
            "REVALIDATION_QUEUE_REGION": self._region,
        }

    def unit_spec(self, kind: ComputeUnitKind) -> ComputeUnitSpec:
        code_path = self._code_root / CODE_DIRECTORIES[kind]
        if not code_path.is_dir():
            logger.warning("Compute unit %s: code package %s not found", kind.value, code_path)
        budgets: dict[ComputeUnitKind, dict[str, Any]] = {
            ComputeUnitKind.SERVER: {"memory_mb": 1024, "timeout_seconds": 10, "architectures": ("arm64",)},
            ComputeUnitKind.IMAGE: {"memory_mb": 1536, "timeout_seconds": 25, "architectures": ("arm64",)},
            ComputeUnitKind.REVALIDATION: {"timeout_seconds": 30},
        }
        return ComputeUnitSpec(
            kind=kind,
            code_path=str(code_path),
            environment=merge_environment(
                self._environment, self._required_bindings(kind), unit=kind.value
            ),
            grant=self.grant_for(kind),
            public=kind != ComputeUnitKind.REVALIDATION,
            **budgets[kind],
        )

    def unit_specs(self) -> dict[ComputeUnitKind, ComputeUnitSpec]:
        return {kind: self.unit_spec(kind) for kind in ComputeUnitKind}

    # ------------------------------------------------------------------
    # Resource names
    # ------------------------------------------------------------------

    def function_name(self, kind: ComputeUnitKind) -> str:
        return function_name(self.site_name, kind)

    def url_name(self, kind: ComputeUnitKind) -> str:
        return f"{self.site_name}-{kind.value}-url"

    def function_url(self, kind: ComputeUnitKind) -> Ref:
        return Ref(resource=self.url_name(kind), attribute="function_url")

    # ------------------------------------------------------------------
    # Desired-state resources
    # ------------------------------------------------------------------

    def resources_for(self, spec: ComputeUnitSpec) -> list[ResourceSpec]:
        prefix = f"{self.site_name}-{spec.kind.value}-function"
        role = ResourceSpec(
            kind="iam:Role",
            name=f"{prefix}-role",
            properties={
                "assumeRolePolicy": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Action": "sts:AssumeRole",
                            "Effect": "Allow",
                            "Principal": {"Service": "lambda.amazonaws.com"},
                        }
                    ],
                },
                "managedPolicyArns": [BASIC_EXECUTION_POLICY_ARN],
            },
        )
        policy = ResourceSpec(
            kind="iam:RolePolicy",
            name=f"{prefix}-policy",
            properties={
                "role": Ref(resource=role.name, attribute="id"),
                "policy": spec.grant.to_policy_document(),
            },
        )
        function_props: dict[str, Any] = {
            "code": spec.code_path,
            "role": Ref(resource=role.name, attribute="arn"),
            "handler": spec.handler,
            "runtime": spec.runtime,
            "timeout": spec.timeout_seconds,
            "environment": {"variables": dict(spec.environment)},
        }
        if spec.architectures:
            function_props["architectures"] = list(spec.architectures)
        if spec.memory_mb is not None:
            function_props["memorySize"] = spec.memory_mb
        function = ResourceSpec(
            kind="compute:Function",
            name=self.function_name(spec.kind),
            properties=function_props,
            depends_on=(policy.name,),
        )
        resources = [role, policy, function]

        if spec.public:
            function_arn = Ref(resource=function.name, attribute="arn")
            resources.append(
                ResourceSpec(
                    kind="compute:FunctionUrl",
                    name=self.url_name(spec.kind),
                    properties={"functionName": function_arn, "authorizationType": "NONE"},
                )
            )
            resources.append(
                ResourceSpec(
                    kind="compute:Permission",
                    name=f"{prefix}-invoke-permission",
                    properties={
                        "action": "lambda:InvokeFunctionUrl",
                        "function": function_arn,
                        "principal": "*",
                        "functionUrlAuthType": "NONE",
                    },
                )
            )
        return resources

    def resources(self) -> list[ResourceSpec]:
        out: list[ResourceSpec] = []
        for spec in self.unit_specs().values():
            out.extend(self.resources_for(spec))
        return out
