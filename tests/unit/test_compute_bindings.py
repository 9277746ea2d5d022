"""Tests for the ComputeBindingManager — grants, budgets, environment merge."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from edgesite.core.compute_bindings import (
    BASIC_EXECUTION_POLICY_ARN,
    ComputeBindingManager,
    least_privilege_violations,
    merge_environment,
)
from edgesite.models.compute import ComputeUnitKind, PermissionGrant, PolicyStatement
from edgesite.models.resources import Interpolation, Ref

BUCKET_NAME = Ref(resource="demo-bucket", attribute="bucket")
BUCKET_ARN = Ref(resource="demo-bucket", attribute="arn")
QUEUE_ARN = Ref(resource="demo-queue", attribute="arn")
QUEUE_URL = Ref(resource="demo-queue", attribute="url")


@pytest.fixture
def manager(site_root: Path) -> ComputeBindingManager:
    return ComputeBindingManager(
        "demo",
        code_root=site_root / ".open-next",
        bucket_name=BUCKET_NAME,
        bucket_arn=BUCKET_ARN,
        queue_arn=QUEUE_ARN,
        queue_url=QUEUE_URL,
        environment={"FEATURE_FLAG": "on", "CACHE_BUCKET_NAME": "hijacked"},
        region="eu-west-1",
    )


def _scoped_to(grant: PermissionGrant, namespace: str) -> bool:
    return any(
        isinstance(r, Interpolation) and namespace in r.template for r in grant.resources
    )


class TestGrants:
    def test_server_reads_and_writes_both_prefixes(self, manager: ComputeBindingManager):
        grant = manager.grant_for(ComputeUnitKind.SERVER)
        assert {"s3:PutObject", "s3:DeleteObject*", "s3:List*"} <= grant.actions
        assert "sqs:SendMessage" in grant.actions
        assert _scoped_to(grant, "_assets") and _scoped_to(grant, "_cache")

    def test_server_cannot_consume_the_queue(self, manager: ComputeBindingManager):
        grant = manager.grant_for(ComputeUnitKind.SERVER)
        assert "sqs:ReceiveMessage" not in grant.actions
        assert "sqs:DeleteMessage" not in grant.actions

    def test_image_is_read_only_on_assets(self, manager: ComputeBindingManager):
        grant = manager.grant_for(ComputeUnitKind.IMAGE)
        assert grant.actions == {"s3:GetObject"}
        assert _scoped_to(grant, "_assets")
        assert not _scoped_to(grant, "_cache")

    def test_revalidation_touches_only_the_queue(self, manager: ComputeBindingManager):
        grant = manager.grant_for(ComputeUnitKind.REVALIDATION)
        assert {"sqs:ReceiveMessage", "sqs:DeleteMessage", "sqs:ChangeMessageVisibility"} <= grant.actions
        assert not any(a.startswith("s3:") for a in grant.actions)
        assert grant.resources == [QUEUE_ARN]

    @pytest.mark.parametrize("kind", list(ComputeUnitKind))
    def test_all_grants_are_least_privilege(self, manager: ComputeBindingManager, kind):
        assert least_privilege_violations(manager.grant_for(kind)) == []


class TestLeastPrivilegeChecks:
    def test_wildcard_resource_flagged(self):
        grant = PermissionGrant(
            principal=ComputeUnitKind.SERVER,
            statements=(PolicyStatement(actions=("s3:GetObject",), resources=("*",)),),
        )
        assert least_privilege_violations(grant) == ["server: wildcard resource"]

    def test_image_write_flagged(self):
        grant = PermissionGrant(
            principal=ComputeUnitKind.IMAGE,
            statements=(PolicyStatement(actions=("s3:PutObject",), resources=("arn:b/*",)),),
        )
        assert least_privilege_violations(grant) == ["image: mutating action s3:PutObject"]

    def test_revalidation_store_access_flagged(self):
        grant = PermissionGrant(
            principal=ComputeUnitKind.REVALIDATION,
            statements=(PolicyStatement(actions=("s3:GetObject",), resources=("arn:b/*",)),),
        )
        assert least_privilege_violations(grant) == ["revalidation: store action s3:GetObject"]


class TestUnitSpecs:
    def test_timeout_budgets_ordered(self, manager: ComputeBindingManager):
        specs = manager.unit_specs()
        server = specs[ComputeUnitKind.SERVER].timeout_seconds
        image = specs[ComputeUnitKind.IMAGE].timeout_seconds
        consumer = specs[ComputeUnitKind.REVALIDATION].timeout_seconds
        assert (server, image, consumer) == (10, 25, 30)
        assert server < image < consumer

    def test_memory_and_architecture(self, manager: ComputeBindingManager):
        specs = manager.unit_specs()
        assert specs[ComputeUnitKind.SERVER].memory_mb == 1024
        assert specs[ComputeUnitKind.IMAGE].memory_mb == 1536
        assert specs[ComputeUnitKind.SERVER].architectures == ("arm64",)
        assert specs[ComputeUnitKind.REVALIDATION].memory_mb is None

    def test_only_server_and_image_are_public(self, manager: ComputeBindingManager):
        specs = manager.unit_specs()
        assert specs[ComputeUnitKind.SERVER].public
        assert specs[ComputeUnitKind.IMAGE].public
        assert not specs[ComputeUnitKind.REVALIDATION].public

    def test_code_paths(self, manager: ComputeBindingManager, site_root: Path):
        spec = manager.unit_spec(ComputeUnitKind.IMAGE)
        assert spec.code_path == str(site_root / ".open-next" / "image-optimization-function")

    def test_missing_code_package_warns(self, tmp_path: Path, caplog):
        manager = ComputeBindingManager(
            "demo",
            code_root=tmp_path / "nothing",
            bucket_name="b",
            bucket_arn="arn:aws:s3:::b",
            queue_arn="arn:q",
            queue_url="https://q",
        )
        with caplog.at_level(logging.WARNING, logger="edgesite.core.compute_bindings"):
            manager.unit_spec(ComputeUnitKind.SERVER)
        assert "not found" in caplog.text


class TestEnvironment:
    def test_required_binding_wins_collision(self, manager: ComputeBindingManager):
        env = manager.unit_spec(ComputeUnitKind.SERVER).environment
        assert env["CACHE_BUCKET_NAME"] == BUCKET_NAME
        assert env["FEATURE_FLAG"] == "on"

    def test_server_bindings(self, manager: ComputeBindingManager):
        env = manager.unit_spec(ComputeUnitKind.SERVER).environment
        assert env["CACHE_BUCKET_KEY_PREFIX"] == "_cache"
        assert env["CACHE_BUCKET_REGION"] == "eu-west-1"
        assert env["REVALIDATION_QUEUE_URL"] == QUEUE_URL

    def test_image_bindings(self, manager: ComputeBindingManager):
        env = manager.unit_spec(ComputeUnitKind.IMAGE).environment
        assert env["BUCKET_NAME"] == BUCKET_NAME
        assert env["BUCKET_KEY_PREFIX"] == "_assets"

    def test_caller_overrides_reach_every_unit(self, manager: ComputeBindingManager):
        for spec in manager.unit_specs().values():
            assert spec.environment["FEATURE_FLAG"] == "on"

    def test_merge_logs_collision_at_debug_only(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="edgesite.core.compute_bindings"):
            merged = merge_environment({"A": "caller", "B": "x"}, {"A": "required"}, unit="server")
        assert merged == {"A": "required", "B": "x"}
        assert all(r.levelno == logging.DEBUG for r in caplog.records)
        assert "['A']" in caplog.text


class TestResources:
    def test_public_unit_resources(self, manager: ComputeBindingManager):
        spec = manager.unit_spec(ComputeUnitKind.SERVER)
        names = [r.name for r in manager.resources_for(spec)]
        assert names == [
            "demo-server-function-role",
            "demo-server-function-policy",
            "demo-server-function",
            "demo-server-url",
            "demo-server-function-invoke-permission",
        ]

    def test_consumer_has_no_public_endpoint(self, manager: ComputeBindingManager):
        spec = manager.unit_spec(ComputeUnitKind.REVALIDATION)
        kinds = [r.kind for r in manager.resources_for(spec)]
        assert "compute:FunctionUrl" not in kinds
        assert "compute:Permission" not in kinds

    def test_invocation_url_has_no_auth(self, manager: ComputeBindingManager):
        spec = manager.unit_spec(ComputeUnitKind.IMAGE)
        url = next(r for r in manager.resources_for(spec) if r.kind == "compute:FunctionUrl")
        assert url.properties["authorizationType"] == "NONE"

    def test_role_uses_basic_execution(self, manager: ComputeBindingManager):
        role = manager.resources_for(manager.unit_spec(ComputeUnitKind.IMAGE))[0]
        assert role.properties["managedPolicyArns"] == [BASIC_EXECUTION_POLICY_ARN]

    def test_function_waits_for_policy(self, manager: ComputeBindingManager):
        resources = manager.resources_for(manager.unit_spec(ComputeUnitKind.SERVER))
        function = resources[2]
        assert function.depends_on == ("demo-server-function-policy",)
        assert "demo-server-function-role" in function.dependencies()

    def test_all_units(self, manager: ComputeBindingManager):
        assert len(manager.resources()) == 5 + 5 + 3
