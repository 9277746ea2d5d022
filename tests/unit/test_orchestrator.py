"""Unit tests for the DeploymentOrchestrator.

Covers composition of the desired state, a full deploy against the local
platform, idempotent re-runs and the two fatal failure paths.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from edgesite.config import DeploySettings
from edgesite.core.orchestrator import DeploymentError, DeploymentOrchestrator
from edgesite.models.artifacts import CachePolicyClass
from edgesite.models.config import SiteConfig
from edgesite.models.outcomes import BuildOutcome
from edgesite.models.resources import DesiredState
from edgesite.platform import ObjectStoreError, ProvisionedState, ProvisioningFailure
from edgesite.platform.local import LocalPlatform
from edgesite.platform.object_store import LocalObjectStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RejectingPlatform(LocalPlatform):
    """Rejects one named resource."""

    def __init__(self, state_dir: Path, reject: str) -> None:
        super().__init__(state_dir)
        self._reject = reject

    def apply(self, desired: DesiredState) -> ProvisionedState:
        if self._reject in desired.names():
            raise ProvisioningFailure(self._reject, "quota exceeded")
        return super().apply(desired)


class BrokenStore(LocalObjectStore):
    def put(self, key, data, *, content_type=None, cache_control=None):
        if key.endswith(".css"):
            raise ObjectStoreError(f"Failed to write {key!r}: disk full")
        return super().put(key, data, content_type=content_type, cache_control=cache_control)


class BrokenStorePlatform(LocalPlatform):
    def object_store(self, bucket: str) -> LocalObjectStore:
        if bucket not in self._stores:
            self._stores[bucket] = BrokenStore(self._bucket_dir(bucket))
        return self._stores[bucket]


def _bucket_store(orchestrator: DeploymentOrchestrator) -> LocalObjectStore:
    platform = orchestrator.platform
    bucket = platform.properties_of(f"{orchestrator.site.name}-bucket-policy")["bucket"]
    return platform.object_store(bucket)


# ---------------------------------------------------------------------------
# Test: Composition
# ---------------------------------------------------------------------------


class TestCompose:
    """compose() describes every resource without applying anything."""

    def test_resource_names(self, orchestrator: DeploymentOrchestrator):
        names = orchestrator.compose().names()
        for expected in (
            "demo-bucket",
            "demo-queue",
            "demo-server-function",
            "demo-image-function",
            "demo-revalidation-function",
            "demo-revalidation-function-event-source-mapping",
            "demo-cachepolicy",
            "demo-cloudfront-function",
            "demo-origin-identity",
            "demo-bucket-policy",
            "demo-distribution",
        ):
            assert expected in names
        assert len(names) == len(set(names))

    def test_bucket_first_distribution_last(self, orchestrator: DeploymentOrchestrator):
        ordered = [s.name for s in orchestrator.compose().dependency_order()]
        assert ordered[0] == "demo-bucket"
        assert ordered[-1] == "demo-distribution"

    def test_distribution_origins_reference_function_urls(self, orchestrator: DeploymentOrchestrator):
        dist = orchestrator.compose().get("demo-distribution")
        assert {"demo-server-url", "demo-image-url"} <= dist.dependencies()

    def test_compose_is_deterministic(self, orchestrator: DeploymentOrchestrator):
        assert orchestrator.compose() == orchestrator.compose()

    def test_routing_table_extra_static_files(self, site_root: Path, settings: DeploySettings):
        site = SiteConfig(name="demo", path=site_root, build="", extra_static_files=("robots.txt",))
        table = DeploymentOrchestrator(site, settings=settings).routing_table()
        assert "robots.txt" in [r.path_pattern for r in table.rules]

    def test_for_site_uses_settings_build(self, site_root: Path, settings: DeploySettings):
        orch = DeploymentOrchestrator.for_site("demo", path=site_root, settings=settings)
        assert orch.site.build == settings.build_command
        orch = DeploymentOrchestrator.for_site("demo", path=site_root, build="", settings=settings)
        assert orch.site.build == ""

    def test_invalid_site_name(self, settings: DeploySettings):
        with pytest.raises(ValueError):
            DeploymentOrchestrator.for_site("bad name!", settings=settings)


# ---------------------------------------------------------------------------
# Test: Deploy
# ---------------------------------------------------------------------------


class TestDeploy:
    """A deploy converges and returns the public URL."""

    def test_deploy_returns_url(self, orchestrator: DeploymentOrchestrator):
        result = orchestrator.deploy()
        assert result.converged
        assert result.url.startswith("https://") and result.url.endswith(".cloudfront.net")
        assert result.build.outcome == BuildOutcome.SKIPPED

    def test_objects_published_under_namespaces(self, orchestrator: DeploymentOrchestrator):
        orchestrator.deploy()
        store = _bucket_store(orchestrator)
        keys = store.list_keys()
        assert "_assets/favicon.ico" in keys
        assert "_assets/_next/static/chunks/main-abc123.js" in keys
        assert "_cache/index.html" in keys
        assert not any(k.startswith("_assets/index") for k in keys)

    def test_cache_control_classes(self, orchestrator: DeploymentOrchestrator):
        orchestrator.deploy()
        store = _bucket_store(orchestrator)
        versioned = store.head("_assets/_next/static/css/app-def456.css")
        unversioned = store.head("_assets/favicon.ico")
        assert versioned.cache_control == CachePolicyClass.VERSIONED.header
        assert unversioned.cache_control == CachePolicyClass.UNVERSIONED.header

    def test_rerun_is_idempotent(self, orchestrator: DeploymentOrchestrator, platform: LocalPlatform):
        first = orchestrator.deploy()
        second = orchestrator.deploy()
        assert second.url == first.url
        assert second.objects_written == 0
        assert first.objects_written == 8

    def test_failed_build_does_not_abort(self, site_root: Path, platform, settings):
        site = SiteConfig(name="demo", path=site_root, build="exit 1")
        result = DeploymentOrchestrator(site, platform=platform, settings=settings).deploy()
        assert result.build.outcome == BuildOutcome.FAILED_NON_FATAL
        assert result.converged

    def test_skip_build(self, site_root: Path, platform, settings):
        site = SiteConfig(name="demo", path=site_root, build="exit 1")
        result = DeploymentOrchestrator(site, platform=platform, settings=settings).deploy(skip_build=True)
        assert result.build.outcome == BuildOutcome.SKIPPED

    def test_missing_cache_tree_is_empty_namespace(self, make_tree, platform, settings):
        root = make_tree("bare", {".open-next/assets/favicon.ico": b"x"})
        site = SiteConfig(name="bare", path=root, build="")
        result = DeploymentOrchestrator(site, platform=platform, settings=settings).deploy()
        assert result.converged
        assert [r.namespace for r in result.sync_reports] == ["_assets", "_cache"]
        assert result.sync_reports[1].records == []


class TestDeployFailures:
    def test_provisioning_failure_is_fatal(self, site_config: SiteConfig, tmp_path: Path, settings):
        platform = RejectingPlatform(tmp_path / "rejecting", reject="demo-queue")
        orch = DeploymentOrchestrator(site_config, platform=platform, settings=settings)
        with pytest.raises(DeploymentError) as info:
            orch.deploy()
        assert info.value.failures == ["demo-queue: quota exceeded"]
        assert info.value.result.url is None

    def test_sync_failures_aggregated(self, site_config: SiteConfig, tmp_path: Path, settings):
        platform = BrokenStorePlatform(tmp_path / "broken")
        orch = DeploymentOrchestrator(site_config, platform=platform, settings=settings)
        with pytest.raises(DeploymentError) as info:
            orch.deploy()
        assert len(info.value.failures) == 1
        assert "app-def456.css" in info.value.failures[0]
        # The rest of the tree is still published and the URL reported.
        result = info.value.result
        assert result.url is not None
        assert not result.converged
        assert result.objects_written == 7


class TestDestroy:
    def test_destroy_removes_site(self, orchestrator: DeploymentOrchestrator, platform: LocalPlatform):
        orchestrator.deploy()
        removed = orchestrator.destroy()
        assert "demo-distribution" in removed
        assert platform.resource_names("demo") == []

    def test_platform_default_is_lazy(self, site_config: SiteConfig, settings: DeploySettings):
        orch = DeploymentOrchestrator(site_config, settings=settings)
        orch.routing_table()
        assert not settings.state_dir.exists()
        assert isinstance(orch.platform, LocalPlatform)
        assert settings.state_dir.exists()
