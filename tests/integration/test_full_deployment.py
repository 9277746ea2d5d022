"""Integration test — full deployment lifecycle against the local platform.

Walks a site through first deploy, an unchanged re-run, a content change,
revalidation traffic and teardown, asserting the end state after each step.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from edgesite.core.hasher import content_hash
from edgesite.core.orchestrator import DeploymentOrchestrator
from edgesite.core.revalidation import RevalidationConsumer, mark_stale
from edgesite.models.artifacts import CachePolicyClass
from edgesite.models.config import SiteConfig
from edgesite.models.distribution import DistributionState
from edgesite.platform.fifo_queue import FifoQueue
from edgesite.platform.local import LocalPlatform
from edgesite.platform.object_store import LocalObjectStore


def _store(platform: LocalPlatform) -> LocalObjectStore:
    return platform.object_store(platform.properties_of("demo-bucket-policy")["bucket"])


@pytest.fixture
def deployer(site_root: Path, platform: LocalPlatform, settings) -> DeploymentOrchestrator:
    site = SiteConfig(name="demo", path=site_root, build="mkdir -p .open-next")
    return DeploymentOrchestrator(site, platform=platform, settings=settings)


class TestFullDeployment:
    """End-to-end: deploy, redeploy, change, revalidate, destroy."""

    def test_fresh_deploy(self, deployer: DeploymentOrchestrator, platform: LocalPlatform):
        result = deployer.deploy()

        assert result.converged
        assert result.url == f"https://{result.domain_name}"
        assert result.build.outcome.value == "succeeded"
        assert platform.distribution_state("demo-distribution") == DistributionState.LIVE

        store = _store(platform)
        assert len(store.list_keys("_assets/")) == 6
        assert len(store.list_keys("_cache/")) == 2
        head = store.head("_assets/_next/static/chunks/main-abc123.js")
        assert head.etag == content_hash(b"console.log('main');")
        assert head.cache_control == CachePolicyClass.VERSIONED.header
        assert head.content_type in ("text/javascript", "application/javascript")

    def test_unchanged_rerun_writes_nothing(self, deployer: DeploymentOrchestrator, platform: LocalPlatform):
        first = deployer.deploy()
        store = _store(platform)
        puts_after_first = store.put_count
        history_after_first = platform.distribution_history("demo-distribution")

        second = deployer.deploy()

        assert second.url == first.url
        assert second.objects_written == 0
        assert store.put_count == puts_after_first
        assert platform.distribution_history("demo-distribution") == history_after_first

    def test_changed_content_overwrites_same_key(
        self, deployer: DeploymentOrchestrator, platform: LocalPlatform, site_root: Path
    ):
        deployer.deploy()
        page = site_root / ".open-next" / "cache" / "index.html"
        page.write_bytes(b"<html>home v2</html>")

        result = deployer.deploy()

        store = _store(platform)
        assert result.objects_written == 1
        assert store.get("_cache/index.html") == b"<html>home v2</html>"
        assert store.list_keys("_cache/") == ["_cache/about.html", "_cache/index.html"]

    def test_environment_change_leaves_distribution_alone(
        self, site_root: Path, platform: LocalPlatform, settings
    ):
        base = SiteConfig(name="demo", path=site_root, build="")
        DeploymentOrchestrator(base, platform=platform, settings=settings).deploy()
        changed = base.model_copy(update={"environment": {"FEATURE": "on"}})
        DeploymentOrchestrator(changed, platform=platform, settings=settings).deploy()

        props = platform.properties_of("demo-server-function")
        assert props["environment"]["variables"]["FEATURE"] == "on"
        # Function URLs are unchanged, so the distribution is not updated.
        assert platform.distribution_history("demo-distribution")[-1] == (
            DistributionState.PROVISIONING,
            DistributionState.LIVE,
        )

    def test_revalidation_round_trip(self, deployer: DeploymentOrchestrator, platform: LocalPlatform):
        deployer.deploy()
        store = _store(platform)
        queue_props = platform.properties_of("demo-queue")
        regenerated: list[str] = []

        def regenerate(key: str) -> None:
            store.put(f"_cache/{key.strip('/')}.html", f"<html>{key} fresh</html>".encode())
            regenerated.append(key)

        with FifoQueue(
            "demo-queue", visibility_timeout=queue_props["visibilityTimeoutSeconds"]
        ) as queue:
            mark_stale(queue, "/about")
            mark_stale(queue, "/index")
            results = RevalidationConsumer(queue, regenerate).drain()

        assert sorted(regenerated) == ["/about", "/index"]
        assert sum(len(r.succeeded) for r in results) == 2
        assert store.get("_cache/about.html") == b"<html>/about fresh</html>"

    def test_destroy_then_redeploy(self, deployer: DeploymentOrchestrator, platform: LocalPlatform):
        first = deployer.deploy()
        removed = deployer.destroy()

        assert "demo-bucket" in removed
        assert platform.resource_names("demo") == []
        assert platform.distribution_state("demo-distribution") == DistributionState.DESTROYED

        again = deployer.deploy()
        assert again.converged
        assert again.url == first.url
        assert again.objects_written == 8
