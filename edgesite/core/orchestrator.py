"""Deployment orchestrator — one idempotent pass from source tree to URL.

Order of work:

1. build          run the build collaborator (failure is a warning)
2. compose        storage, queue, compute, routing and distribution into a
                  single ``DesiredState``
3. apply          submit it to the platform (rejection is fatal)
4. sync           publish ``assets/`` into ``_assets`` and ``cache/`` into
                  ``_cache`` of the site bucket
5. url            ``https://<distribution domain>``

Re-running against unchanged inputs converges to the same state: resource
names are deterministic, the platform skips unchanged definitions and the
synchronizer skips unchanged objects.
"""

from __future__ import annotations

import logging
from pathlib import Path

from edgesite.config import DeploySettings
from edgesite.core.asset_sync import AssetSynchronizer, SyncFailure
from edgesite.core.builder import run_build
from edgesite.core.compute_bindings import ComputeBindingManager, function_name
from edgesite.core.distribution import EdgeDistributionAssembler, public_url
from edgesite.core.revalidation import RevalidationPipeline
from edgesite.core.routing_table import (
    RoutingTableBuilder,
    host_forwarding_function_resource,
    server_cache_policy_resource,
)
from edgesite.models.artifacts import ASSETS_NAMESPACE, CACHE_NAMESPACE
from edgesite.models.compute import ComputeUnitKind
from edgesite.models.config import SiteConfig
from edgesite.models.outcomes import BuildOutcome, BuildReport, DeploymentResult, SyncReport
from edgesite.models.queue import ConsumerBinding, QueueSpec
from edgesite.models.resources import DesiredState, Ref, ResourceSpec
from edgesite.models.routing import RoutingTable
from edgesite.platform import ProvisioningFailure, ResourcePlatform
from edgesite.platform.local import LocalPlatform

logger = logging.getLogger(__name__)


class DeploymentError(RuntimeError):
    """The deployment did not fully converge.

    Attributes
    ----------
    failures:
        One line per resource or object that could not be reconciled.
    result:
        Whatever the run produced before failing.
    """

    def __init__(self, failures: list[str], result: DeploymentResult | None = None) -> None:
        super().__init__(
            f"Deployment failed ({len(failures)} unreconciled): " + "; ".join(failures)
        )
        self.failures = failures
        self.result = result


class DeploymentOrchestrator:
    """Builds, provisions and publishes one site.

    Parameters
    ----------
    site:
        The per-site configuration surface.
    platform:
        Reconciling platform.  Defaults to a ``LocalPlatform`` under
        ``settings.state_dir``.
    settings:
        Process-wide settings.  A fresh ``DeploySettings()`` if omitted.
    """

    def __init__(
        self,
        site: SiteConfig,
        *,
        platform: ResourcePlatform | None = None,
        settings: DeploySettings | None = None,
    ) -> None:
        self.site = site
        self.settings = settings or DeploySettings()
        self._platform = platform

    @classmethod
    def for_site(
        cls,
        name: str,
        *,
        path: Path | str = ".",
        build: str | None = None,
        environment: dict[str, str] | None = None,
        platform: ResourcePlatform | None = None,
        settings: DeploySettings | None = None,
    ) -> DeploymentOrchestrator:
        """Construct from the bare configuration surface."""
        settings = settings or DeploySettings()
        site = SiteConfig(
            name=name,
            path=Path(path),
            build=settings.build_command if build is None else build,
            environment=environment or {},
            output_dir=settings.output_dir,
        )
        return cls(site, platform=platform, settings=settings)

    @property
    def platform(self) -> ResourcePlatform:
        if self._platform is None:
            self._platform = LocalPlatform(
                self.settings.state_dir, region=self.settings.region
            )
        return self._platform

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    @property
    def bucket_name(self) -> str:
        return f"{self.site.name}-bucket"

    @property
    def distribution_name(self) -> str:
        return f"{self.site.name}-distribution"

    def _bucket_ref(self, attribute: str) -> Ref:
        return Ref(resource=self.bucket_name, attribute=attribute)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def routing_table(self) -> RoutingTable:
        name = self.site.name
        return RoutingTableBuilder(
            server_cache_policy_id=Ref(resource=f"{name}-cachepolicy", attribute="id"),
            host_forwarding_arn=Ref(resource=f"{name}-cloudfront-function", attribute="arn"),
            extra_static_files=self.site.extra_static_files,
        ).build()

    def compose(self) -> DesiredState:
        """The complete desired state for this site (nothing is applied)."""
        name = self.site.name
        bucket = ResourceSpec(
            kind="storage:Bucket", name=self.bucket_name, properties={"forceDestroy": True}
        )
        pipeline = RevalidationPipeline(
            name,
            consumer_function=function_name(name, ComputeUnitKind.REVALIDATION),
            queue=QueueSpec(receive_wait_seconds=self.settings.queue_receive_wait_seconds),
            binding=ConsumerBinding(batch_size=self.settings.revalidation_batch_size),
        )
        compute = ComputeBindingManager(
            name,
            code_root=self.site.output_root,
            bucket_name=self._bucket_ref("bucket"),
            bucket_arn=self._bucket_ref("arn"),
            queue_arn=pipeline.queue_arn,
            queue_url=pipeline.queue_url,
            environment=self.site.environment,
            region=self.settings.region,
        )
        assembler = EdgeDistributionAssembler(
            name,
            routing_table=self.routing_table(),
            bucket_name=self._bucket_ref("bucket"),
            bucket_arn=self._bucket_ref("arn"),
            bucket_domain=self._bucket_ref("bucket_regional_domain_name"),
            server_domain=Ref(resource=compute.url_name(ComputeUnitKind.SERVER), attribute="domain"),
            image_domain=Ref(resource=compute.url_name(ComputeUnitKind.IMAGE), attribute="domain"),
        )

        resources: list[ResourceSpec] = [bucket, pipeline.queue_resource()]
        resources.extend(compute.resources())
        resources.append(pipeline.event_source_mapping())
        resources.append(server_cache_policy_resource(name))
        resources.append(host_forwarding_function_resource(name))
        resources.extend(assembler.resources())
        return DesiredState(site_name=name, resources=resources)

    # ------------------------------------------------------------------
    # Deploy / destroy
    # ------------------------------------------------------------------

    def build(self) -> BuildReport:
        return run_build(self.site.build, self.site.path, output_dir=self.site.output_dir)

    def deploy(self, *, skip_build: bool = False) -> DeploymentResult:
        """Run the full pass and return the result.

        Raises
        ------
        DeploymentError
            If the platform rejected a resource or any object failed to
            publish.  ``error.result`` carries the partial result.
        """
        name = self.site.name
        build = (
            BuildReport(outcome=BuildOutcome.SKIPPED) if skip_build else self.build()
        )

        desired = self.compose()
        logger.info("Applying %d resources for %s", len(desired.resources), name)
        try:
            provisioned = self.platform.apply(desired)
        except ProvisioningFailure as exc:
            failure = f"{exc.resource}: {exc.reason}"
            logger.error("Provisioning failed: %s", failure)
            result = DeploymentResult(site_name=name, build=build, failures=[failure])
            raise DeploymentError([failure], result) from exc
        logger.info(
            "Applied %s: %d changed, %d unchanged",
            name, len(provisioned.changed), len(provisioned.resources) - len(provisioned.changed),
        )

        store = self.platform.object_store(provisioned.output(self.bucket_name, "bucket"))
        synchronizer = AssetSynchronizer(
            store, name, max_workers=self.settings.sync_concurrency
        )
        reports: list[SyncReport] = []
        failures: list[str] = []
        for root, namespace in (
            (self.site.assets_root, ASSETS_NAMESPACE),
            (self.site.cache_root, CACHE_NAMESPACE),
        ):
            try:
                reports.append(synchronizer.sync(root, namespace))
            except SyncFailure as exc:
                if exc.report is not None:
                    reports.append(exc.report)
                failures.extend(f"{key}: {message}" for key, message in exc.failures)

        domain = provisioned.output(self.distribution_name, "domain_name")
        result = DeploymentResult(
            site_name=name,
            url=public_url(domain),
            domain_name=domain,
            build=build,
            sync_reports=reports,
            failures=failures,
        )
        if failures:
            logger.error("Deployment of %s left %d objects unpublished", name, len(failures))
            raise DeploymentError(failures, result)

        logger.info("Deployed %s at %s", name, result.url)
        return result

    def destroy(self) -> list[str]:
        """Remove every resource of this site."""
        removed = self.platform.destroy(self.site.name)
        logger.info("Destroyed %s (%d resources)", self.site.name, len(removed))
        return removed
