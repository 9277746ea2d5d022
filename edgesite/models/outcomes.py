"""Typed outcomes reported back to orchestration callers."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from edgesite.models.artifacts import ObjectRecord


class BuildOutcome(str, Enum):
    """Result of the external build step."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED_NON_FATAL = "failed_non_fatal"


class BuildReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: BuildOutcome
    command: str = ""
    return_code: int | None = None
    detail: str = ""

    @property
    def degraded(self) -> bool:
        return self.outcome == BuildOutcome.FAILED_NON_FATAL


class SyncReport(BaseModel):
    """Summary of one namespace synchronization."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    records: list[ObjectRecord] = []
    failures: list[tuple[str, str]] = []  # (store_key, error message)

    @property
    def written(self) -> int:
        return sum(1 for r in self.records if r.written)

    @property
    def unchanged(self) -> int:
        return sum(1 for r in self.records if not r.written)


class DeploymentResult(BaseModel):
    """What a deployment run produced.

    ``url`` is the only output downstream consumers may rely on.
    """

    model_config = ConfigDict(frozen=True)

    site_name: str
    url: str | None = None
    domain_name: str | None = None
    build: BuildReport
    sync_reports: list[SyncReport] = []
    failures: list[str] = []

    @property
    def converged(self) -> bool:
        return self.url is not None and not self.failures

    @property
    def objects_written(self) -> int:
        return sum(r.written for r in self.sync_reports)
