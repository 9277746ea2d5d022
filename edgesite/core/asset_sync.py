"""Asset synchronizer — publishes a built artifact tree into the object store.

For every regular file under a root (dotfiles included, symlinks followed):

1. store key     ``<namespace>/<relative path>``
2. fingerprint   content hash of the relative path, used to name the object
3. cache class   versioned under ``_next/``, unversioned otherwise
4. content type  from the extension, unset when unknown
5. upsert        written only when absent or when etag, cache-control or
                 content type differ from what the store reports

Transfers fan out over a bounded thread pool.  One failed transfer never
aborts the others; failures are collected and raised together afterwards.
Objects already written stay in place.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from edgesite.core.hasher import content_hash, fingerprint_path
from edgesite.models.artifacts import (
    ASSETS_NAMESPACE,
    CACHE_NAMESPACE,
    Artifact,
    ObjectRecord,
    classify_cache_policy,
    make_store_key,
    normalize_relative_path,
)
from edgesite.models.outcomes import SyncReport
from edgesite.platform import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)

_RESOURCE_LABELS = {ASSETS_NAMESPACE: "asset", CACHE_NAMESPACE: "cache"}


class SyncFailure(RuntimeError):
    """One or more object transfers failed.

    Attributes
    ----------
    failures:
        ``(store_key, error message)`` pairs, sorted by key.
    report:
        The report for everything that was attempted.
    """

    def __init__(self, failures: list[tuple[str, str]], report: SyncReport | None = None) -> None:
        keys = ", ".join(key for key, _ in failures[:5])
        more = f" (+{len(failures) - 5} more)" if len(failures) > 5 else ""
        super().__init__(f"{len(failures)} object transfer(s) failed: {keys}{more}")
        self.failures = failures
        self.report = report


# ---------------------------------------------------------------------------
# Enumeration
# ---------------------------------------------------------------------------


def list_files(root: Path | str) -> list[tuple[str, Path]]:
    """``(relative_path, absolute_path)`` for every regular file under *root*.

    Symlinked directories are followed.  A directory that resolves to one
    of its own ancestors is a loop and is not descended; two paths that
    merely alias the same directory are both listed.  Sorted by relative
    path.  A missing root yields an empty list.
    """
    base = Path(root)
    if not base.is_dir():
        logger.warning("Artifact root %s does not exist; nothing to publish", base)
        return []

    # Real paths of each walked directory and all of its ancestors.
    lineage: dict[str, frozenset[str]] = {
        str(base): frozenset({os.path.realpath(base)})
    }
    found: list[tuple[str, Path]] = []
    for dirpath, dirnames, filenames in os.walk(base, followlinks=True):
        ancestors = lineage.pop(dirpath)
        kept: list[str] = []
        for name in dirnames:
            child = os.path.join(dirpath, name)
            real = os.path.realpath(child)
            if real in ancestors:
                logger.debug("Skipping symlink loop at %s", child)
                continue
            lineage[child] = ancestors | {real}
            kept.append(name)
        dirnames[:] = kept

        for name in filenames:
            path = Path(dirpath) / name
            if not path.is_file():
                # Broken link, socket, fifo.
                continue
            rel = normalize_relative_path(path.relative_to(base).as_posix())
            found.append((rel, path))
    found.sort(key=lambda item: item[0])
    return found


def collect_artifacts(root: Path | str) -> list[Artifact]:
    """Read every file under *root* into an ``Artifact``."""
    return [Artifact.from_bytes(rel, path.read_bytes()) for rel, path in list_files(root)]


def resource_name(site_name: str, namespace: str, fingerprint: str) -> str:
    label = _RESOURCE_LABELS.get(namespace, namespace.strip("_/"))
    return f"{site_name}-{label}-{fingerprint}"


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------


class AssetSynchronizer:
    """Upserts artifact trees into one object store.

    Parameters
    ----------
    store:
        Target ``ObjectStore`` (the site bucket).
    site_name:
        Prefix for the per-object resource names.
    max_workers:
        Upper bound on concurrent transfers.
    """

    def __init__(self, store: ObjectStore, site_name: str, *, max_workers: int = 8) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._store = store
        self.site_name = site_name
        self._max_workers = max_workers

    def upsert(
        self, namespace: str, artifact: Artifact, *, classify: bool = True
    ) -> ObjectRecord:
        """Write *artifact* unless the store already holds identical bytes and metadata."""
        key = make_store_key(namespace, artifact.relative_path)
        fingerprint = fingerprint_path(artifact.relative_path)
        etag = content_hash(artifact.content)
        policy = classify_cache_policy(artifact.relative_path) if classify else None
        header = policy.header if policy else None

        head = self._store.head(key)
        unchanged = (
            head is not None
            and head.etag == etag
            and head.cache_control == header
            and head.content_type == artifact.content_type
        )
        if not unchanged:
            stored = self._store.put(
                key,
                artifact.content,
                content_type=artifact.content_type,
                cache_control=header,
            )
            if stored and stored != etag:
                logger.debug("Store reported etag %s for %s (content hash %s)", stored, key, etag)
            logger.debug("Wrote %s (%d bytes)", key, len(artifact.content))

        return ObjectRecord(
            store_key=key,
            fingerprint=fingerprint,
            etag=etag,
            cache_control=policy,
            content_type=artifact.content_type,
            resource_name=resource_name(self.site_name, namespace, fingerprint),
            written=not unchanged,
        )

    def _sync_file(self, namespace: str, rel: str, path: Path, classify: bool) -> ObjectRecord:
        return self.upsert(namespace, Artifact.from_bytes(rel, path.read_bytes()), classify=classify)

    def sync(
        self,
        root: Path | str,
        namespace: str,
        *,
        classify: bool = True,
        raise_on_failure: bool = True,
    ) -> SyncReport:
        """Publish every file under *root* into *namespace*.

        Raises
        ------
        SyncFailure
            After all transfers were attempted, if any failed and
            *raise_on_failure* is set.
        """
        files = list_files(root)
        if not files:
            logger.info("Sync %s: no files under %s", namespace, root)
            return SyncReport(namespace=namespace)

        records: list[ObjectRecord] = []
        failures: list[tuple[str, str]] = []
        workers = min(self._max_workers, len(files))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="edgesite-sync") as pool:
            futures = {
                pool.submit(self._sync_file, namespace, rel, path, classify): make_store_key(namespace, rel)
                for rel, path in files
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    records.append(future.result())
                except (OSError, ObjectStoreError) as exc:
                    logger.error("Sync %s: transfer of %s failed: %s", namespace, key, exc)
                    failures.append((key, str(exc)))

        records.sort(key=lambda r: r.store_key)
        failures.sort()
        report = SyncReport(namespace=namespace, records=records, failures=failures)
        logger.info(
            "Sync %s: %d files, %d written, %d unchanged, %d failed",
            namespace, len(files), report.written, report.unchanged, len(failures),
        )
        if failures and raise_on_failure:
            raise SyncFailure(failures, report)
        return report
