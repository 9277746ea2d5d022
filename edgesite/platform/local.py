"""Local reference platform — reconciles a DesiredState into SQLite.

The platform resolves ``Ref`` placeholders in dependency order, validates
each definition, synthesizes the outputs a provider would assign (ARNs,
URLs, domain names) and persists them.  Re-applying an unchanged definition
is a no-op; resources of the site missing from the desired state are
pruned.  Buckets are directories served by ``LocalObjectStore``.

Design:
- One row per resource, keyed by name, with a definition hash.
- The edge distribution's lifecycle is recorded transition by transition.
"""

from __future__ import annotations

import json
import logging
import shutil
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from edgesite.core.distribution import DistributionLifecycle
from edgesite.core.hasher import canonical_json_bytes, definition_hash, sha256_hex
from edgesite.models.distribution import DistributionState
from edgesite.models.resources import (
    CyclicDependencyError,
    DesiredState,
    Interpolation,
    Ref,
    ResourceSpec,
)
from edgesite.platform import ProvisionedResource, ProvisionedState, ProvisioningFailure
from edgesite.platform.object_store import LocalObjectStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_RESOURCES = """
CREATE TABLE IF NOT EXISTS resources (
    name             TEXT PRIMARY KEY,
    site_name        TEXT NOT NULL,
    kind             TEXT NOT NULL,
    seq              INTEGER NOT NULL,
    definition_hash  TEXT NOT NULL,
    properties_json  TEXT NOT NULL,
    outputs_json     TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_CREATE_LIFECYCLE = """
CREATE TABLE IF NOT EXISTS lifecycle (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL,
    from_state  TEXT NOT NULL,
    to_state    TEXT NOT NULL,
    at          TEXT NOT NULL
);
"""

_CREATE_IDX_SITE = """
CREATE INDEX IF NOT EXISTS idx_site ON resources(site_name, seq);
"""

DISTRIBUTION_KIND = "edge:Distribution"
BUCKET_KIND = "storage:Bucket"

# kind -> required property names
REQUIRED_PROPERTIES: dict[str, tuple[str, ...]] = {
    BUCKET_KIND: (),
    "storage:BucketPublicAccessBlock": ("bucket",),
    "storage:BucketPolicy": ("bucket", "policy"),
    "queue:Queue": ("fifoQueue",),
    "iam:Role": ("assumeRolePolicy",),
    "iam:RolePolicy": ("role", "policy"),
    "compute:Function": ("code", "role", "handler", "runtime", "timeout"),
    "compute:FunctionUrl": ("functionName", "authorizationType"),
    "compute:Permission": ("action", "function", "principal"),
    "compute:EventSourceMapping": ("functionName", "eventSourceArn", "batchSize"),
    "edge:Function": ("code", "runtime"),
    "edge:CachePolicy": ("defaultTtl", "maxTtl", "minTtl"),
    "edge:OriginAccessIdentity": (),
    DISTRIBUTION_KIND: ("origins", "defaultCacheBehavior"),
}

_POLICY_PROPERTIES = ("policy", "assumeRolePolicy")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _short_id(*parts: str, length: int = 13) -> str:
    return sha256_hex("/".join(parts).encode("utf-8"))[:length]


def validate_policy_document(document: Any) -> list[str]:
    """Return problems with an IAM-style policy document (empty if valid)."""
    if not isinstance(document, dict):
        return ["policy must be a JSON object"]
    problems: list[str] = []
    if document.get("Version") != "2012-10-17":
        problems.append("policy Version must be '2012-10-17'")
    statements = document.get("Statement")
    if not isinstance(statements, list) or not statements:
        return problems + ["policy must contain at least one Statement"]
    for i, stmt in enumerate(statements):
        if not isinstance(stmt, dict):
            problems.append(f"Statement[{i}] must be an object")
            continue
        if stmt.get("Effect") not in ("Allow", "Deny"):
            problems.append(f"Statement[{i}].Effect must be Allow or Deny")
        if not stmt.get("Action"):
            problems.append(f"Statement[{i}].Action must not be empty")
        if "Resource" in stmt and not stmt.get("Resource"):
            problems.append(f"Statement[{i}].Resource must not be empty")
        if "Resource" not in stmt and "Principal" not in stmt:
            problems.append(f"Statement[{i}] needs a Resource or a Principal")
    return problems


class LocalPlatform:
    """Reconciles desired state on the local filesystem.

    Parameters
    ----------
    state_dir:
        Directory holding ``platform.db`` and the bucket directories.
    region:
        Region used in synthesized ARNs, URLs and domains.
    """

    def __init__(self, state_dir: Path | str, *, region: str = "us-west-2") -> None:
        self._state_dir = Path(state_dir)
        self._state_dir.mkdir(parents=True, exist_ok=True)
        self._db_path = self._state_dir / "platform.db"
        self.region = region
        self._stores: dict[str, LocalObjectStore] = {}
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_RESOURCES)
            conn.execute(_CREATE_LIFECYCLE)
            conn.execute(_CREATE_IDX_SITE)
            conn.commit()

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, desired: DesiredState) -> ProvisionedState:
        """Converge the stored state to *desired*.

        Raises ``ProvisioningFailure`` naming the first rejected resource.
        Resources converged before the failure stay in place.
        """
        try:
            ordered = desired.dependency_order()
        except (CyclicDependencyError, ValueError) as exc:
            raise ProvisioningFailure(desired.site_name, str(exc)) from exc

        existing = self._load_site(desired.site_name)
        outputs: dict[str, dict[str, Any]] = {}
        provisioned: dict[str, ProvisionedResource] = {}

        for seq, spec in enumerate(ordered):
            resolved = self._resolve(spec, outputs)
            self._validate(spec, resolved, outputs)
            digest = definition_hash(spec.kind, resolved)

            previous = existing.get(spec.name)
            if previous and previous["definition_hash"] == digest and previous["kind"] == spec.kind:
                res_outputs = previous["outputs"]
                changed = False
            else:
                res_outputs = self._synthesize_outputs(desired.site_name, spec, resolved)
                changed = True

            self._upsert(desired.site_name, spec, seq, digest, resolved, res_outputs)
            if spec.kind == DISTRIBUTION_KIND:
                self._converge_distribution(spec.name, changed)

            outputs[spec.name] = res_outputs
            provisioned[spec.name] = ProvisionedResource(
                name=spec.name,
                kind=spec.kind,
                outputs=res_outputs,
                definition_hash=digest,
                changed=changed,
            )
            if changed:
                logger.info("Provisioned %s (%s)", spec.name, spec.kind)
            else:
                logger.debug("Unchanged %s (%s)", spec.name, spec.kind)

        stale = [name for name in existing if name not in provisioned]
        for name in stale:
            self._delete_resource(
                name, existing[name]["kind"], outputs=existing[name]["outputs"]
            )
            logger.info("Pruned stale resource %s", name)

        return ProvisionedState(resources=provisioned)

    def _resolve(self, spec: ResourceSpec, outputs: dict[str, dict[str, Any]]) -> Any:
        def resolve(value: Any) -> Any:
            if isinstance(value, Ref):
                try:
                    return outputs[value.resource][value.attribute]
                except KeyError:
                    raise ProvisioningFailure(
                        spec.name, f"unresolved reference {value}"
                    ) from None
            if isinstance(value, Interpolation):
                return value.template.format(*(resolve(r) for r in value.refs))
            if isinstance(value, dict):
                return {k: resolve(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [resolve(v) for v in value]
            return value

        return resolve(dict(spec.properties))

    def _validate(
        self,
        spec: ResourceSpec,
        resolved: dict[str, Any],
        outputs: dict[str, dict[str, Any]],
    ) -> None:
        required = REQUIRED_PROPERTIES.get(spec.kind)
        if required is None:
            raise ProvisioningFailure(spec.name, f"unknown resource kind {spec.kind!r}")
        missing = [p for p in required if resolved.get(p) in (None, "", [], {})]
        if missing:
            raise ProvisioningFailure(spec.name, f"missing required properties {missing}")

        unknown = sorted(set(spec.depends_on) - set(outputs))
        if unknown:
            raise ProvisioningFailure(spec.name, f"depends on unknown resources {unknown}")

        for prop in _POLICY_PROPERTIES:
            if prop in resolved:
                problems = validate_policy_document(resolved[prop])
                if problems:
                    raise ProvisioningFailure(spec.name, "; ".join(problems))

        if spec.kind == "compute:EventSourceMapping":
            batch = resolved["batchSize"]
            if not isinstance(batch, int) or not 1 <= batch <= 10:
                raise ProvisioningFailure(
                    spec.name, f"batchSize must be 1..10 for a FIFO source, got {batch!r}"
                )

        if spec.kind == DISTRIBUTION_KIND:
            origin_ids = {o.get("originId") for o in resolved["origins"]}
            behaviors = list(resolved.get("orderedCacheBehaviors", [])) + [
                resolved["defaultCacheBehavior"]
            ]
            for behavior in behaviors:
                target = behavior.get("targetOriginId")
                if target not in origin_ids:
                    raise ProvisioningFailure(
                        spec.name, f"behavior targets unknown origin {target!r}"
                    )
            if "pathPattern" in resolved["defaultCacheBehavior"]:
                raise ProvisioningFailure(
                    spec.name, "default behavior must not carry a pathPattern"
                )

    def _synthesize_outputs(
        self, site_name: str, spec: ResourceSpec, resolved: dict[str, Any]
    ) -> dict[str, Any]:
        uid = _short_id(site_name, spec.name)
        region = self.region
        kind = spec.kind
        arn_name = f"{spec.name}-{uid[:7]}"

        if kind == BUCKET_KIND:
            bucket = arn_name.lower()
            return {
                "id": bucket,
                "bucket": bucket,
                "arn": f"arn:aws:s3:::{bucket}",
                "bucket_regional_domain_name": f"{bucket}.s3.{region}.amazonaws.com",
            }
        if kind == "queue:Queue":
            queue_name = f"{arn_name}.fifo" if resolved.get("fifoQueue") else arn_name
            return {
                "id": f"https://sqs.{region}.amazonaws.com/000000000000/{queue_name}",
                "url": f"https://sqs.{region}.amazonaws.com/000000000000/{queue_name}",
                "name": queue_name,
                "arn": f"arn:aws:sqs:{region}:000000000000:{queue_name}",
            }
        if kind == "iam:Role":
            return {"id": arn_name, "name": arn_name, "arn": f"arn:aws:iam::000000000000:role/{arn_name}"}
        if kind == "compute:Function":
            return {
                "id": arn_name,
                "name": arn_name,
                "arn": f"arn:aws:lambda:{region}:000000000000:function:{arn_name}",
            }
        if kind == "compute:FunctionUrl":
            host = f"{uid}{_short_id(uid, length=19)}.lambda-url.{region}.on.aws"
            return {"id": uid, "function_url": f"https://{host}/", "domain": host}
        if kind == "edge:Function":
            return {"id": arn_name, "arn": f"arn:aws:cloudfront::000000000000:function/{arn_name}"}
        if kind == "edge:OriginAccessIdentity":
            oai = f"E{uid.upper()}"
            return {
                "id": oai,
                "cloudfront_access_identity_path": f"origin-access-identity/cloudfront/{oai}",
                "s3_canonical_user_id": sha256_hex(oai.encode("utf-8")),
            }
        if kind == DISTRIBUTION_KIND:
            dist_id = f"E{uid.upper()}"
            return {
                "id": dist_id,
                "arn": f"arn:aws:cloudfront::000000000000:distribution/{dist_id}",
                "domain_name": f"d{uid}.cloudfront.net",
            }
        return {"id": uid}

    # ------------------------------------------------------------------
    # Distribution lifecycle
    # ------------------------------------------------------------------

    def _converge_distribution(self, name: str, changed: bool) -> None:
        lifecycle = DistributionLifecycle(self.distribution_state(name))
        if lifecycle.state in (DistributionState.UNPROVISIONED, DistributionState.DESTROYED):
            lifecycle = DistributionLifecycle(DistributionState.UNPROVISIONED)
            path = [DistributionState.PROVISIONING, DistributionState.LIVE]
        elif changed:
            path = [DistributionState.UPDATING, DistributionState.LIVE]
        else:
            return
        for target in path:
            self._record_transition(name, lifecycle.state, lifecycle.advance(target))

    def _record_transition(
        self, name: str, from_state: DistributionState, to_state: DistributionState
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO lifecycle (name, from_state, to_state, at) VALUES (?, ?, ?, ?)",
                (name, from_state.value, to_state.value, _now()),
            )
            conn.commit()
        logger.debug("Distribution %s: %s -> %s", name, from_state.value, to_state.value)

    def distribution_state(self, name: str) -> DistributionState:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT to_state FROM lifecycle WHERE name = ? ORDER BY id DESC LIMIT 1",
                (name,),
            ).fetchone()
        return DistributionState(row[0]) if row else DistributionState.UNPROVISIONED

    def distribution_history(self, name: str) -> list[tuple[DistributionState, DistributionState]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT from_state, to_state FROM lifecycle WHERE name = ? ORDER BY id",
                (name,),
            ).fetchall()
        return [(DistributionState(a), DistributionState(b)) for a, b in rows]

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    def destroy(self, site_name: str) -> list[str]:
        existing = self._load_site(site_name)
        removed: list[str] = []
        for name in reversed(list(existing)):
            self._delete_resource(name, existing[name]["kind"], outputs=existing[name]["outputs"])
            removed.append(name)
        logger.info("Destroyed %d resources of %s", len(removed), site_name)
        return removed

    def _delete_resource(
        self, name: str, kind: str, *, outputs: dict[str, Any] | None = None
    ) -> None:
        if kind == DISTRIBUTION_KIND:
            current = self.distribution_state(name)
            if current != DistributionState.DESTROYED:
                lifecycle = DistributionLifecycle(current)
                self._record_transition(name, current, lifecycle.advance(DistributionState.DESTROYED))
        if kind == BUCKET_KIND and outputs:
            bucket_dir = self._bucket_dir(outputs["bucket"])
            self._stores.pop(outputs["bucket"], None)
            shutil.rmtree(bucket_dir, ignore_errors=True)
        with self._connect() as conn:
            conn.execute("DELETE FROM resources WHERE name = ?", (name,))
            conn.commit()

    # ------------------------------------------------------------------
    # Object stores
    # ------------------------------------------------------------------

    def _bucket_dir(self, bucket: str) -> Path:
        return self._state_dir / "buckets" / bucket

    def object_store(self, bucket: str) -> LocalObjectStore:
        if bucket not in self._stores:
            self._stores[bucket] = LocalObjectStore(self._bucket_dir(bucket))
        return self._stores[bucket]

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _load_site(self, site_name: str) -> dict[str, dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name, kind, definition_hash, outputs_json FROM resources "
                "WHERE site_name = ? ORDER BY seq",
                (site_name,),
            ).fetchall()
        return {
            name: {
                "kind": kind,
                "definition_hash": digest,
                "outputs": json.loads(outputs_json),
            }
            for name, kind, digest, outputs_json in rows
        }

    def _upsert(
        self,
        site_name: str,
        spec: ResourceSpec,
        seq: int,
        digest: str,
        resolved: dict[str, Any],
        outputs: dict[str, Any],
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO resources
                    (name, site_name, kind, seq, definition_hash,
                     properties_json, outputs_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    site_name = excluded.site_name,
                    kind = excluded.kind,
                    seq = excluded.seq,
                    definition_hash = excluded.definition_hash,
                    properties_json = excluded.properties_json,
                    outputs_json = excluded.outputs_json,
                    updated_at = excluded.updated_at
                """,
                (
                    spec.name,
                    site_name,
                    spec.kind,
                    seq,
                    digest,
                    canonical_json_bytes(resolved).decode("utf-8"),
                    json.dumps(outputs, sort_keys=True),
                    _now(),
                ),
            )
            conn.commit()

    def properties_of(self, name: str) -> dict[str, Any]:
        """The resolved definition last applied for *name*."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT properties_json FROM resources WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            raise KeyError(name)
        return json.loads(row[0])

    def resource_names(self, site_name: str) -> list[str]:
        return list(self._load_site(site_name))

