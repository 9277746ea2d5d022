"""Desired-state resource models.

The orchestrator never talks to a provider directly: it composes a
``DesiredState`` (an ordered list of ``ResourceSpec``) and submits it once
to a reconciling platform.  Values only known after provisioning (ARNs,
URLs, domain names) are expressed as ``Ref`` placeholders.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CyclicDependencyError(ValueError):
    """Raised when resource dependencies contain a cycle."""


class Ref(BaseModel):
    """Placeholder for an output attribute of another resource."""

    model_config = ConfigDict(frozen=True)

    resource: str
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.resource}.{self.attribute}}}"


class Interpolation(BaseModel):
    """String template whose ``{0}``, ``{1}`` ... slots are filled by refs."""

    model_config = ConfigDict(frozen=True)

    template: str
    refs: tuple[Ref | str, ...]


def interpolate(template: str, *refs: Ref | str) -> Interpolation:
    """Build an ``Interpolation`` — ``interpolate("{0}/*", bucket_arn)``."""
    return Interpolation(template=template, refs=tuple(refs))


def collect_refs(value: Any) -> list[Ref]:
    """Return every ``Ref`` nested anywhere inside *value*."""
    found: list[Ref] = []
    if isinstance(value, Ref):
        found.append(value)
    elif isinstance(value, Interpolation):
        found.extend(r for r in value.refs if isinstance(r, Ref))
    elif isinstance(value, BaseModel):
        for field_name in type(value).model_fields:
            found.extend(collect_refs(getattr(value, field_name)))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(collect_refs(item))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(collect_refs(item))
    return found


class ResourceSpec(BaseModel):
    """A single resource the platform should converge to."""

    model_config = ConfigDict(frozen=True)

    kind: str  # e.g. "storage:Bucket", "compute:Function", "edge:Distribution"
    name: str
    properties: dict[str, Any] = {}
    depends_on: tuple[str, ...] = ()

    def dependencies(self) -> set[str]:
        """Explicit dependencies plus every resource referenced by a Ref."""
        deps = set(self.depends_on)
        deps.update(ref.resource for ref in collect_refs(self.properties))
        deps.discard(self.name)
        return deps


class DesiredState(BaseModel):
    """The full desired-state description for one site deployment."""

    model_config = ConfigDict(frozen=True)

    site_name: str
    resources: list[ResourceSpec] = Field(default_factory=list)

    def get(self, name: str) -> ResourceSpec:
        for spec in self.resources:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def names(self) -> list[str]:
        return [spec.name for spec in self.resources]

    def of_kind(self, kind: str) -> list[ResourceSpec]:
        return [spec for spec in self.resources if spec.kind == kind]

    def dependency_order(self) -> list[ResourceSpec]:
        """Topological order (Kahn), stable with respect to declaration order."""
        by_name = {spec.name: spec for spec in self.resources}
        if len(by_name) != len(self.resources):
            dupes = sorted(n for n, c in Counter(self.names()).items() if c > 1)
            raise ValueError(f"Duplicate resource names: {dupes}")

        in_degree: dict[str, int] = {}
        dependents: dict[str, list[str]] = {name: [] for name in by_name}
        for spec in self.resources:
            deps = {d for d in spec.dependencies() if d in by_name}
            in_degree[spec.name] = len(deps)
            for dep in deps:
                dependents[dep].append(spec.name)

        queue = deque(n for n in self.names() if in_degree[n] == 0)
        ordered: list[ResourceSpec] = []
        while queue:
            name = queue.popleft()
            ordered.append(by_name[name])
            for dep in dependents[name]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        if len(ordered) != len(self.resources):
            stuck = sorted(n for n, deg in in_degree.items() if deg > 0)
            raise CyclicDependencyError(
                f"Resource dependencies contain a cycle among: {stuck}"
            )
        return ordered
