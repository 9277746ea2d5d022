"""Per-site configuration surface."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BUILD_COMMAND = "npm install && npx --yes open-next@2.0.5 build"


class SiteConfig(BaseModel):
    """What the entry point hands to the orchestrator.

    ``build`` set to the empty string disables building; the artifact tree
    must then already exist under ``path / output_dir``.
    ``environment`` is forwarded verbatim to the compute units, below
    their own required bindings.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path = Path(".")
    build: str = DEFAULT_BUILD_COMMAND
    environment: dict[str, str] = Field(default_factory=dict)
    output_dir: str = ".open-next"
    extra_static_files: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def _name_is_resource_safe(cls, value: str) -> str:
        if not value or not all(ch.isalnum() or ch in "-_" for ch in value):
            raise ValueError(
                f"Site name {value!r} must be non-empty and contain only "
                "letters, digits, '-' or '_'"
            )
        return value

    @property
    def output_root(self) -> Path:
        return self.path / self.output_dir

    @property
    def assets_root(self) -> Path:
        return self.output_root / "assets"

    @property
    def cache_root(self) -> Path:
        return self.output_root / "cache"
