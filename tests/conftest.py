"""Shared test fixtures for edgesite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from edgesite.config import DeploySettings
from edgesite.core.orchestrator import DeploymentOrchestrator
from edgesite.models.config import SiteConfig
from edgesite.platform.fifo_queue import FifoQueue
from edgesite.platform.local import LocalPlatform
from edgesite.platform.object_store import LocalObjectStore

# ---------------------------------------------------------------------------
# A built site tree, shaped like the build collaborator's output
# ---------------------------------------------------------------------------

SITE_FILES: dict[str, bytes] = {
    "assets/BUILD_ID": b"build-0001\n",
    "assets/favicon.ico": b"\x00\x00\x01\x00icon",
    "assets/next.svg": b"<svg>next</svg>",
    "assets/_next/static/chunks/main-abc123.js": b"console.log('main');",
    "assets/_next/static/css/app-def456.css": b"body{margin:0}",
    "assets/.well-known/security.txt": b"Contact: mailto:security@example.com\n",
    "cache/index.html": b"<html>home</html>",
    "cache/about.html": b"<html>about</html>",
    "server-function/index.mjs": b"export const handler = () => {};",
    "image-optimization-function/index.mjs": b"export const handler = () => {};",
    "revalidation-function/index.mjs": b"export const handler = () => {};",
}


def write_tree(root: Path, files: dict[str, bytes]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def site_root(tmp_dir: Path) -> Path:
    """A site source root whose ``.open-next`` output is already built."""
    root = tmp_dir / "site"
    write_tree(root / ".open-next", SITE_FILES)
    return root


@pytest.fixture
def assets_root(site_root: Path) -> Path:
    return site_root / ".open-next" / "assets"


@pytest.fixture
def local_store(tmp_dir: Path) -> LocalObjectStore:
    """Provide a fresh file-backed object store."""
    return LocalObjectStore(tmp_dir / "bucket")


@pytest.fixture
def platform(tmp_dir: Path) -> LocalPlatform:
    """Provide a LocalPlatform backed by a temp SQLite database."""
    return LocalPlatform(tmp_dir / "state")


@pytest.fixture
def settings(tmp_dir: Path) -> DeploySettings:
    """Settings isolated from the developer's environment and .env file."""
    return DeploySettings(
        _env_file=None,
        state_dir=tmp_dir / "state",
        region="us-west-2",
        sync_concurrency=4,
    )


@pytest.fixture
def site_config(site_root: Path) -> SiteConfig:
    """Build disabled: the artifact tree already exists."""
    return SiteConfig(name="demo", path=site_root, build="")


@pytest.fixture
def orchestrator(
    site_config: SiteConfig, platform: LocalPlatform, settings: DeploySettings
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(site_config, platform=platform, settings=settings)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock: FakeClock) -> FifoQueue:
    """In-memory FIFO queue on a manual clock."""
    q = FifoQueue("test-queue", visibility_timeout=30.0, clock=clock)
    yield q
    q.close()


@pytest.fixture
def make_tree(tmp_dir: Path) -> Callable[[str, dict[str, bytes]], Path]:
    """Factory fixture: write a file tree under ``tmp_dir / name``."""

    def _factory(name: str, files: dict[str, bytes]) -> Path:
        return write_tree(tmp_dir / name, files)

    return _factory
