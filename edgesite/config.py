"""Deployment settings — env-driven via pydantic-settings.

Reads from a .env file and EDGESITE_* environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler

from edgesite.models.config import DEFAULT_BUILD_COMMAND


class DeploySettings(BaseSettings):
    """Process-wide deployment settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export EDGESITE_REGION=eu-west-1
        export EDGESITE_LOG_LEVEL=DEBUG
        export EDGESITE_SYNC_CONCURRENCY=16

    Or via .env file::

        EDGESITE_STATE_DIR=/var/lib/edgesite
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="EDGESITE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Provider placement
    region: str = "us-west-2"

    # Local platform state (resources ledger + object store)
    state_dir: Path = Path(".edgesite")

    # Build collaborator
    build_command: str = DEFAULT_BUILD_COMMAND
    output_dir: str = ".open-next"

    # Asset synchronization fan-out
    sync_concurrency: int = 8

    # Revalidation pipeline
    queue_receive_wait_seconds: int = 20
    revalidation_batch_size: int = 5

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


def configure_logging(level: str | int = "INFO") -> None:
    """Route library logging through a Rich handler for CLI runs."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Module-level singleton: import as `from edgesite.config import settings`
settings = DeploySettings()
