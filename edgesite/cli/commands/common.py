"""Options and helpers shared by the subcommands."""

from __future__ import annotations

from pathlib import Path

import typer

from edgesite.config import DeploySettings, configure_logging
from edgesite.core.orchestrator import DeploymentOrchestrator

NAME_OPTION = typer.Option(..., "--name", "-n", help="Site name; prefixes every resource.")
PATH_OPTION = typer.Option(Path("."), "--path", "-p", help="Site source root.")
STATE_DIR_OPTION = typer.Option(
    None, "--state-dir", help="Local platform state directory (default: EDGESITE_STATE_DIR)."
)
ENV_OPTION = typer.Option(
    None, "--env", "-e", help="KEY=VALUE forwarded to the compute units. Repeatable."
)
LOG_LEVEL_OPTION = typer.Option(
    None, "--log-level", help="Logging level (default: EDGESITE_LOG_LEVEL)."
)

def parse_env(pairs: list[str] | None) -> dict[str, str]:
    """``["A=1", "B=x=y"]`` -> ``{"A": "1", "B": "x=y"}``."""
    env: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env

def make_orchestrator(
    name: str,
    *,
    path: Path,
    state_dir: Path | None,
    build: str | None = None,
    env: list[str] | None = None,
) -> DeploymentOrchestrator:
    settings = DeploySettings()
    if state_dir is not None:
        settings = settings.model_copy(update={"state_dir": state_dir})
    try:
        return DeploymentOrchestrator.for_site(
            name,
            path=path,
            build=build,
            environment=parse_env(env),
            settings=settings,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--name") from exc


def setup_logging(log_level: str | None) -> None:
    """Configure logging from the option, falling back to the settings."""
    configure_logging((log_level or DeploySettings().log_level).upper())
