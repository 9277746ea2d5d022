"""``edgesite deploy`` — build, provision and publish a site.

Prints the public URL when the deployment converges; otherwise prints the
aggregated list of what could not be reconciled and exits 1.  Safe to
re-run after a partial failure.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from edgesite.cli.commands.common import (
    ENV_OPTION,
    LOG_LEVEL_OPTION,
    NAME_OPTION,
    PATH_OPTION,
    STATE_DIR_OPTION,
    make_orchestrator,
    setup_logging,
)
from edgesite.core.orchestrator import DeploymentError
from edgesite.monitor.renderer import DeploymentRenderer

console = Console()


def deploy_cmd(
    name: str = NAME_OPTION,
    path: Path = PATH_OPTION,
    build: Optional[str] = typer.Option(
        None,
        "--build",
        "-b",
        help="Build command override; an empty string disables building.",
    ),
    skip_build: bool = typer.Option(
        False, "--skip-build", help="Publish the existing artifact tree without building."
    ),
    env: Optional[List[str]] = ENV_OPTION,
    state_dir: Optional[Path] = STATE_DIR_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
) -> None:
    """Build the site, converge its resources and publish its artifacts."""
    setup_logging(log_level)
    orchestrator = make_orchestrator(
        name, path=path, state_dir=state_dir, build=build, env=env
    )
    renderer = DeploymentRenderer(console=console)

    try:
        result = orchestrator.deploy(skip_build=skip_build)
    except DeploymentError as exc:
        console.print()
        if exc.result is not None:
            renderer.print_result(exc.result)
        else:
            console.print(renderer.render_failures(exc.failures))
        raise typer.Exit(code=1)

    console.print()
    renderer.print_result(result)
    console.print(f"[bold green]Deployed:[/bold green] {result.url}")
