"""``edgesite plan`` — show the desired state without applying it."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from edgesite.cli.commands.common import (
    ENV_OPTION,
    NAME_OPTION,
    PATH_OPTION,
    STATE_DIR_OPTION,
    make_orchestrator,
)
from edgesite.models.resources import CyclicDependencyError
from edgesite.monitor.renderer import DeploymentRenderer

console = Console()


def plan_cmd(
    name: str = NAME_OPTION,
    path: Path = PATH_OPTION,
    env: Optional[List[str]] = ENV_OPTION,
    state_dir: Optional[Path] = STATE_DIR_OPTION,
) -> None:
    """List every resource the deployment would converge, in dependency order."""
    orchestrator = make_orchestrator(name, path=path, state_dir=state_dir, build="", env=env)
    desired = orchestrator.compose()
    try:
        DeploymentRenderer(console=console).print_plan(desired)
    except (CyclicDependencyError, ValueError) as exc:
        console.print(f"[bold red]Invalid desired state:[/bold red] {exc}")
        raise typer.Exit(code=1)
    console.print(f"[dim]{len(desired.resources)} resources[/dim]")
