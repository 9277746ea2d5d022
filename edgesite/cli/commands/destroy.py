"""``edgesite destroy`` — remove every resource of a site."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from edgesite.cli.commands.common import (
    LOG_LEVEL_OPTION,
    NAME_OPTION,
    STATE_DIR_OPTION,
    make_orchestrator,
    setup_logging,
)

console = Console()


def destroy_cmd(
    name: str = NAME_OPTION,
    state_dir: Optional[Path] = STATE_DIR_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    log_level: Optional[str] = LOG_LEVEL_OPTION,
) -> None:
    """Tear down the site's distribution, compute units, queue and bucket."""
    setup_logging(log_level)
    if not yes and not typer.confirm(f"Destroy every resource of {name!r}?"):
        console.print("[dim]Aborted.[/dim]")
        raise typer.Exit(code=1)

    orchestrator = make_orchestrator(name, path=Path("."), state_dir=state_dir, build="")
    removed = orchestrator.destroy()
    if not removed:
        console.print(f"[yellow]No resources found for {name}.[/yellow]")
        return
    for resource in removed:
        console.print(f"  [red]-[/red] {resource}")
    console.print(f"[bold]Destroyed {len(removed)} resources of {name}.[/bold]")
