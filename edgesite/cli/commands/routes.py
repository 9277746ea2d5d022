"""``edgesite routes`` — show the ordered routing table.

With ``--resolve PATH`` also reports which rule a request path lands on.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from edgesite.cli.commands.common import make_orchestrator
from edgesite.models.routing import RoutingTableError
from edgesite.monitor.renderer import DeploymentRenderer

console = Console()


def routes_cmd(
    name: str = typer.Option("site", "--name", "-n", help="Site name."),
    resolve: Optional[List[str]] = typer.Option(
        None, "--resolve", "-r", help="Request path to resolve. Repeatable."
    ),
    static_file: Optional[List[str]] = typer.Option(
        None, "--static-file", help="Extra exact static filename. Repeatable."
    ),
) -> None:
    """Print the routing table, most specific rule first."""
    orchestrator = make_orchestrator(name, path=Path("."), state_dir=None, build="")
    if static_file:
        orchestrator.site = orchestrator.site.model_copy(
            update={"extra_static_files": tuple(static_file)}
        )
    try:
        table = orchestrator.routing_table()
    except RoutingTableError as exc:
        console.print(f"[bold red]Invalid routing table:[/bold red] {exc}")
        raise typer.Exit(code=1)
    renderer = DeploymentRenderer(console=console)

    if not resolve:
        renderer.print_routes(table)
        return

    for path in resolve:
        rule = table.resolve(path)
        renderer.print_routes(table, highlight=rule)
        pattern = rule.path_pattern or "(default)"
        console.print(
            f"[bold]{path}[/bold] -> [cyan]{rule.origin.value}[/cyan] via {pattern}"
        )
