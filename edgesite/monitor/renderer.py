"""Rich terminal renderer for deployments.

Turns routing tables, desired states and deployment results into Rich
renderables for the CLI.

Color scheme
------------
- cyan      : server origin
- magenta   : image origin
- green     : static origin, converged deployments
- red       : failures
- dim       : unchanged / default
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from edgesite.models.outcomes import BuildOutcome, DeploymentResult
from edgesite.models.resources import DesiredState
from edgesite.models.routing import OriginRef, RoutingRule, RoutingTable

# ---------------------------------------------------------------------------
# Origin / outcome -> Rich style mapping
# ---------------------------------------------------------------------------

_ORIGIN_STYLES: dict[OriginRef, str] = {
    OriginRef.SERVER: "cyan",
    OriginRef.IMAGE: "magenta",
    OriginRef.STATIC: "green",
}

_BUILD_LABELS: dict[BuildOutcome, str] = {
    BuildOutcome.SUCCEEDED: "[green]succeeded[/green]",
    BuildOutcome.SKIPPED: "[dim]skipped[/dim]",
    BuildOutcome.FAILED_NON_FATAL: "[yellow]failed (continued)[/yellow]",
}


class DeploymentRenderer:
    """Renders deployment objects as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def render_routes(self, table: RoutingTable, *, highlight: RoutingRule | None = None) -> Table:
        """The ordered behaviors, default last.  *highlight* marks one rule."""
        out = Table(title="Routing table", header_style="bold cyan", expand=False)
        out.add_column("#", style="dim", justify="right", width=4)
        out.add_column("Path pattern", min_width=18)
        out.add_column("Origin", justify="center")
        out.add_column("Methods")
        out.add_column("Transform", justify="center")

        rows = list(table.rules) + [table.default]
        for i, rule in enumerate(rows):
            style = _ORIGIN_STYLES[rule.origin]
            pattern = rule.path_pattern if rule.path_pattern is not None else "[dim](default)[/dim]"
            if highlight is not None and rule == highlight:
                pattern = f"[reverse]{pattern}[/reverse]"
            out.add_row(
                str(i + 1) if not rule.is_default else "*",
                pattern,
                f"[{style}]{rule.origin.value}[/{style}]",
                ",".join(rule.allowed_methods),
                "x-forwarded-host" if rule.request_transform is not None else "[dim]-[/dim]",
            )
        return out

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def render_plan(self, desired: DesiredState) -> Table:
        """Resources in dependency order with what each depends on."""
        out = Table(
            title=f"Desired state: {desired.site_name}",
            header_style="bold cyan",
            expand=True,
        )
        out.add_column("#", style="dim", justify="right", width=4)
        out.add_column("Kind", style="bold")
        out.add_column("Name", min_width=30)
        out.add_column("Depends on", style="dim")

        for i, spec in enumerate(desired.dependency_order(), start=1):
            deps = ", ".join(sorted(spec.dependencies())) or "-"
            out.add_row(str(i), spec.kind, spec.name, deps)
        return out

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def render_result(self, result: DeploymentResult) -> Panel:
        """A summary panel: build, sync counts and the public URL."""
        sync = Table(show_header=True, header_style="bold cyan", expand=True)
        sync.add_column("Namespace")
        sync.add_column("Objects", justify="right")
        sync.add_column("Written", justify="right")
        sync.add_column("Unchanged", justify="right", style="dim")
        sync.add_column("Failed", justify="right")
        for report in result.sync_reports:
            failed = f"[red]{len(report.failures)}[/red]" if report.failures else "0"
            sync.add_row(
                report.namespace,
                str(len(report.records) + len(report.failures)),
                str(report.written),
                str(report.unchanged),
                failed,
            )

        lines = [f"[bold]Build:[/bold] {_BUILD_LABELS[result.build.outcome]}"]
        if result.url:
            lines.append(f"[bold]URL:[/bold]   [link={result.url}]{result.url}[/link]")
        for failure in result.failures:
            lines.append(f"[red]- {failure}[/red]")

        converged = result.converged
        return Panel(
            Group(sync, Text(""), Text.from_markup("\n".join(lines))),
            title=f"[bold]{result.site_name}[/bold]",
            subtitle="converged" if converged else "not converged",
            border_style="green" if converged else "red",
            padding=(1, 2),
        )

    def render_failures(self, failures: list[str]) -> Panel:
        body = "\n".join(f"[red]- {f}[/red]" for f in failures) or "[dim]no detail[/dim]"
        return Panel(
            Text.from_markup(body),
            title="[bold red]Unreconciled[/bold red]",
            border_style="red",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_routes(self, table: RoutingTable, *, highlight: RoutingRule | None = None) -> None:
        self.console.print(self.render_routes(table, highlight=highlight))

    def print_plan(self, desired: DesiredState) -> None:
        self.console.print(self.render_plan(desired))

    def print_result(self, result: DeploymentResult) -> None:
        self.console.print(self.render_result(result))
