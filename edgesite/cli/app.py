"""Main Typer application — imports and registers all CLI commands.

Entry point: ``edgesite`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from edgesite.cli.commands.deploy import deploy_cmd
from edgesite.cli.commands.destroy import destroy_cmd
from edgesite.cli.commands.plan import plan_cmd
from edgesite.cli.commands.routes import routes_cmd

app = typer.Typer(
    name="edgesite",
    help="edgesite: deploy server-rendered sites behind an edge distribution.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="deploy", help="Build, provision and publish a site.")(deploy_cmd)
app.command(name="plan", help="Show the desired state without applying it.")(plan_cmd)
app.command(name="routes", help="Show the ordered routing table.")(routes_cmd)
app.command(name="destroy", help="Remove every resource of a site.")(destroy_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
