"""edgesite CLI — Typer-based command-line interface.

Provides the ``edgesite`` command with subcommands for deploying a site,
previewing its desired state, inspecting the routing table, and tearing
it down.

All output uses Rich for formatted terminal display.
"""
