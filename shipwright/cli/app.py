"""Main Typer application — imports and registers all CLI commands.

Entry point: ``shipwright`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from shipwright.cli.commands import common
from shipwright.cli.commands.instance import history_cmd, status_cmd, teardown_cmd
from shipwright.cli.commands.monitor_cmd import monitor_cmd
from shipwright.cli.commands.pipeline import (
    build_cmd,
    cleanup_cmd,
    deploy_cmd,
    image_cmd,
    run_cmd,
    verify_cmd,
)

app = typer.Typer(
    name="shipwright",
    help="Shipwright: build, containerize, redeploy and verify a single-host service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging from settings before any command runs."""
    level = "DEBUG" if verbose else common.load_settings().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="run", help="Run the full pipeline: build, image, deploy, verify, cleanup.")(run_cmd)
app.command(name="build", help="Build and archive the Artifact.")(build_cmd)
app.command(name="image", help="Build the Image from one Artifact.")(image_cmd)
app.command(name="deploy", help="(Re)start the Instance from the Image.")(deploy_cmd)
app.command(name="verify", help="Probe the running Instance.")(verify_cmd)
app.command(name="cleanup", help="Reclaim superseded Images and Artifacts.")(cleanup_cmd)
app.command(name="teardown", help="Stop and remove the Instance.")(teardown_cmd)
app.command(name="status", help="Show the latest Deployment Record and live Instance.")(status_cmd)
app.command(name="history", help="List Deployment Records.")(history_cmd)
app.command(name="monitor", help="Show the Run Monitor for a run.")(monitor_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
