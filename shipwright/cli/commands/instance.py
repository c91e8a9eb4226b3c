"""Instance commands — ``status``, ``history`` and ``teardown``.

``status`` and ``history`` are read-only: Deployment Records come from the
ledger and the Instance is looked up live from the runtime.
"""

from __future__ import annotations

import typer

from shipwright.cli.commands import common
from shipwright.core.run_lock import InstanceLock
from shipwright.core.supervisor import RuntimeSupervisor
from shipwright.errors import PipelineBusyError
from shipwright.monitor.projection import MonitorProjection
from shipwright.monitor.renderer import MonitorRenderer
from shipwright.runtime.base import RuntimeCommandError


def status_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Instance name."),
) -> None:
    """Show the latest Deployment Record and the live Instance."""
    settings = common.load_settings()
    name = instance or settings.instance_name
    projection = MonitorProjection(common.open_ledger(settings))
    renderer = MonitorRenderer(console=common.console)

    record = projection.latest_record(name)
    try:
        live = RuntimeSupervisor(common.make_runtime(settings)).lookup(name)
    except RuntimeCommandError as exc:
        common.console.print(f"[yellow]Could not query the container runtime:[/yellow] {exc}")
        live = None

    renderer.print_status(name, record, live)


def history_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Only runs for this Instance."),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of runs."),
) -> None:
    """List Deployment Records, newest first."""
    settings = common.load_settings()
    projection = MonitorProjection(common.open_ledger(settings))
    MonitorRenderer(console=common.console).print_history(
        projection.history(instance, limit=limit)
    )


def teardown_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Instance name."),
) -> None:
    """Stop and remove the named Instance.  Images are kept."""
    settings = common.load_settings()
    name = instance or settings.instance_name
    supervisor = RuntimeSupervisor(common.make_runtime(settings))

    try:
        with InstanceLock(settings.lock_dir, name, run_id="teardown"):
            retired = supervisor.retire(name)
    except PipelineBusyError as exc:
        common.console.print(f"[bold red]Busy:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except RuntimeCommandError as exc:
        common.console.print(f"[bold red]Teardown failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if retired is None:
        common.console.print(f"[dim]No instance named {name}.[/dim]")
    else:
        common.console.print(
            f"[green]Removed instance {name}[/green] ({retired.container_id[:12]}, {retired.image_ref})"
        )
