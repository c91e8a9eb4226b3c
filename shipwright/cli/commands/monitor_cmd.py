"""``shipwright monitor RUN_ID`` — show the Run Monitor for a pipeline run.

Displays the state of every planned stage, the run state, warnings and the
hash chain status.  Supports continuous live mode and chain verification.
"""

from __future__ import annotations

import typer

from shipwright.cli.commands import common
from shipwright.core.run_ledger import LedgerIntegrityError
from shipwright.monitor.projection import MonitorProjection
from shipwright.monitor.renderer import MonitorRenderer


def monitor_cmd(
    run_id: str = typer.Argument(
        ...,
        help="The pipeline run ID to monitor.",
    ),
    live: bool = typer.Option(
        False,
        "--live",
        "-L",
        help="Follow the run until it finishes (Ctrl+C to exit).",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
    refresh_hz: float = typer.Option(
        2.0,
        "--refresh",
        "-r",
        help="Refresh rate in Hz for live mode.",
    ),
) -> None:
    """Show the Run Monitor for a pipeline run.

    The monitor is a pure read-only projection over the Run Ledger.  It
    never maintains its own state; every display re-reads the ledger.
    """
    settings = common.load_settings()
    if not settings.ledger_path.exists():
        common.console.print(f"[bold red]Ledger not found:[/bold red] {settings.ledger_path}")
        common.console.print("[dim]Start a run first with: shipwright run[/dim]")
        raise typer.Exit(code=1)

    ledger = common.open_ledger(settings)
    projection = MonitorProjection(ledger)
    renderer = MonitorRenderer(console=common.console)

    if not ledger.get_run_entries(run_id):
        common.console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        all_runs = ledger.get_all_run_ids()
        if all_runs:
            common.console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                common.console.print(f"  [cyan]{rid}[/cyan]")
            if len(all_runs) > 10:
                common.console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
        raise typer.Exit(code=1)

    if verify_chain:
        common.console.print("[bold cyan]Verifying hash chain...[/bold cyan]")
        try:
            renderer.print_chain_verification(run_id, ledger.verify_chain(run_id))
        except LedgerIntegrityError as exc:
            common.console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            renderer.print_chain_verification(run_id, False)
        common.console.print()

    if live:
        common.console.print(
            f"[dim]Following run {run_id} at {refresh_hz} Hz. Press Ctrl+C to exit.[/dim]"
        )
        renderer.render_live(run_id, projection, refresh_hz=refresh_hz)
    else:
        renderer.print_snapshot(projection.snapshot(run_id))
