"""Rich terminal renderer for runs, reports and Deployment Records.

Color scheme
------------
- green     : PASSED / SUCCEEDED
- yellow    : DEGRADED / RUNNING / warnings
- red       : FAILED
- bold red  : BLOCKED
- dim       : NOT_STARTED
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from shipwright.models.stages import RunState, StageState

if TYPE_CHECKING:
    from shipwright.models.instances import ContainerInfo
    from shipwright.models.reports import DeploymentRecord, PipelineReport, StageWarning
    from shipwright.monitor.projection import MonitorProjection, RunSnapshot


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------

_STAGE_COLORS: dict[StageState, str] = {
    StageState.NOT_STARTED: "dim",
    StageState.RUNNING: "yellow",
    StageState.PASSED: "green",
    StageState.DEGRADED: "yellow",
    StageState.FAILED: "red",
    StageState.BLOCKED: "red",
}

_STATE_STYLES: dict[StageState, str] = {
    state: color if color == "dim" else f"bold {color}" for state, color in _STAGE_COLORS.items()
}

_STATE_ICONS: dict[StageState, str] = {
    state: f"[{color}]{state.value.replace('_', ' ').upper()}[/{color}]"
    for state, color in _STAGE_COLORS.items()
}

_RUN_STYLES: dict[RunState, str] = {
    RunState.SUCCEEDED: "bold green",
    RunState.FAILED: "bold red",
}


def run_state_markup(state: RunState, *, degraded: bool = False) -> str:
    if state == RunState.SUCCEEDED and degraded:
        return "[bold yellow]SUCCEEDED (degraded)[/bold yellow]"
    style = _RUN_STYLES.get(state, "yellow")
    return f"[{style}]{state.value}[/{style}]"


class MonitorRenderer:
    """Renders snapshots, reports and records as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Run snapshot
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        """Render a RunSnapshot as a Panel usable in ``Rich.Live``."""
        degraded = any(w.kind == "verify" for w in snapshot.warnings)
        chain_status = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {snapshot.run_id}",
                f"[bold]Instance:[/bold] {snapshot.instance_name or '-'}",
                f"[bold]Image:[/bold] {snapshot.image_ref or '-'}",
                f"[bold]State:[/bold] {run_state_markup(snapshot.run_state, degraded=degraded)}",
                f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
                f"[bold]Chain:[/bold] {chain_status}",
            ]
        )

        parts: list = [self._build_stage_table(snapshot), Text(""), Text.from_markup(summary)]
        if snapshot.error:
            parts.append(
                Text.from_markup(
                    f"[bold red]Error ({snapshot.failed_stage}):[/bold red] "
                )
                + Text(snapshot.error)
            )
        if snapshot.warnings:
            parts.append(self._build_warning_table(snapshot.warnings))

        return Panel(
            Group(*parts),
            title="[bold]Shipwright Run Monitor[/bold]",
            subtitle=f"as of {snapshot.last_updated:%Y-%m-%d %H:%M:%S} UTC",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_stage_table(self, snapshot: RunSnapshot) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=20)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Details", min_width=20)
        table.add_column("Artifacts", justify="right", width=9)

        for position, stage in enumerate(snapshot.stages, start=1):
            separator = Text(" | ")
            pieces = [
                Text(stage.block_reason, style="red") if stage.block_reason else None,
                Text(stage.error[:60], style="red") if stage.error else None,
                Text(f"{stage.entered_at:%H:%M:%S}", style="dim") if stage.entered_at else None,
            ]
            details = separator.join(p for p in pieces if p is not None) or Text("-", style="dim")
            table.add_row(
                str(position),
                Text(stage.display_name, style=_STATE_STYLES[stage.state]),
                _STATE_ICONS[stage.state],
                details,
                str(len(stage.artifact_refs)),
            )
        return table

    @staticmethod
    def _build_warning_table(warnings: list[StageWarning]) -> Table:
        table = Table(title="Warnings", title_style="bold yellow", expand=True)
        table.add_column("Stage", style="yellow", width=10)
        table.add_column("Message")
        for warning in warnings:
            table.add_row(warning.stage_id, warning.message)
        return table

    def render_live(
        self,
        run_id: str,
        projection: MonitorProjection,
        *,
        refresh_hz: float = 2.0,
    ) -> None:
        """Continuously render a run in Rich Live mode until it finishes.

        Re-reads the ledger on every refresh.  Press Ctrl+C to stop early.
        """
        pause = 1.0 / max(refresh_hz, 0.1)

        with Live(console=self.console, refresh_per_second=refresh_hz) as live:
            try:
                while True:
                    snapshot = projection.snapshot(run_id)
                    live.update(self.render_snapshot(snapshot))
                    if snapshot.run_state.is_terminal:
                        break
                    time.sleep(pause)
            except KeyboardInterrupt:
                live.update(self.render_snapshot(projection.snapshot(run_id)))

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    # ------------------------------------------------------------------
    # Pipeline report
    # ------------------------------------------------------------------

    def print_report(self, report: PipelineReport) -> None:
        """Print the outcome of a finished run."""
        lines = [
            f"[bold]Run:[/bold] {report.run_id}",
            f"[bold]Instance:[/bold] {report.instance_name}",
            f"[bold]Image:[/bold] {report.image_ref}",
            f"[bold]Outcome:[/bold] {run_state_markup(report.state, degraded=report.degraded)}",
        ]
        if report.container_id:
            lines.append(f"[bold]Container:[/bold] {report.container_id[:12]}")
        stages = "  ".join(
            f"{sid} {_STATE_ICONS.get(state, state.value)}"
            for sid, state in report.stage_states.items()
        )
        lines.append(f"[bold]Stages:[/bold] {stages}")

        parts: list = [Text.from_markup("\n".join(lines))]
        if report.error:
            parts += [
                Text(""),
                Text.from_markup(
                    f"[bold red]{report.error_type} in {report.failed_stage or '?'}:[/bold red] "
                )
                + Text(report.error),
            ]
        if report.diagnostics:
            parts += [
                Text(""),
                Panel(Text(report.diagnostics), title="Diagnostics", border_style="red"),
            ]
        if report.warnings:
            parts += [Text(""), self._build_warning_table(report.warnings)]

        border = "green" if report.exit_code == 0 and not report.degraded else (
            "yellow" if report.exit_code == 0 else "red"
        )
        self.console.print(
            Panel(Group(*parts), title="[bold]Shipwright[/bold]", border_style=border)
        )

    # ------------------------------------------------------------------
    # Deployment Records
    # ------------------------------------------------------------------

    def print_status(
        self,
        instance_name: str,
        record: DeploymentRecord | None,
        live: ContainerInfo | None,
    ) -> None:
        """Print the latest Deployment Record next to the live Instance."""
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="bold")
        table.add_column("Value")

        if record is None:
            table.add_row("Last run", "[dim]no runs recorded[/dim]")
        else:
            degraded = any(w.kind == "verify" for w in record.warnings)
            table.add_row("Last run", record.run_id)
            table.add_row("Outcome", run_state_markup(record.outcome, degraded=degraded))
            table.add_row("Image", record.image_ref or "-")
            if record.failed_stage:
                table.add_row("Failed stage", f"[red]{record.failed_stage}[/red]")
                table.add_row("Error", Text(record.error))
            if record.finished_at:
                table.add_row(
                    "Finished", record.finished_at.strftime("%Y-%m-%d %H:%M:%S UTC")
                )
            for warning in record.warnings:
                table.add_row("Warning", Text(f"[{warning.stage_id}] {warning.message}"))

        if live is None:
            table.add_row("Instance", "[dim]not present[/dim]")
        else:
            style = "green" if live.running else "red"
            table.add_row(
                "Instance",
                f"[{style}]{live.status}[/{style}] {live.container_id[:12]} ({live.image_ref})",
            )
            if live.ports:
                table.add_row("Ports", ", ".join(p.as_publish_arg() for p in live.ports))

        self.console.print(
            Panel(table, title=f"[bold]{instance_name}[/bold]", border_style="blue")
        )

    def print_history(self, records: list[DeploymentRecord]) -> None:
        """Print Deployment Records, newest first."""
        if not records:
            self.console.print("[dim]No runs recorded.[/dim]")
            return

        table = Table(title="Deployment history", header_style="bold cyan")
        table.add_column("Run")
        table.add_column("Instance")
        table.add_column("Image")
        table.add_column("Outcome", justify="center")
        table.add_column("Failed stage")
        table.add_column("Warnings", justify="right")
        table.add_column("Finished")

        for record in records:
            degraded = any(w.kind == "verify" for w in record.warnings)
            table.add_row(
                record.run_id,
                record.instance_name,
                record.image_ref or "-",
                run_state_markup(record.outcome, degraded=degraded),
                record.failed_stage or "-",
                str(len(record.warnings)),
                record.finished_at.strftime("%Y-%m-%d %H:%M:%S") if record.finished_at else "-",
            )
        self.console.print(table)

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
