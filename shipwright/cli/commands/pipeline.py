"""Pipeline commands — the full run and each stage on its own.

``shipwright run`` executes build, image, deploy and verify followed by
cleanup.  ``build``, ``image``, ``deploy``, ``verify`` and ``cleanup`` run a
one-stage plan under the same lock, ledger and failure rules.

Exit code 0 means the run SUCCEEDED (possibly degraded); 1 means it FAILED
or another run holds the Instance lock.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer

from shipwright.cli.commands import common
from shipwright.core.orchestrator import Orchestrator
from shipwright.errors import PipelineBusyError
from shipwright.models.config import PipelineConfig
from shipwright.monitor.renderer import MonitorRenderer


@contextmanager
def abort_on_signals(orchestrator: Orchestrator) -> Iterator[None]:
    """Turn SIGINT and SIGTERM into ``request_abort()`` for the duration.

    The stage in progress finishes; the next one is refused.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: Any) -> None:
        common.console.print(
            f"[yellow]Received {signal.Signals(signum).name}; "
            "stopping after the current stage.[/yellow]"
        )
        orchestrator.request_abort()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def execute_plan(stage_ids: list[str] | None, **overrides: Any) -> None:
    """Run *stage_ids* (all stages if None), print the report, and exit."""
    settings = common.load_settings()
    config = PipelineConfig.from_settings(settings, **overrides)
    orchestrator = Orchestrator(
        config, settings=settings, runtime=common.make_runtime(settings)
    )
    renderer = MonitorRenderer(console=common.console)

    try:
        with abort_on_signals(orchestrator):
            report = orchestrator.run(stage_ids)
    except PipelineBusyError as exc:
        common.console.print(f"[bold red]Busy:[/bold red] {exc}")
        raise typer.Exit(code=1)

    renderer.print_report(report)
    raise typer.Exit(code=report.exit_code)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def run_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Instance name."),
    tag: str = typer.Option(None, "--tag", "-t", help="Image tag."),
    host_port: int = typer.Option(None, "--host-port", help="Published host port."),
    container_port: int = typer.Option(None, "--container-port", help="Service port inside the container."),
    source_dir: Path = typer.Option(None, "--source", "-s", help="Source tree to build."),
    grace_period: float = typer.Option(None, "--grace-period", help="Seconds to wait before probing."),
) -> None:
    """Build, containerize, redeploy and verify the service."""
    execute_plan(
        None,
        instance_name=instance,
        image_tag=tag,
        host_port=host_port,
        container_port=container_port,
        source_dir=source_dir,
        grace_period_seconds=grace_period,
    )


def build_cmd(
    source_dir: Path = typer.Option(None, "--source", "-s", help="Source tree to build."),
) -> None:
    """Compile the source tree into one archived Artifact."""
    execute_plan(["build"], source_dir=source_dir)


def image_cmd(
    artifact_glob: str = typer.Option(
        None, "--artifact-glob", "-a", help="Glob selecting exactly one Artifact."
    ),
    tag: str = typer.Option(None, "--tag", "-t", help="Image tag."),
    source_dir: Path = typer.Option(None, "--source", "-s", help="Directory the glob is resolved in."),
) -> None:
    """Package one Artifact into an Image."""
    execute_plan(["image"], artifact_glob=artifact_glob, image_tag=tag, source_dir=source_dir)


def deploy_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Instance name."),
    tag: str = typer.Option(None, "--tag", "-t", help="Image tag."),
    host_port: int = typer.Option(None, "--host-port", help="Published host port."),
    container_port: int = typer.Option(None, "--container-port", help="Service port inside the container."),
) -> None:
    """Replace the named Instance with one started from the Image."""
    execute_plan(
        ["deploy"],
        instance_name=instance,
        image_tag=tag,
        host_port=host_port,
        container_port=container_port,
    )


def verify_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Instance name."),
    host_port: int = typer.Option(None, "--host-port", help="Published host port."),
    grace_period: float = typer.Option(None, "--grace-period", help="Seconds to wait before probing."),
) -> None:
    """Probe the running Instance once."""
    execute_plan(
        ["verify"],
        instance_name=instance,
        host_port=host_port,
        grace_period_seconds=grace_period,
    )


def cleanup_cmd(
    instance: str = typer.Option(None, "--instance", "-i", help="Instance name."),
) -> None:
    """Remove superseded Images and Artifacts no Instance depends on."""
    execute_plan(["cleanup"], instance_name=instance)
