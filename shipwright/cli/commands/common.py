"""Shared wiring for CLI commands: console, settings, runtime, ledger."""

from __future__ import annotations

from rich.console import Console

from shipwright.config import Settings
from shipwright.core.run_ledger import RunLedger
from shipwright.runtime.base import ContainerRuntime
from shipwright.runtime.docker_cli import DockerCliRuntime

console = Console()


def load_settings() -> Settings:
    return Settings()


def make_runtime(settings: Settings) -> ContainerRuntime:
    """The container runtime every command drives."""
    return DockerCliRuntime(
        settings.docker_binary, timeout=settings.command_timeout_seconds
    )


def open_ledger(settings: Settings) -> RunLedger:
    return RunLedger(settings.ledger_path)
