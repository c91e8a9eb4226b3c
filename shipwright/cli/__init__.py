"""Shipwright CLI — Typer-based command-line interface.

Provides the ``shipwright`` command with subcommands for running the whole
pipeline or single stages, tearing down the Instance, and inspecting
Deployment Records and runs.

All output uses Rich for formatted terminal display.
"""
