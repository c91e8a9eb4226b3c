"""Shipwright Run Monitor — pure read-only projection over the Run Ledger.

The monitor NEVER maintains its own state.  Every call re-reads from the
ledger.  It is a projection, not a source of truth.

Modules
-------
projection
    ``MonitorProjection`` reads the ledger and produces ``RunSnapshot`` and
    ``DeploymentRecord`` models.
renderer
    ``MonitorRenderer`` turns them into Rich renderables for terminal
    display, including continuous ``Rich.Live`` mode.
"""
