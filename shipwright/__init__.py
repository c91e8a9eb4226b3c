"""Shipwright: build, containerize, redeploy and verify a single-host service.

One run takes a source tree through five stages:
  - build    compile exactly one Artifact and archive it by content address
  - image    wrap the Artifact in an immutable, labelled Image
  - deploy   replace the named Instance, never leaving two behind
  - verify   probe the Instance once after a grace period (soft-fail)
  - cleanup  reclaim superseded Images and Artifacts, never the running one

Every transition lands in an append-only, hash-chained SQLite ledger.
"""

__version__ = "0.2.0"
__description__ = "Build, containerize, redeploy and verify a single-host service."

from shipwright.core.orchestrator import Orchestrator
from shipwright.monitor.projection import MonitorProjection
from shipwright.cli.app import app as cli

__all__ = ["Orchestrator", "MonitorProjection", "cli", "__version__"]
