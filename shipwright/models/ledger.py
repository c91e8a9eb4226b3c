"""Run Ledger entry model — append-only, hash-chained.

The ledger is the Deployment Record: one entry per stage or run state
transition, each sealed with the SHA-256 of its own canonical form and
linked to the previous entry of the same run.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipwright import __version__


class LedgerEntry(BaseModel):
    """A single entry in the Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    instance_name: str = ""
    stage_id: str
    state_transition: str  # "from->to", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content addresses
    detail: dict[str, Any] = {}  # error, diagnostics, warnings, instance identity
    pipeline_version: str = __version__
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry

    @property
    def to_state(self) -> str:
        """Target state of the transition, or ``""`` if unparseable."""
        if "->" not in self.state_transition:
            return ""
        return self.state_transition.split("->", 1)[1]
