"""Run outcome models: warnings, probe results, reports, deployment records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from shipwright.models.stages import RunState, StageState


class StageWarning(BaseModel):
    """A non-fatal problem surfaced alongside a successful exit code."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    kind: Literal["verify", "cleanup"]
    message: str


class ProbeResult(BaseModel):
    """Outcome of a single HTTP probe against the Instance."""

    model_config = ConfigDict(frozen=True)

    url: str
    ok: bool
    status_code: int | None = None
    error: str = ""
    elapsed_ms: int = 0


class PipelineReport(BaseModel):
    """Everything an operator needs after a run: outcome, warnings, diagnostics."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    instance_name: str
    image_ref: str
    state: RunState
    stage_states: dict[str, StageState] = {}
    warnings: list[StageWarning] = []
    failed_stage: str = ""
    error: str = ""
    error_type: str = ""
    diagnostics: str = ""
    container_id: str = ""
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def degraded(self) -> bool:
        """Succeeded, but the post-deploy probe did not confirm liveness."""
        return self.state == RunState.SUCCEEDED and any(
            w.kind == "verify" for w in self.warnings
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.state == RunState.SUCCEEDED else 1


class DeploymentRecord(BaseModel):
    """The outcome of the most recent run for an Instance name.

    Reconstructed from the ledger on every query; never stored on its own.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    instance_name: str
    image_ref: str = ""
    container_id: str = ""
    outcome: RunState
    failed_stage: str = ""
    error: str = ""
    warnings: list[StageWarning] = []
    finished_at: datetime | None = None
