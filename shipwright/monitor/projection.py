"""Read-only views rebuilt from the Run Ledger.

Snapshots (for the monitor) and Deployment Records (for ``status`` and
``history``) are replayed from ledger entries on every call; nothing here
writes or caches run state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipwright.core.run_ledger import LedgerIntegrityError, RunLedger
from shipwright.models.ledger import LedgerEntry
from shipwright.models.reports import DeploymentRecord, StageWarning
from shipwright.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    PIPELINE_STAGE_ID,
    SATISFIED_STATES,
    RunState,
    StageDefinition,
    StageState,
)

logger = logging.getLogger(__name__)


class StageStatus(BaseModel):
    """Point-in-time status of a single stage, derived from ledger entries."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    block_reason: str | None = None
    error: str = ""
    artifact_refs: list[str] = []


class RunSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of one pipeline run.

    Computed fresh on every ``snapshot()`` call and never persisted.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    instance_name: str = ""
    image_ref: str = ""
    container_id: str = ""
    pipeline_version: str = ""
    run_state: RunState = RunState.PENDING
    stages: list[StageStatus] = []
    warnings: list[StageWarning] = []
    failed_stage: str = ""
    error: str = ""
    diagnostics: str = ""
    artifact_count: int = 0
    chain_valid: bool = True
    started_at: datetime | None = None
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        """Number of stages that PASSED or ended DEGRADED."""
        return sum(1 for s in self.stages if s.state in SATISFIED_STATES)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    def in_state(self, state: StageState) -> list[StageStatus]:
        return [s for s in self.stages if s.state == state]

    @property
    def failed_stages(self) -> list[StageStatus]:
        return self.in_state(StageState.FAILED)

    @property
    def blocked_stages(self) -> list[StageStatus]:
        return self.in_state(StageState.BLOCKED)


class MonitorProjection:
    """Rebuilds run snapshots and Deployment Records from a ``RunLedger``.

    Parameters
    ----------
    ledger:
        Ledger to read.
    stage_definitions:
        Stage definitions for display names and ordering.  Defaults to
        ``DEFAULT_STAGE_DEFINITIONS``.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stage_definitions: list[StageDefinition] | None = None,
    ) -> None:
        self._ledger = ledger
        definitions = sorted(
            stage_definitions or DEFAULT_STAGE_DEFINITIONS, key=lambda sd: sd.ordinal
        )
        self._stage_defs = {sd.stage_id: sd for sd in definitions}
        self._stage_order = [sd.stage_id for sd in definitions]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def snapshot(self, run_id: str) -> RunSnapshot:
        """Produce a point-in-time snapshot of a run.

        Stages are limited to the run's plan when the ledger recorded one.
        """
        entries = self._ledger.get_run_entries(run_id)
        run_info = self._replay_run(entries)
        stage_info = self._replay_stages(entries)

        plan = run_info.get("plan") or self._stage_order
        stages = [
            StageStatus(
                stage_id=stage_id,
                display_name=(
                    self._stage_defs[stage_id].display_name
                    if stage_id in self._stage_defs
                    else stage_id
                ),
                **stage_info.get(stage_id, {}),
            )
            for stage_id in self._stage_order
            if stage_id in plan
        ]

        refs = {ref for entry in entries for ref in entry.artifact_references}

        return RunSnapshot(
            run_id=run_id,
            instance_name=run_info.get("instance_name", ""),
            image_ref=run_info.get("image_ref", ""),
            container_id=run_info.get("container_id", ""),
            pipeline_version=entries[-1].pipeline_version if entries else "",
            run_state=run_info.get("run_state", RunState.PENDING),
            stages=stages,
            warnings=self._collect_warnings(entries),
            failed_stage=run_info.get("failed_stage", ""),
            error=run_info.get("error", ""),
            diagnostics=run_info.get("diagnostics", ""),
            artifact_count=len(refs),
            chain_valid=self._chain_intact(run_id),
            started_at=entries[0].timestamp_utc if entries else None,
            last_updated=(
                entries[-1].timestamp_utc if entries else datetime.now(timezone.utc)
            ),
        )

    # ------------------------------------------------------------------
    # Deployment Records
    # ------------------------------------------------------------------

    def record_for(self, run_id: str) -> DeploymentRecord | None:
        """Reconstruct the Deployment Record of one run, or None if unknown."""
        entries = self._ledger.get_run_entries(run_id)
        if not entries:
            return None
        info = self._replay_run(entries)
        run_state: RunState = info.get("run_state", RunState.PENDING)
        return DeploymentRecord(
            run_id=run_id,
            instance_name=info.get("instance_name", entries[0].instance_name),
            image_ref=info.get("image_ref", ""),
            container_id=info.get("container_id", ""),
            outcome=run_state,
            failed_stage=info.get("failed_stage", ""),
            error=info.get("error", ""),
            warnings=self._collect_warnings(entries),
            finished_at=info.get("finished_at") if run_state.is_terminal else None,
        )

    def latest_record(self, instance_name: str) -> DeploymentRecord | None:
        """The Deployment Record of the most recent deploying run for *instance_name*.

        Runs whose plan left out ``deploy`` (a lone ``build``, say) never
        touched the Instance and are passed over.
        """
        for run_id in self._ledger.get_instance_run_ids(instance_name):
            entries = self._ledger.get_run_entries(run_id)
            plan = self._replay_run(entries).get("plan") or self._stage_order
            if "deploy" in plan:
                return self.record_for(run_id)
        return None

    def history(
        self, instance_name: str | None = None, *, limit: int = 20
    ) -> list[DeploymentRecord]:
        """Deployment Records, newest first, optionally for one Instance."""
        if instance_name:
            run_ids = self._ledger.get_instance_run_ids(instance_name)
        else:
            run_ids = self._ledger.get_all_run_ids()
        records = [self.record_for(run_id) for run_id in run_ids[:limit]]
        return [r for r in records if r is not None]

    # ------------------------------------------------------------------
    # Ledger replay
    # ------------------------------------------------------------------

    @staticmethod
    def _replay_run(entries: list[LedgerEntry]) -> dict[str, Any]:
        """Replay ``pipeline`` entries: run state plus the detail they carry."""
        info: dict[str, Any] = {}
        for entry in entries:
            if entry.stage_id != PIPELINE_STAGE_ID:
                continue
            try:
                info["run_state"] = RunState(entry.to_state)
            except ValueError:
                continue
            info["finished_at"] = entry.timestamp_utc
            for key in (
                "plan",
                "instance_name",
                "image_ref",
                "container_id",
                "failed_stage",
                "error",
                "diagnostics",
            ):
                if entry.detail.get(key):
                    info[key] = entry.detail[key]
        return info

    @staticmethod
    def _replay_stages(entries: list[LedgerEntry]) -> dict[str, dict[str, Any]]:
        """Replay stage entries.  Returns stage_id -> StageStatus fields."""
        replayed: dict[str, dict[str, Any]] = {}
        for entry in entries:
            if entry.stage_id == PIPELINE_STAGE_ID:
                continue
            info = replayed.setdefault(entry.stage_id, {"artifact_refs": []})
            try:
                state = StageState(entry.to_state)
            except ValueError:
                continue
            info["state"] = state
            info["entered_at"] = entry.timestamp_utc
            info["artifact_refs"].extend(entry.artifact_references)
            if state == StageState.BLOCKED:
                upstream = entry.detail.get("blocked_by", "")
                if upstream == "abort":
                    info["block_reason"] = "Blocked by operator abort"
                elif upstream:
                    info["block_reason"] = f"Blocked by failed stage {upstream}"
                else:
                    info["block_reason"] = "Blocked upstream"
            if state == StageState.FAILED:
                info["error"] = entry.detail.get("error", "")
        return replayed

    @staticmethod
    def _collect_warnings(entries: list[LedgerEntry]) -> list[StageWarning]:
        warnings: list[StageWarning] = []
        for entry in entries:
            if entry.stage_id == PIPELINE_STAGE_ID:
                continue
            kind = "cleanup" if entry.stage_id == "cleanup" else "verify"
            for message in entry.detail.get("warnings", []):
                warnings.append(
                    StageWarning(stage_id=entry.stage_id, kind=kind, message=message)
                )
            # A failed cleanup never fails the run; it surfaces as a warning.
            if entry.stage_id == "cleanup" and entry.to_state == StageState.FAILED.value:
                warnings.append(
                    StageWarning(
                        stage_id=entry.stage_id,
                        kind="cleanup",
                        message=entry.detail.get("error", "cleanup failed"),
                    )
                )
        return warnings

    def _chain_intact(self, run_id: str) -> bool:
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            logger.warning("Ledger chain for %s is invalid: %s", run_id, exc)
            return False
