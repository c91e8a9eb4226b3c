"""Stage and run state machine for pipeline runs.

Every state change goes through here and lands in the Run Ledger before
the in-memory view is updated.  Stage moves follow ``VALID_TRANSITIONS``
and respect prerequisites; a failing stage blocks everything downstream.
Run moves follow ``VALID_RUN_TRANSITIONS`` and are recorded under the
``pipeline`` stage id.  State for a run this process has not seen is
replayed from the ledger on first access.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from shipwright.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from shipwright.core.run_ledger import RunLedger
from shipwright.models.ledger import LedgerEntry
from shipwright.models.stages import (
    PIPELINE_STAGE_ID,
    VALID_RUN_TRANSITIONS,
    VALID_TRANSITIONS,
    RunState,
    StageState,
)


class InvalidTransitionError(RuntimeError):
    """Raised when a stage or run is asked to move somewhere it cannot go."""


@dataclass
class _RunTrack:
    stages: dict[str, StageState]
    phase: RunState = RunState.PENDING


class StageMachine:
    """Tracks stage and run states, one ``_RunTrack`` per run id.

    Parameters
    ----------
    ledger:
        Where every transition is recorded.
    graph:
        Prerequisites of the run's stage plan.
    instance_name:
        Stamped on every entry so runs can be listed per Instance.
    """

    def __init__(
        self, ledger: RunLedger, graph: PrerequisiteGraph, *, instance_name: str = ""
    ) -> None:
        self._ledger = ledger
        self._graph = graph
        self._instance_name = instance_name
        self._tracks: dict[str, _RunTrack] = {}

    def _fresh_stages(self) -> dict[str, StageState]:
        return dict.fromkeys(self._graph.stage_ids, StageState.NOT_STARTED)

    def _track(self, run_id: str) -> _RunTrack:
        track = self._tracks.get(run_id)
        if track is None:
            track = self._replay(run_id)
            self._tracks[run_id] = track
        return track

    def _replay(self, run_id: str) -> _RunTrack:
        track = _RunTrack(stages=self._fresh_stages())
        for entry in self._ledger.get_run_entries(run_id):
            target = entry.to_state
            if entry.stage_id == PIPELINE_STAGE_ID:
                if target in {s.value for s in RunState}:
                    track.phase = RunState(target)
            elif target in {s.value for s in StageState}:
                track.stages[entry.stage_id] = StageState(target)
        return track

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        return self._track(run_id).stages.get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        return dict(self._track(run_id).stages)

    def get_run_state(self, run_id: str) -> RunState:
        return self._track(run_id).phase

    def can_start(self, run_id: str, stage_id: str) -> tuple[bool, list[str]]:
        """Whether *stage_id* may move to RUNNING now, and if not, why."""
        stages = self._track(run_id).stages
        current = stages.get(stage_id, StageState.NOT_STARTED)
        if current != StageState.NOT_STARTED:
            return False, [f"{stage_id} is already {current.value}"]
        reasons = self._graph.get_blocking_reasons(stage_id, stages)
        return not reasons, reasons

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def initialize_run(
        self, run_id: str, *, detail: dict[str, Any] | None = None
    ) -> dict[str, StageState]:
        """Open a run: every planned stage NOT_STARTED, the run PENDING.

        The ``->PENDING`` entry is written first so the run is visible in
        the ledger before any stage does work.
        """
        track = _RunTrack(stages=self._fresh_stages())
        self._record(run_id, PIPELINE_STAGE_ID, "", RunState.PENDING.value, detail=detail)
        self._tracks[run_id] = track
        return dict(track.stages)

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Move one stage to *target_state* and return the sealed entry.

        Raises
        ------
        InvalidTransitionError
            The move is not in ``VALID_TRANSITIONS``.
        PrerequisiteNotMetError
            Moving to RUNNING while a prerequisite is unsatisfied.
        """
        track = self._track(run_id)
        current = track.stages.get(stage_id, StageState.NOT_STARTED)
        _check_move(stage_id, current, target_state, VALID_TRANSITIONS)

        if target_state == StageState.RUNNING:
            reasons = self._graph.get_blocking_reasons(stage_id, track.stages)
            if reasons:
                raise PrerequisiteNotMetError(
                    f"{stage_id} cannot start; waiting on {'; '.join(reasons)}"
                )

        sealed = self._record(
            run_id,
            stage_id,
            current.value,
            target_state.value,
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifact_references,
            detail=detail,
        )
        track.stages[stage_id] = target_state

        if target_state == StageState.FAILED:
            for blocked in self._graph.cascade_block(stage_id, track.stages):
                self._record(
                    run_id,
                    blocked,
                    StageState.NOT_STARTED.value,
                    StageState.BLOCKED.value,
                    detail={"blocked_by": stage_id},
                )
        return sealed

    def advance_run(
        self,
        run_id: str,
        target_state: RunState,
        *,
        detail: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        """Move the run itself forward to *target_state*."""
        track = self._track(run_id)
        _check_move(f"run {run_id}", track.phase, target_state, VALID_RUN_TRANSITIONS)
        sealed = self._record(
            run_id, PIPELINE_STAGE_ID, track.phase.value, target_state.value, detail=detail
        )
        track.phase = target_state
        return sealed

    def _record(
        self,
        run_id: str,
        stage_id: str,
        source: str,
        target: str,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> LedgerEntry:
        return self._ledger.append(
            LedgerEntry(
                run_id=run_id,
                instance_name=self._instance_name,
                stage_id=stage_id,
                state_transition=f"{source}->{target}",
                input_hash=input_hash,
                output_hash=output_hash,
                artifact_references=list(artifact_references or ()),
                detail=dict(detail or {}),
            )
        )


def _check_move(subject: str, current: Any, target: Any, table: dict[Any, set[Any]]) -> None:
    allowed = table.get(current, set())
    if target not in allowed:
        options = ", ".join(sorted(s.value for s in allowed)) or "nothing"
        raise InvalidTransitionError(
            f"{subject}: {current.value} -> {target.value} is not allowed "
            f"(from {current.value} only {options})"
        )
