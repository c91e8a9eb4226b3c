"""Stage and run state machine models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """State of a single stage within a run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    DEGRADED = "degraded"  # passed with warnings
    FAILED = "failed"
    BLOCKED = "blocked"  # skipped because an upstream stage failed


# Valid stage transitions, enforced by StageMachine.
# A run is never retried in place; re-running means a new run_id.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.BLOCKED},
    StageState.RUNNING: {StageState.PASSED, StageState.DEGRADED, StageState.FAILED},
    StageState.PASSED: set(),
    StageState.DEGRADED: set(),
    StageState.FAILED: set(),
    StageState.BLOCKED: set(),
}

# States that satisfy a downstream prerequisite.
SATISFIED_STATES: frozenset[StageState] = frozenset(
    {StageState.PASSED, StageState.DEGRADED}
)


class RunState(str, Enum):
    """State of a whole pipeline run."""

    PENDING = "PENDING"
    BUILDING = "BUILDING"
    IMAGING = "IMAGING"
    DEPLOYING = "DEPLOYING"
    VERIFYING = "VERIFYING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED)


_RUN_ORDER: list[RunState] = [
    RunState.PENDING,
    RunState.BUILDING,
    RunState.IMAGING,
    RunState.DEPLOYING,
    RunState.VERIFYING,
    RunState.SUCCEEDED,
]


def _forward_transitions() -> dict[RunState, set[RunState]]:
    # Forward-only: a plan that omits stages skips their phases.
    table: dict[RunState, set[RunState]] = {}
    for i, state in enumerate(_RUN_ORDER):
        if state.is_terminal:
            table[state] = set()
        else:
            table[state] = set(_RUN_ORDER[i + 1:]) | {RunState.FAILED}
    table[RunState.FAILED] = set()
    return table


VALID_RUN_TRANSITIONS: dict[RunState, set[RunState]] = _forward_transitions()


class StageDefinition(BaseModel):
    """A stage in a run's plan and its prerequisites.

    ``run_phase`` is the RunState the run enters while this stage executes.
    Stages without a phase (cleanup) run after the run reaches a terminal
    state and cannot change its outcome.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: float
    prerequisites: list[str] = []
    run_phase: RunState | None = None


# The ledger stage id under which run-level transitions are recorded.
PIPELINE_STAGE_ID = "pipeline"


DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id="build",
        display_name="Artifact Build",
        ordinal=1.0,
        prerequisites=[],
        run_phase=RunState.BUILDING,
    ),
    StageDefinition(
        stage_id="image",
        display_name="Image Build",
        ordinal=2.0,
        prerequisites=["build"],
        run_phase=RunState.IMAGING,
    ),
    StageDefinition(
        stage_id="deploy",
        display_name="Deploy",
        ordinal=3.0,
        prerequisites=["image"],
        run_phase=RunState.DEPLOYING,
    ),
    StageDefinition(
        stage_id="verify",
        display_name="Health Verification",
        ordinal=4.0,
        prerequisites=["deploy"],
        run_phase=RunState.VERIFYING,
    ),
    StageDefinition(
        stage_id="cleanup",
        display_name="Cleanup",
        ordinal=5.0,
        prerequisites=[],
    ),
]


def plan_for(stage_ids: list[str] | None = None) -> list[StageDefinition]:
    """Return stage definitions for a (sub)plan, in pipeline order.

    Prerequisites that fall outside the plan are dropped, so ``["deploy"]``
    yields a standalone deploy stage.
    """
    if stage_ids is None:
        return list(DEFAULT_STAGE_DEFINITIONS)

    known = {sd.stage_id for sd in DEFAULT_STAGE_DEFINITIONS}
    unknown = [sid for sid in stage_ids if sid not in known]
    if unknown:
        raise KeyError(f"Unknown stage ids: {unknown}. Known: {sorted(known)}")

    selected = set(stage_ids)
    return [
        sd.model_copy(
            update={"prerequisites": [p for p in sd.prerequisites if p in selected]}
        )
        for sd in DEFAULT_STAGE_DEFINITIONS
        if sd.stage_id in selected
    ]
