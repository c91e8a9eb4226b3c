"""Stage prerequisites for one run's plan, with cascade blocking.

A stage may start only once each prerequisite in the plan is PASSED or
DEGRADED.  When a stage fails, every stage downstream of it is BLOCKED;
that is how a fatal error stops the rest of the pipeline while stages
outside the failed branch (cleanup) remain runnable.

Prerequisites naming stages outside the plan are ignored, so ``deploy`` can
be planned on its own against an image built by an earlier run.
"""

from __future__ import annotations

import heapq
from graphlib import CycleError, TopologicalSorter

from shipwright.models.stages import SATISFIED_STATES, StageDefinition, StageState


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage is started before its prerequisites are satisfied."""


class CyclicDependencyError(ValueError):
    """Raised when a plan's prerequisites form a cycle."""


class PrerequisiteGraph:
    """Prerequisite DAG over a list of ``StageDefinition`` objects."""

    def __init__(self, stage_definitions: list[StageDefinition]) -> None:
        self._stages = {sd.stage_id: sd for sd in stage_definitions}
        self._requires: dict[str, tuple[str, ...]] = {
            sd.stage_id: tuple(p for p in sd.prerequisites if p in self._stages)
            for sd in stage_definitions
        }
        self._unlocks: dict[str, list[str]] = {sid: [] for sid in self._stages}
        for sid, requires in self._requires.items():
            for prereq in requires:
                self._unlocks[prereq].append(sid)
        self._order = self._topological_order()

    def _topological_order(self) -> list[str]:
        sorter = TopologicalSorter(self._requires)
        try:
            sorter.prepare()
        except CycleError as exc:
            raise CyclicDependencyError(
                f"Stage prerequisites form a cycle: {' -> '.join(exc.args[1])}"
            ) from exc

        # Among ready stages, the lowest ordinal goes first.
        ready: list[tuple[int, str]] = []
        order: list[str] = []
        while sorter.is_active():
            for sid in sorter.get_ready():
                heapq.heappush(ready, (self._stages[sid].ordinal, sid))
            _, sid = heapq.heappop(ready)
            order.append(sid)
            sorter.done(sid)
        return order

    @property
    def stage_ids(self) -> list[str]:
        """Planned stage ids in execution order."""
        return list(self._order)

    def _downstream(self, stage_id: str) -> list[str]:
        seen: list[str] = []
        pending = list(self._unlocks.get(stage_id, ()))
        while pending:
            sid = pending.pop(0)
            if sid not in seen:
                seen.append(sid)
                pending.extend(self._unlocks[sid])
        return seen

    # ------------------------------------------------------------------
    # Prerequisite checks
    # ------------------------------------------------------------------

    def are_prerequisites_met(self, stage_id: str, states: dict[str, StageState]) -> bool:
        return not self._unsatisfied(stage_id, states)

    def get_blocking_reasons(self, stage_id: str, states: dict[str, StageState]) -> list[str]:
        """One ``"<display name> (<id>) is <state>"`` line per unmet prerequisite."""
        return [
            f"{self._stages[prereq].display_name} ({prereq}) is {state.value}"
            for prereq, state in self._unsatisfied(stage_id, states)
        ]

    def _unsatisfied(
        self, stage_id: str, states: dict[str, StageState]
    ) -> list[tuple[str, StageState]]:
        return [
            (prereq, states.get(prereq, StageState.NOT_STARTED))
            for prereq in self._requires.get(stage_id, ())
            if states.get(prereq) not in SATISFIED_STATES
        ]

    # ------------------------------------------------------------------
    # Cascade blocking
    # ------------------------------------------------------------------

    def cascade_block(self, failed_stage_id: str, states: dict[str, StageState]) -> list[str]:
        """Mark every not-yet-started stage downstream of a failure BLOCKED.

        *states* is updated in place; the newly blocked ids are returned.
        """
        blocked = [
            sid
            for sid in self._downstream(failed_stage_id)
            if states.get(sid, StageState.NOT_STARTED) == StageState.NOT_STARTED
        ]
        for sid in blocked:
            states[sid] = StageState.BLOCKED
        return blocked
