"""Common lifecycle for pipeline stages.

A stage subclass names itself with ``stage_id``/``display_name`` and
implements ``execute()``.  The orchestrator only ever calls ``run_stage()``,
which is final and always runs the same steps:

    check prerequisites -> hash inputs -> execute -> hash outputs -> publish

``PipelineError`` subclasses raised by ``execute()`` keep their failure
category and propagate; anything else surfaces as ``StageExecutionError``.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar, final

from shipwright.core.hasher import compute_input_hash, compute_output_hash
from shipwright.errors import PipelineError, StageExecutionError
from shipwright.models.stages import SATISFIED_STATES, StageState

logger = logging.getLogger(__name__)


class StagePrerequisiteError(RuntimeError):
    """Raised when ``run_stage()`` is called before upstream stages succeeded."""


class BaseStage(abc.ABC):
    """Base class for the five pipeline stages.

    ``execute()`` returns a JSON-serializable dict.  A ``"warnings"`` list
    in it makes the orchestrator mark the stage DEGRADED and report each
    entry as a ``StageWarning``.  Keys with a leading underscore are
    bookkeeping and never hashed.
    """

    stage_id: ClassVar[str]
    display_name: ClassVar[str]

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Do the stage's work.

        Parameters
        ----------
        run_context:
            Run-wide dict: ``run_id``, ``run_config``, ``stage_results`` of
            earlier stages, and the collaborators stages call into
            (``runtime``, ``artifact_store``, ``http_client``, ``sleep``).
        """

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Run the stage and return its result with ``_input_hash`` and ``_output_hash``."""
        self.validate_prerequisites(run_context)
        input_hash = compute_input_hash(self.stage_id, self._hash_inputs(run_context))
        logger.info("%s [%s] starting", self.display_name, self.stage_id)

        try:
            result = self.execute(run_context)
        except PipelineError as exc:
            exc.stage_id = exc.stage_id or self.stage_id
            logger.error("%s [%s] failed: %s", self.display_name, self.stage_id, exc)
            raise
        except Exception as exc:
            logger.exception("%s [%s] crashed", self.display_name, self.stage_id)
            raise StageExecutionError(
                f"{self.display_name} crashed: {exc}", stage_id=self.stage_id
            ) from exc

        public = {key: value for key, value in result.items() if not key.startswith("_")}
        result["_input_hash"] = input_hash
        result["_output_hash"] = compute_output_hash(self.stage_id, public)
        run_context.setdefault("stage_results", {})[self.stage_id] = result
        logger.debug(
            "%s [%s] done in=%s out=%s",
            self.display_name,
            self.stage_id,
            input_hash[:12],
            result["_output_hash"][:12],
        )
        return result

    @final
    def validate_prerequisites(self, run_context: dict[str, Any]) -> None:
        """Refuse to run unless every prerequisite is PASSED or DEGRADED.

        Prerequisites come from ``run_context["stage_definitions"][stage_id]``
        and states from ``run_context["stage_states"]``.
        """
        states: dict[str, StageState] = run_context.get("stage_states", {})
        definition = run_context.get("stage_definitions", {}).get(self.stage_id, {})
        unmet = []
        for prereq in definition.get("prerequisites", ()):
            state = states.get(prereq, StageState.NOT_STARTED)
            if state not in SATISFIED_STATES:
                unmet.append(f"{prereq} is {state.value}")
        if unmet:
            raise StagePrerequisiteError(
                f"{self.display_name} cannot run yet: {'; '.join(unmet)}"
            )

    def _hash_inputs(self, run_context: dict[str, Any]) -> dict[str, Any]:
        run_config = run_context.get("run_config")
        return {
            "run_id": run_context.get("run_id", ""),
            "pipeline_config": (
                run_config.pipeline_config.model_dump(mode="json") if run_config else {}
            ),
            "upstream": {
                sid: prior.get("_output_hash", "")
                for sid, prior in run_context.get("stage_results", {}).items()
            },
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.stage_id!r})"
