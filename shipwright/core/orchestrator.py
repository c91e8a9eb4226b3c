"""Pipeline orchestrator — the central coordinator for Shipwright runs.

The Orchestrator wires together the RunLedger, StageMachine,
PrerequisiteGraph, ContentAddressedStore, InstanceLock and the container
runtime into a single pipeline execution engine.

A run walks its plan in order: the run enters each stage's phase, the stage
executes, and the first fatal ``PipelineError`` ends the run FAILED with
every downstream stage BLOCKED.  Cleanup runs afterwards, best-effort, and
can only add warnings.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx

from shipwright.config import Settings
from shipwright.core.artifact_store import ContentAddressedStore
from shipwright.core.hasher import compute_output_hash
from shipwright.core.prerequisite_graph import PrerequisiteGraph
from shipwright.core.run_ledger import RunLedger
from shipwright.core.run_lock import InstanceLock
from shipwright.core.stage_machine import StageMachine
from shipwright.errors import (
    CleanupWarning,
    PipelineAborted,
    PipelineError,
    PipelineWarning,
    VerifyWarning,
)
from shipwright.models.config import PipelineConfig, RunConfig
from shipwright.models.ledger import LedgerEntry
from shipwright.models.reports import PipelineReport, StageWarning
from shipwright.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    RunState,
    StageState,
    plan_for,
)
from shipwright.runtime.base import ContainerRuntime
from shipwright.runtime.docker_cli import DockerCliRuntime
from shipwright.stages import STAGE_ORDER, BaseStage, get_stage

logger = logging.getLogger(__name__)


class Orchestrator:
    """Central pipeline orchestrator.

    Creates and manages pipeline runs for one Instance, delegates stage
    execution, and turns the outcome into a ``PipelineReport``.

    Parameters
    ----------
    config:
        Pipeline configuration.  Derived from *settings* if not provided.
    run_id:
        Identifier for the run.  Generated if None.
    settings:
        Process settings; supplies the Docker binary and timeouts.
    runtime:
        Container runtime.  Defaults to ``DockerCliRuntime``.
    http_client:
        ``httpx.Client`` used by the health probe.  One is created per probe
        if not provided.
    sleep:
        Replacement for ``time.sleep`` during the verification grace period.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        run_id: str | None = None,
        *,
        settings: Settings | None = None,
        runtime: ContainerRuntime | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.config = config or PipelineConfig.from_settings(self.settings)

        # Core subsystems
        self.ledger = RunLedger(self.config.ledger_db_path)
        self.artifact_store = ContentAddressedStore(self.config.artifact_store_path)
        self.runtime: ContainerRuntime = runtime or DockerCliRuntime(
            self.settings.docker_binary,
            timeout=self.settings.command_timeout_seconds,
        )
        self.graph = PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)
        self.stage_machine = StageMachine(
            self.ledger, self.graph, instance_name=self.config.instance_name
        )
        self._http_client = http_client
        self._sleep = sleep

        # Run state
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = run_id or f"sw-{ts}-{uuid.uuid4().hex[:4]}"
        self.run_config: RunConfig | None = None
        self._run_context: dict[str, Any] = {}
        self._warnings: list[StageWarning] = []
        self._abort = threading.Event()

        # Stage handler registry
        self._stage_handlers: dict[str, BaseStage] = {
            sid: get_stage(sid) for sid in STAGE_ORDER
        }

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def start_run(self, stage_ids: list[str] | None = None) -> RunConfig:
        """Initialize a new run over the given stages (all stages if None).

        Records the opening PENDING entry in the ledger with the plan and
        the target Instance.
        """
        plan = plan_for(stage_ids)
        self.graph = PrerequisiteGraph(plan)
        self.stage_machine = StageMachine(
            self.ledger, self.graph, instance_name=self.config.instance_name
        )
        self.run_config = RunConfig(
            run_id=self.run_id,
            pipeline_config=self.config,
            stage_plan=plan,
        )
        self._warnings = []

        self.stage_machine.initialize_run(
            self.run_id,
            detail={
                "plan": [sd.stage_id for sd in plan],
                "instance_name": self.config.instance_name,
                "image_ref": self.config.image_ref,
                "port": self.config.port_binding.as_publish_arg(),
            },
        )
        self._run_context = {
            "run_id": self.run_id,
            "run_config": self.run_config,
            "stage_results": {},
            "stage_states": self.stage_machine.get_all_states(self.run_id),
            "stage_definitions": {
                sd.stage_id: {"prerequisites": list(sd.prerequisites)} for sd in plan
            },
            "runtime": self.runtime,
            "artifact_store": self.artifact_store,
            "http_client": self._http_client,
            "sleep": self._sleep,
        }
        logger.info(
            "Run %s started for instance %s (%s)",
            self.run_id,
            self.config.instance_name,
            ", ".join(sd.stage_id for sd in plan),
        )
        return self.run_config

    def run(self, stage_ids: list[str] | None = None) -> PipelineReport:
        """Execute a whole run under the Instance lock and report the outcome.

        Raises
        ------
        PipelineBusyError
            Another run holds the lock for this Instance name.
        """
        with InstanceLock(
            self.config.lock_dir, self.config.instance_name, run_id=self.run_id
        ):
            self.start_run(stage_ids)
            assert self.run_config is not None

            failure: PipelineError | None = None
            for sd in self.run_config.stage_plan:
                if sd.run_phase is None:
                    continue
                if self._abort.is_set():
                    failure = PipelineAborted(
                        f"Run aborted by operator before {sd.stage_id}",
                        stage_id=sd.stage_id,
                    )
                    break
                self.stage_machine.advance_run(self.run_id, sd.run_phase)
                try:
                    self.execute_stage(sd.stage_id)
                except PipelineError as exc:
                    failure = exc
                    break

            if self._abort.is_set():
                self._block_unreached("abort")

            if failure is None:
                self._finish_succeeded()
            else:
                self._finish_failed(failure)

            if not self._abort.is_set():
                for sd in self.run_config.stage_plan:
                    if sd.run_phase is None:
                        self._run_best_effort(sd.stage_id)

            return self._build_report(failure)

    def _block_unreached(self, reason: str) -> None:
        """Mark every planned stage that never started as BLOCKED by *reason*."""
        assert self.run_config is not None
        for sd in self.run_config.stage_plan:
            state = self.stage_machine.get_current_state(self.run_id, sd.stage_id)
            if state == StageState.NOT_STARTED:
                self.stage_machine.transition(
                    self.run_id,
                    sd.stage_id,
                    StageState.BLOCKED,
                    detail={"blocked_by": reason},
                )

    def request_abort(self) -> None:
        """Ask the current run to stop before its next stage starts.

        Safe to call from a signal handler.  The stage in progress runs to
        completion.
        """
        if not self._abort.is_set():
            logger.warning("Abort requested for run %s", self.run_id)
        self._abort.set()

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def register_stage_handler(self, stage_id: str, stage: BaseStage) -> None:
        """Replace the stage implementation used for *stage_id*."""
        self._stage_handlers[stage_id] = stage

    def execute_stage(self, stage_id: str) -> dict[str, Any]:
        """Execute one stage of the current run.

        Lifecycle:
        1. Transition to RUNNING (prerequisites checked automatically)
        2. Run the stage (input hash, execute, output hash)
        3. Transition to PASSED, DEGRADED (result carries warnings) or FAILED

        Returns the stage result dict.  A ``PipelineError`` is recorded
        against the stage and re-raised.
        """
        if self.run_config is None:
            raise RuntimeError("No run in progress; call start_run() first")

        stage = self._stage_handlers[stage_id]
        self.stage_machine.transition(self.run_id, stage_id, StageState.RUNNING)
        self._run_context["stage_states"] = self.stage_machine.get_all_states(self.run_id)

        try:
            result = stage.run_stage(self._run_context)
        except PipelineError as exc:
            self.stage_machine.transition(
                self.run_id,
                stage_id,
                StageState.FAILED,
                output_hash=compute_output_hash(stage_id, {"error": str(exc)}),
                detail=self._failure_detail(exc),
            )
            self._run_context["stage_states"] = self.stage_machine.get_all_states(
                self.run_id
            )
            raise

        messages: list[str] = list(result.get("warnings") or [])
        self.stage_machine.transition(
            self.run_id,
            stage_id,
            StageState.DEGRADED if messages else StageState.PASSED,
            input_hash=result.get("_input_hash", ""),
            output_hash=result.get("_output_hash", ""),
            artifact_references=list(result.get("_artifact_refs", [])),
            detail={"warnings": messages} if messages else None,
        )
        self._run_context["stage_states"] = self.stage_machine.get_all_states(self.run_id)

        warning_cls = CleanupWarning if stage_id == "cleanup" else VerifyWarning
        for message in messages:
            self._collect_warning(warning_cls(message, stage_id=stage_id))
        return result

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        """Return current state of all planned stages."""
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_state(self) -> RunState:
        return self.stage_machine.get_run_state(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        """Return all ledger entries for the current run."""
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of the current run's ledger."""
        return self.ledger.verify_chain(self.run_id)

    @property
    def warnings(self) -> list[StageWarning]:
        return list(self._warnings)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _failure_detail(exc: PipelineError) -> dict[str, Any]:
        return {
            "error": str(exc),
            "error_type": type(exc).__name__,
            "diagnostics": exc.diagnostics,
        }

    def _collect_warning(self, warning: PipelineWarning) -> None:
        kind = "cleanup" if isinstance(warning, CleanupWarning) else "verify"
        self._warnings.append(
            StageWarning(stage_id=warning.stage_id, kind=kind, message=str(warning))
        )

    def _deployed_container_id(self) -> str:
        return (
            self._run_context.get("stage_results", {})
            .get("deploy", {})
            .get("container_id", "")
        )

    def _finish_succeeded(self) -> None:
        self.stage_machine.advance_run(
            self.run_id,
            RunState.SUCCEEDED,
            detail={
                "instance_name": self.config.instance_name,
                "image_ref": self.config.image_ref,
                "container_id": self._deployed_container_id(),
                "warnings": [w.model_dump(mode="json") for w in self._warnings],
            },
        )
        logger.info(
            "Run %s succeeded%s",
            self.run_id,
            f" with {len(self._warnings)} warning(s)" if self._warnings else "",
        )

    def _finish_failed(self, exc: PipelineError) -> None:
        detail = self._failure_detail(exc)
        detail.update(
            {
                "failed_stage": exc.stage_id,
                "instance_name": self.config.instance_name,
                "image_ref": self.config.image_ref,
            }
        )
        self.stage_machine.advance_run(self.run_id, RunState.FAILED, detail=detail)
        logger.error("Run %s failed at %s: %s", self.run_id, exc.stage_id or "?", exc)

    def _run_best_effort(self, stage_id: str) -> None:
        # Anything raised here becomes a warning; the outcome is already sealed.
        try:
            self.execute_stage(stage_id)
        except Exception as exc:
            logger.warning("%s did not complete: %s", stage_id, exc)
            self._collect_warning(
                CleanupWarning(f"{stage_id} did not complete: {exc}", stage_id=stage_id)
            )

    def _build_report(self, failure: PipelineError | None) -> PipelineReport:
        return PipelineReport(
            run_id=self.run_id,
            instance_name=self.config.instance_name,
            image_ref=self.config.image_ref,
            state=self.get_run_state(),
            stage_states=self.get_states(),
            warnings=list(self._warnings),
            failed_stage=failure.stage_id if failure else "",
            error=str(failure) if failure else "",
            error_type=type(failure).__name__ if failure else "",
            diagnostics=failure.diagnostics if failure else "",
            container_id=self._deployed_container_id(),
        )
