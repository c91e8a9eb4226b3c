"""Tests for all Pydantic data models — validation, immutability, defaults."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from shipwright.models.artifacts import Artifact
from shipwright.models.catalog import ProductList
from shipwright.models.config import PipelineConfig, RunConfig
from shipwright.models.instances import PortBinding
from shipwright.models.ledger import LedgerEntry
from shipwright.models.reports import PipelineReport, StageWarning
from shipwright.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_RUN_TRANSITIONS,
    VALID_TRANSITIONS,
    RunState,
    StageState,
    plan_for,
)


class TestStageModels:
    def test_stage_state_values(self):
        assert StageState.NOT_STARTED == "not_started"
        assert StageState.DEGRADED == "degraded"

    def test_terminal_stage_states(self):
        for state in (StageState.PASSED, StageState.DEGRADED, StageState.FAILED, StageState.BLOCKED):
            assert VALID_TRANSITIONS[state] == set()

    def test_run_states_forward_only(self):
        assert RunState.BUILDING not in VALID_RUN_TRANSITIONS[RunState.DEPLOYING]
        assert RunState.FAILED in VALID_RUN_TRANSITIONS[RunState.PENDING]
        assert VALID_RUN_TRANSITIONS[RunState.SUCCEEDED] == set()
        assert RunState.SUCCEEDED.is_terminal and not RunState.VERIFYING.is_terminal

    def test_default_plan(self):
        assert [sd.stage_id for sd in DEFAULT_STAGE_DEFINITIONS] == [
            "build", "image", "deploy", "verify", "cleanup",
        ]
        # Cleanup has no run phase and depends on nothing.
        cleanup = DEFAULT_STAGE_DEFINITIONS[-1]
        assert cleanup.run_phase is None
        assert cleanup.prerequisites == []

    def test_plan_for_drops_outside_prerequisites(self):
        (deploy,) = plan_for(["deploy"])
        assert deploy.prerequisites == []
        image, deploy = plan_for(["deploy", "image"])
        assert deploy.prerequisites == ["image"]

    def test_plan_for_unknown(self):
        with pytest.raises(KeyError):
            plan_for(["build", "publish"])


class TestConfigModels:
    def test_pipeline_config_frozen(self):
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.image_tag = "2.0"

    def test_run_config_defaults(self):
        run = RunConfig()
        assert run.run_id.startswith("sw-")
        assert len(run.stage_plan) == 5


class TestArtifactAndInstanceModels:
    def test_artifact_digest(self):
        artifact = Artifact(
            name="svc.jar",
            path="target/svc.jar",
            content_address="sha256:" + "ab" * 32,
            size_bytes=10,
            version_label="svc-abababababab",
        )
        assert artifact.digest == "ab" * 32

    def test_publish_arg_with_host_ip(self):
        binding = PortBinding(host_port=9090, container_port=8080, host_ip="127.0.0.1")
        assert binding.as_publish_arg() == "127.0.0.1:9090:8080/tcp"


class TestCatalog:
    def test_valid_catalog(self):
        products = ProductList.validate_json(
            b'[{"id": 1, "name": "Laptop", "description": "d", "price": 9.5, "category": "E"}]'
        )
        assert products[0].name == "Laptop"

    def test_missing_field_rejected(self):
        with pytest.raises(ValidationError):
            ProductList.validate_json(b'[{"id": 1, "name": "Laptop"}]')

    def test_not_a_list_rejected(self):
        with pytest.raises(ValidationError):
            ProductList.validate_json(b'{"error": "boom"}')


class TestLedgerEntry:
    def test_to_state(self):
        entry = LedgerEntry(run_id="r", stage_id="build", state_transition="running->passed")
        assert entry.to_state == "passed"

    def test_to_state_unparseable(self):
        entry = LedgerEntry(run_id="r", stage_id="build", state_transition="garbage")
        assert entry.to_state == ""


class TestPipelineReport:
    def _report(self, state: RunState, *kinds: str) -> PipelineReport:
        return PipelineReport(
            run_id="r",
            instance_name="svc",
            image_ref="svc:1.0",
            state=state,
            warnings=[StageWarning(stage_id=k, kind=k, message="m") for k in kinds],
        )

    def test_exit_codes(self):
        assert self._report(RunState.SUCCEEDED).exit_code == 0
        assert self._report(RunState.SUCCEEDED, "verify").exit_code == 0
        assert self._report(RunState.FAILED).exit_code == 1

    def test_degraded_only_for_verify_warnings(self):
        assert self._report(RunState.SUCCEEDED, "verify").degraded
        assert not self._report(RunState.SUCCEEDED, "cleanup").degraded
        assert not self._report(RunState.FAILED, "verify").degraded
