"""End-to-end integration tests — full pipeline runs through build → cleanup.

These tests exercise the Orchestrator, StageMachine, RunLedger,
PrerequisiteGraph, ArtifactStore, RuntimeSupervisor and MonitorProjection
working together against the in-memory runtime.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shipwright.core.artifact_store import ContentAddressedStore
from shipwright.core.orchestrator import Orchestrator
from shipwright.models.config import PipelineConfig
from shipwright.models.stages import RunState, StageState
from shipwright.monitor.projection import MonitorProjection

if TYPE_CHECKING:
    from tests.conftest import FakeRuntime

OrchestratorFactory = Callable[..., Orchestrator]


def _image_of(fake_runtime: FakeRuntime, instance: str = "svc") -> str:
    return fake_runtime.containers[instance].image_id


class TestFullPipeline:
    def test_first_deploy(
        self,
        make_orchestrator: OrchestratorFactory,
        fake_runtime: FakeRuntime,
        pipeline_config: PipelineConfig,
        sleeps: list[float],
    ):
        orch = make_orchestrator()
        report = orch.run()

        assert report.state == RunState.SUCCEEDED
        assert report.exit_code == 0
        (instance,) = fake_runtime.instances_named("svc")
        assert instance.running
        assert instance.image_ref == "svc:1.0"
        assert [p.as_publish_arg() for p in instance.ports] == ["9090:9090/tcp"]
        assert sleeps == [10]

        # The artifact baked into the running image stays archived.
        store = ContentAddressedStore(pipeline_config.artifact_store_path)
        (artifact,) = store.list_artifacts()
        assert fake_runtime.images[_image_of(fake_runtime)].artifact_address == artifact.content_address
        assert orch.verify_chain()

    def test_build_failure_touches_nothing(
        self, make_orchestrator: OrchestratorFactory, fake_runtime: FakeRuntime
    ):
        make_orchestrator().run()
        running_before = fake_runtime.containers["svc"]

        report = make_orchestrator(build_command=["definitely-not-a-build-tool-xyz"]).run()

        assert report.state == RunState.FAILED
        assert report.failed_stage == "build"
        assert {report.stage_states[s] for s in ("image", "deploy", "verify")} == {
            StageState.BLOCKED
        }
        # The previous Instance keeps serving.
        assert fake_runtime.containers["svc"] == running_before

    def test_failed_compile_output_never_deployed(
        self,
        make_orchestrator: OrchestratorFactory,
        fake_runtime: FakeRuntime,
        source_tree: Path,
    ):
        make_orchestrator().run()
        images_before = dict(fake_runtime.images)
        running_before = fake_runtime.containers["svc"]
        builds_before = [call for call in fake_runtime.calls if call[0] == "build_image"]

        # The compiler writes a jar, then fails.
        (source_tree / "broken.py").write_text(
            "import pathlib, sys\n"
            "out = pathlib.Path('target')\n"
            "out.mkdir(exist_ok=True)\n"
            "(out / 'svc.jar').write_bytes(b'PK stale half-compiled')\n"
            "print('[ERROR] COMPILATION ERROR')\n"
            "sys.exit(1)\n"
        )
        report = make_orchestrator(build_command=[sys.executable, "broken.py"]).run()

        assert report.state == RunState.FAILED
        assert report.failed_stage == "build"
        assert "COMPILATION ERROR" in report.diagnostics
        assert fake_runtime.images == images_before
        assert fake_runtime.containers["svc"] == running_before
        assert [call for call in fake_runtime.calls if call[0] == "build_image"] == builds_before
        assert not (source_tree / "target").exists()


class TestRedeploy:
    def test_redeploy_same_source_is_idempotent(
        self, make_orchestrator: OrchestratorFactory, fake_runtime: FakeRuntime
    ):
        make_orchestrator().run()
        first_image = _image_of(fake_runtime)
        first_container = fake_runtime.containers["svc"].container_id

        report = make_orchestrator().run()

        assert report.state == RunState.SUCCEEDED
        assert len(fake_runtime.instances_named("svc")) == 1
        assert _image_of(fake_runtime) == first_image
        assert fake_runtime.containers["svc"].container_id != first_container
        assert list(fake_runtime.images) == [first_image]

    def test_redeploy_new_source_reclaims_old_image(
        self,
        make_orchestrator: OrchestratorFactory,
        fake_runtime: FakeRuntime,
        pipeline_config: PipelineConfig,
        source_tree: Path,
    ):
        make_orchestrator().run()
        old_image = _image_of(fake_runtime)
        old_artifact = fake_runtime.images[old_image].artifact_address

        (source_tree / "src" / "App.java").write_text("class App { int v = 2; }\n")
        report = make_orchestrator().run()

        assert report.state == RunState.SUCCEEDED
        new_image = _image_of(fake_runtime)
        assert new_image != old_image
        assert len(fake_runtime.instances_named("svc")) == 1
        assert old_image not in fake_runtime.images
        assert new_image in fake_runtime.images

        store = ContentAddressedStore(pipeline_config.artifact_store_path)
        assert not store.exists(old_artifact)
        assert store.exists(fake_runtime.images[new_image].artifact_address)

    def test_port_conflict_leaves_prior_instance_stopped(
        self, make_orchestrator: OrchestratorFactory, fake_runtime: FakeRuntime
    ):
        make_orchestrator().run()
        fake_runtime.foreign_ports.add(9090)

        report = make_orchestrator().run()

        assert report.state == RunState.FAILED
        assert report.failed_stage == "deploy"
        assert report.error_type == "DeployFailure"
        assert "already allocated" in report.diagnostics
        assert report.stage_states["verify"] == StageState.BLOCKED
        # Retired and never restarted.
        assert fake_runtime.instances_named("svc") == []
        # The current tag still protects the image from cleanup.
        assert fake_runtime.inspect_image("svc:1.0") is not None

    def test_crash_on_start_reports_container_logs(
        self, make_orchestrator: OrchestratorFactory, fake_runtime: FakeRuntime
    ):
        fake_runtime.crash_on_start = True
        report = make_orchestrator().run()

        assert report.state == RunState.FAILED
        assert report.failed_stage == "deploy"
        assert "Unable to access jarfile" in report.diagnostics

    def test_other_instances_untouched(
        self, make_orchestrator: OrchestratorFactory, fake_runtime: FakeRuntime
    ):
        make_orchestrator(instance_name="svc-b", host_port=9191).run()
        make_orchestrator().run()
        make_orchestrator().run()

        assert fake_runtime.containers["svc-b"].running
        assert len(fake_runtime.instances_named("svc")) == 1


class TestCleanupSafety:
    def test_running_image_survives_retag(
        self,
        make_orchestrator: OrchestratorFactory,
        fake_runtime: FakeRuntime,
        source_tree: Path,
    ):
        # svc-a runs 1.0; a later build moves the tag to different content.
        make_orchestrator(instance_name="svc-a", host_port=9191).run()
        running_image = _image_of(fake_runtime, "svc-a")

        (source_tree / "src" / "App.java").write_text("class App { int v = 3; }\n")
        report = make_orchestrator(instance_name="svc-b", host_port=9292).run()

        assert report.state == RunState.SUCCEEDED
        assert running_image in fake_runtime.images
        assert fake_runtime.images[running_image].tags == []
        assert fake_runtime.containers["svc-a"].running


class TestDegradedRuns:
    def test_probe_failure_keeps_instance(
        self,
        make_orchestrator: OrchestratorFactory,
        fake_runtime: FakeRuntime,
        make_http_client: Callable[..., Any],
    ):
        orch = make_orchestrator(http_client=make_http_client(liveness_status=503))
        report = orch.run()

        assert report.state == RunState.SUCCEEDED
        assert report.exit_code == 0
        assert report.degraded
        # No rollback: the unhealthy Instance stays in place.
        assert fake_runtime.containers["svc"].running

        record = MonitorProjection(orch.ledger).latest_record("svc")
        assert record is not None
        assert record.outcome == RunState.SUCCEEDED
        assert "HTTP 503" in record.warnings[0].message

    def test_cleanup_failure_does_not_fail_run(
        self, make_orchestrator: OrchestratorFactory, fake_runtime: FakeRuntime, source_tree: Path
    ):
        make_orchestrator().run()
        old_image = _image_of(fake_runtime)
        fake_runtime.fail_remove_image.add(old_image)

        (source_tree / "src" / "App.java").write_text("class App { int v = 4; }\n")
        report = make_orchestrator().run()

        assert report.state == RunState.SUCCEEDED
        assert not report.degraded
        assert [w.kind for w in report.warnings] == ["cleanup"]
        assert old_image in fake_runtime.images
