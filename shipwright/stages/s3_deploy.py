"""Stage 3 — Deploy.

Replaces whatever currently holds the Instance name with a fresh Instance of
the configured Image.  All lifecycle rules live in ``RuntimeSupervisor``.
"""

from __future__ import annotations

from typing import Any

from shipwright.core.supervisor import RuntimeSupervisor
from shipwright.models.config import PipelineConfig
from shipwright.models.images import ARTIFACT_LABEL, REPOSITORY_LABEL
from shipwright.stages.base import BaseStage


class DeployStage(BaseStage):
    """Stage 3: start exactly one Instance of the Image."""

    stage_id = "deploy"
    display_name = "Deploy"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["run_config"].pipeline_config
        supervisor = RuntimeSupervisor(run_context["runtime"])

        labels = {
            REPOSITORY_LABEL: config.image_repository,
            "io.shipwright.run-id": run_context.get("run_id", ""),
        }
        image_result = run_context.get("stage_results", {}).get("image", {})
        if image_result.get("artifact_address"):
            labels[ARTIFACT_LABEL] = image_result["artifact_address"]

        started, retired = supervisor.replace(
            config.instance_name,
            config.image_ref,
            config.port_binding,
            env=dict(config.launch_env),
            labels=labels,
        )
        return {
            "instance_name": config.instance_name,
            "container_id": started.container_id,
            "image_ref": config.image_ref,
            "image_id": started.image_id,
            "port": config.port_binding.as_publish_arg(),
            "retired_container_id": retired.container_id if retired else "",
        }
