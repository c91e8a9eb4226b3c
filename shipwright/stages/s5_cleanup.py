"""Stage 5 — Cleanup.

Reclaims superseded Images and archived Artifacts.  Runs after the run has
reached its terminal state and can only add warnings to it.

Protected, and never removed:
    - every Image backing an existing Instance (running or stopped)
    - the Image currently tagged ``<repository>:<tag>``
    - archived Artifacts recorded on a protected Image
"""

from __future__ import annotations

import logging
from typing import Any

from shipwright.core.artifact_store import ContentAddressedStore
from shipwright.models.config import PipelineConfig
from shipwright.models.images import ARTIFACT_LABEL, REPOSITORY_LABEL
from shipwright.runtime.base import ContainerRuntime, RuntimeCommandError
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


class CleanupStage(BaseStage):
    """Stage 5: remove unprotected Images and Artifacts, best-effort."""

    stage_id = "cleanup"
    display_name = "Cleanup"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["run_config"].pipeline_config
        runtime: ContainerRuntime = run_context["runtime"]
        store: ContentAddressedStore = run_context["artifact_store"]

        result: dict[str, Any] = {
            "protected_images": [],
            "removed_images": [],
            "removed_artifacts": [],
            "reclaimed_bytes": 0,
            "warnings": [],
        }
        warnings: list[str] = result["warnings"]

        # Without a complete picture of what is in use, nothing is removed.
        try:
            containers = runtime.list_containers(running_only=False)
            candidates = runtime.list_images(
                label=f"{REPOSITORY_LABEL}={config.image_repository}"
            )
        except RuntimeCommandError as exc:
            warnings.append(f"Cleanup skipped, could not list runtime state: {exc}")
            logger.warning(warnings[-1])
            return result

        protected_ids = {c.image_id for c in containers if c.image_id}
        protected_artifacts = {
            c.labels[ARTIFACT_LABEL] for c in containers if c.labels.get(ARTIFACT_LABEL)
        }
        for image in candidates:
            if config.image_ref in image.tags:
                protected_ids.add(image.image_id)
            if image.image_id in protected_ids and image.artifact_address:
                protected_artifacts.add(image.artifact_address)
        result["protected_images"] = sorted(protected_ids)

        for image in candidates:
            if image.image_id in protected_ids:
                continue
            try:
                runtime.remove_image(image.image_id)
            except RuntimeCommandError as exc:
                warnings.append(f"Could not remove image {image.image_id[:19]}: {exc}")
                logger.warning(warnings[-1])
                continue
            logger.info("Removed superseded image %s %s", image.image_id[:19], image.tags)
            result["removed_images"].append(image.image_id)
            result["reclaimed_bytes"] += image.size_bytes

        for ref in store.list_artifacts():
            if ref.content_address in protected_artifacts:
                continue
            try:
                reclaimed = store.remove(ref.content_address)
            except OSError as exc:
                warnings.append(f"Could not remove artifact {ref.content_address}: {exc}")
                logger.warning(warnings[-1])
                continue
            result["removed_artifacts"].append(ref.content_address)
            result["reclaimed_bytes"] += reclaimed

        logger.info(
            "Cleanup removed %d image(s), %d artifact(s), %d bytes",
            len(result["removed_images"]),
            len(result["removed_artifacts"]),
            result["reclaimed_bytes"],
        )
        return result
