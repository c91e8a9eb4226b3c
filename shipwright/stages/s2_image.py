"""Stage 2 — Image Build.

Packages exactly one Artifact into an immutable, self-contained Image tagged
``<repository>:<tag>``.  The artifact glob is resolved before the runtime is
touched, so an ambiguous or empty selection never produces (or overwrites)
an Image.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from shipwright.core.artifact_store import ContentAddressedStore
from shipwright.errors import ImageFailure
from shipwright.models.config import PipelineConfig
from shipwright.models.images import (
    ARTIFACT_LABEL,
    REPOSITORY_LABEL,
    VERSION_LABEL,
    ImageSpec,
)
from shipwright.runtime.base import ContainerRuntime, RuntimeCommandError
from shipwright.stages.base import BaseStage
from shipwright.stages.s1_build import find_artifacts

logger = logging.getLogger(__name__)


def render_dockerfile(spec: ImageSpec) -> str:
    """Render the Dockerfile for *spec*.

    The entrypoint is written in exec form so the service runs as PID 1 and
    receives stop signals directly.
    """
    lines = [f"FROM {spec.base_image}"]
    for key, value in sorted(spec.labels.items()):
        lines.append(f"LABEL {key}={json.dumps(value)}")
    lines += [
        f"WORKDIR {spec.workdir}",
        f"COPY {spec.artifact_name} {spec.workdir.rstrip('/')}/{spec.artifact_name}",
        f"EXPOSE {spec.exposed_port}",
        f"ENTRYPOINT {json.dumps(list(spec.entrypoint))}",
    ]
    return "\n".join(lines) + "\n"


class ImageBuildStage(BaseStage):
    """Stage 2: wrap the Artifact in a container Image."""

    stage_id = "image"
    display_name = "Image Build"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["run_config"].pipeline_config
        store: ContentAddressedStore = run_context["artifact_store"]
        runtime: ContainerRuntime = run_context["runtime"]

        artifact_path = self._select_artifact(config)
        ref = store.store_file(artifact_path, name=artifact_path.name)
        digest = ref.content_address.removeprefix("sha256:")

        labels = {
            REPOSITORY_LABEL: config.image_repository,
            ARTIFACT_LABEL: ref.content_address,
            VERSION_LABEL: f"{artifact_path.stem}-{digest[:12]}",
        }
        spec = config.image_spec(labels)

        with tempfile.TemporaryDirectory(prefix="shipwright-ctx-") as ctx:
            context_dir = Path(ctx)
            shutil.copyfile(artifact_path, context_dir / spec.artifact_name)
            (context_dir / "Dockerfile").write_text(
                render_dockerfile(spec), encoding="utf-8"
            )
            logger.info("Building image %s from %s", spec.ref, artifact_path.name)
            try:
                image_id = runtime.build_image(context_dir, spec.ref, labels=labels)
            except RuntimeCommandError as exc:
                raise ImageFailure(
                    f"Image build for {spec.ref} failed: {exc}",
                    diagnostics=exc.output,
                ) from exc

        return {
            "image_ref": spec.ref,
            "image_id": image_id,
            "artifact_address": ref.content_address,
            "labels": labels,
            "_artifact_refs": [ref.content_address],
        }

    @staticmethod
    def _select_artifact(config: PipelineConfig) -> Path:
        matches = find_artifacts(Path(config.source_dir), config.artifact_glob)
        if not matches:
            raise ImageFailure(
                f"No artifact matches {config.artifact_glob!r} under {config.source_dir}"
            )
        if len(matches) > 1:
            raise ImageFailure(
                f"Artifact selection is ambiguous: {config.artifact_glob!r} matches "
                + ", ".join(str(p) for p in matches)
            )
        if matches[0].stat().st_size == 0:
            raise ImageFailure(f"Artifact {matches[0]} is empty")
        return matches[0]
