"""Stage 1 — Artifact Build.

Compiles the source tree into exactly one deployable Artifact:
    - Remove the build output directory so nothing from a previous run can
      be mistaken for this run's output.
    - Run the configured build command in the source directory.
    - Resolve the artifact glob to exactly one non-empty file.
    - Archive the file in the content-addressed store.

Any failure is a ``BuildFailure`` and stops the run before containerization;
the build output directory is removed again so a later ``image`` run cannot
pick up a partial artifact.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any

from shipwright.core.artifact_store import ContentAddressedStore
from shipwright.errors import BuildFailure, captured_text, diagnostic_tail
from shipwright.models.artifacts import Artifact
from shipwright.models.config import PipelineConfig
from shipwright.stages.base import BaseStage

logger = logging.getLogger(__name__)


def find_artifacts(source_dir: Path, pattern: str) -> list[Path]:
    """Return regular files under *source_dir* matching *pattern*, sorted."""
    return sorted(p for p in Path(source_dir).glob(pattern) if p.is_file())


class ArtifactBuildStage(BaseStage):
    """Stage 1: compile the source tree into a single Artifact."""

    stage_id = "build"
    display_name = "Artifact Build"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Build, verify and archive the Artifact.

        Reads from *run_context*:
            ``run_config``      — RunConfig with the PipelineConfig.
            ``artifact_store``  — ContentAddressedStore for archiving.
        """
        config: PipelineConfig = run_context["run_config"].pipeline_config
        store: ContentAddressedStore = run_context["artifact_store"]

        source_dir = Path(config.source_dir)
        if not source_dir.is_dir():
            raise BuildFailure(f"Source directory {source_dir} does not exist")

        output_dir = self._clean_output_dir(source_dir, config.build_output_dir)
        try:
            output = self._run_build(config, source_dir)
            artifact_path = self._resolve_artifact(source_dir, config.artifact_glob, output)
        except BuildFailure:
            # Whatever a failed build left behind must not reach the image stage.
            if output_dir is not None and output_dir.exists():
                logger.info("Discarding output of failed build %s", output_dir)
                shutil.rmtree(output_dir)
            raise

        ref = store.store_file(artifact_path, name=artifact_path.name)
        digest = ref.content_address.removeprefix("sha256:")
        artifact = Artifact(
            name=artifact_path.name,
            path=str(artifact_path),
            content_address=ref.content_address,
            size_bytes=ref.size_bytes,
            version_label=f"{artifact_path.stem}-{digest[:12]}",
        )
        logger.info(
            "Built artifact %s (%d bytes, %s)",
            artifact.path,
            artifact.size_bytes,
            artifact.version_label,
        )

        return {
            "artifact": artifact.model_dump(mode="json"),
            "build_log_tail": diagnostic_tail(output, 20),
            "_artifact_refs": [ref.content_address],
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_output_dir(source_dir: Path, output_dir: str) -> Path | None:
        if not output_dir:
            return None
        root = source_dir.resolve()
        target = (source_dir / output_dir).resolve()
        if target == root or root not in target.parents:
            raise BuildFailure(
                f"Build output dir {output_dir!r} must be a subdirectory of {source_dir}"
            )
        if target.exists():
            logger.info("Removing previous build output %s", target)
            shutil.rmtree(target)
        return target

    @staticmethod
    def _run_build(config: PipelineConfig, source_dir: Path) -> str:
        command = list(config.build_command)
        if not command:
            raise BuildFailure("No build command configured")

        logger.info("Running build: %s (cwd=%s)", " ".join(command), source_dir)
        try:
            result = subprocess.run(
                command,
                cwd=source_dir,
                capture_output=True,
                text=True,
                timeout=config.build_timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise BuildFailure(f"Build tool {command[0]!r} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise BuildFailure(
                f"Build timed out after {config.build_timeout_seconds}s",
                diagnostics=diagnostic_tail(captured_text(exc.stdout, exc.stderr)),
            ) from exc

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise BuildFailure(
                f"Build command exited with status {result.returncode}",
                diagnostics=diagnostic_tail(output),
            )
        return output

    @staticmethod
    def _resolve_artifact(source_dir: Path, pattern: str, output: str) -> Path:
        matches = find_artifacts(source_dir, pattern)
        if not matches:
            raise BuildFailure(
                f"Build succeeded but produced no artifact matching {pattern!r}",
                diagnostics=diagnostic_tail(output),
            )
        if len(matches) > 1:
            raise BuildFailure(
                f"Build produced {len(matches)} artifacts matching {pattern!r}: "
                + ", ".join(p.name for p in matches)
            )

        artifact_path = matches[0]
        if artifact_path.stat().st_size == 0:
            artifact_path.unlink()
            raise BuildFailure(
                f"Artifact {artifact_path} is empty",
                diagnostics=diagnostic_tail(output),
            )
        return artifact_path
