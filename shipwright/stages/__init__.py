"""The five pipeline stages, keyed by ``stage_id`` in pipeline order."""

from __future__ import annotations

from shipwright.stages.base import BaseStage, StagePrerequisiteError
from shipwright.stages.s1_build import ArtifactBuildStage
from shipwright.stages.s2_image import ImageBuildStage, render_dockerfile
from shipwright.stages.s3_deploy import DeployStage
from shipwright.stages.s4_verify import HealthVerifyStage
from shipwright.stages.s5_cleanup import CleanupStage

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    cls.stage_id: cls
    for cls in (
        ArtifactBuildStage,
        ImageBuildStage,
        DeployStage,
        HealthVerifyStage,
        CleanupStage,
    )
}

STAGE_ORDER: list[str] = list(STAGE_REGISTRY)


def get_stage(stage_id: str) -> BaseStage:
    """Return a fresh instance of the stage registered as *stage_id*."""
    if stage_id not in STAGE_REGISTRY:
        raise KeyError(
            f"No stage {stage_id!r}; Registered stages are {', '.join(STAGE_ORDER)}"
        )
    return STAGE_REGISTRY[stage_id]()


__all__ = [
    "ArtifactBuildStage",
    "BaseStage",
    "CleanupStage",
    "DeployStage",
    "HealthVerifyStage",
    "ImageBuildStage",
    "STAGE_ORDER",
    "STAGE_REGISTRY",
    "StagePrerequisiteError",
    "get_stage",
    "render_dockerfile",
]
