"""Shipwright data models — all Pydantic v2, all frozen (immutable)."""

from shipwright.models.artifacts import Artifact, ArtifactRef
from shipwright.models.catalog import Product, ProductList
from shipwright.models.config import PipelineConfig, RunConfig
from shipwright.models.images import ImageInfo, ImageSpec
from shipwright.models.instances import ContainerInfo, PortBinding
from shipwright.models.ledger import LedgerEntry
from shipwright.models.reports import (
    DeploymentRecord,
    PipelineReport,
    ProbeResult,
    StageWarning,
)
from shipwright.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    PIPELINE_STAGE_ID,
    VALID_RUN_TRANSITIONS,
    VALID_TRANSITIONS,
    RunState,
    StageDefinition,
    StageState,
    plan_for,
)

__all__ = [
    # artifacts
    "Artifact",
    "ArtifactRef",
    # catalog
    "Product",
    "ProductList",
    # config
    "PipelineConfig",
    "RunConfig",
    # images / instances
    "ImageInfo",
    "ImageSpec",
    "ContainerInfo",
    "PortBinding",
    # ledger
    "LedgerEntry",
    # reports
    "DeploymentRecord",
    "PipelineReport",
    "ProbeResult",
    "StageWarning",
    # stages
    "DEFAULT_STAGE_DEFINITIONS",
    "PIPELINE_STAGE_ID",
    "VALID_RUN_TRANSITIONS",
    "VALID_TRANSITIONS",
    "RunState",
    "StageDefinition",
    "StageState",
    "plan_for",
]
