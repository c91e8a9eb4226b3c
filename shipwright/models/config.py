"""Per-invocation pipeline configuration and run configuration models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipwright.config import Settings
from shipwright.models.images import ImageSpec
from shipwright.models.instances import PortBinding
from shipwright.models.stages import DEFAULT_STAGE_DEFINITIONS, StageDefinition


class PipelineConfig(BaseModel):
    """What to build and where to deploy it, fixed for the whole run.

    Derived from ``Settings`` plus command-line overrides via
    ``from_settings()``.
    """

    model_config = ConfigDict(frozen=True)

    # Storage
    ledger_db_path: Path = Path(".shipwright/ledger.db")
    artifact_store_path: Path = Path(".shipwright/artifacts")
    lock_dir: Path = Path(".shipwright/locks")

    # Build
    source_dir: Path = Path(".")
    build_command: list[str] = ["mvn", "-B", "package"]
    build_output_dir: str = "target"
    artifact_glob: str = "target/*.jar"
    build_timeout_seconds: float = 900.0

    # Image
    image_repository: str = "estore"
    image_tag: str = "latest"
    base_image: str = "eclipse-temurin:21"
    artifact_name: str = "estore.jar"
    entrypoint: list[str] = ["java", "-jar", "/app/estore.jar"]

    # Instance
    instance_name: str = "estore"
    host_port: int = 9090
    container_port: int = 9090
    launch_env: dict[str, str] = {}

    # Verification
    grace_period_seconds: float = 10.0
    probe_host: str = "127.0.0.1"
    liveness_path: str = "/app/"
    catalog_path: str = "/products"
    probe_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> PipelineConfig:
        """Build a config from settings; ``None`` overrides are ignored."""
        values: dict[str, Any] = {
            "ledger_db_path": settings.ledger_path,
            "artifact_store_path": settings.artifact_store_path,
            "lock_dir": settings.lock_dir,
            "source_dir": settings.source_dir,
            "build_command": settings.build_command,
            "build_output_dir": settings.build_output_dir,
            "artifact_glob": settings.artifact_glob,
            "build_timeout_seconds": settings.build_timeout_seconds,
            "image_repository": settings.image_repository,
            "image_tag": settings.image_tag,
            "base_image": settings.base_image,
            "artifact_name": settings.artifact_name,
            "entrypoint": settings.entrypoint,
            "instance_name": settings.instance_name,
            "host_port": settings.host_port,
            "container_port": settings.container_port,
            "launch_env": settings.launch_env,
            "grace_period_seconds": settings.grace_period_seconds,
            "probe_host": settings.probe_host,
            "liveness_path": settings.liveness_path,
            "catalog_path": settings.catalog_path,
            "probe_timeout_seconds": settings.probe_timeout_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def image_ref(self) -> str:
        return f"{self.image_repository}:{self.image_tag}"

    @property
    def port_binding(self) -> PortBinding:
        return PortBinding(
            host_port=self.host_port, container_port=self.container_port
        )

    def image_spec(self, labels: dict[str, str] | None = None) -> ImageSpec:
        """The immutable image definition; the container port is exposed."""
        return ImageSpec(
            repository=self.image_repository,
            tag=self.image_tag,
            base_image=self.base_image,
            artifact_name=self.artifact_name,
            entrypoint=list(self.entrypoint),
            exposed_port=self.container_port,
            labels=labels or {},
        )

    def probe_url(self, path: str) -> str:
        return f"http://{self.probe_host}:{self.host_port}{path}"


class RunConfig(BaseModel):
    """Per-run configuration, created when a run starts."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: f"sw-{uuid.uuid4().hex[:12]}")
    pipeline_config: PipelineConfig = PipelineConfig()
    stage_plan: list[StageDefinition] = Field(
        default_factory=lambda: list(DEFAULT_STAGE_DEFINITIONS)
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
