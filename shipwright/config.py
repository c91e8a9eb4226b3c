"""Environment-driven settings for Shipwright.

Reads ``SHIPWRIGHT_*`` environment variables or a ``.env`` file in the
working directory.  Every deploy parameter has a default matching the
estore catalog service, so ``shipwright run`` works with no flags at all.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPWRIGHT_INSTANCE_NAME=svc
        export SHIPWRIGHT_IMAGE_TAG=1.0
        export SHIPWRIGHT_GRACE_PERIOD_SECONDS=5
        export SHIPWRIGHT_LAUNCH_ENV='{"SPRING_PROFILES_ACTIVE": "prod"}'

    List and dict fields are parsed from JSON.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPWRIGHT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Local state; unset paths live under state_dir
    state_dir: Path = Path(".shipwright")
    ledger_path: Path | None = None
    artifact_store_path: Path | None = None
    lock_dir: Path | None = None

    # Container runtime
    docker_binary: str = "docker"
    command_timeout_seconds: float = 600.0

    # Instance
    instance_name: str = "estore"
    host_port: int = 9090
    container_port: int = 9090
    launch_env: dict[str, str] = {}

    # Image
    image_repository: str = "estore"
    image_tag: str = "latest"
    base_image: str = "eclipse-temurin:21"
    artifact_name: str = "estore.jar"
    entrypoint: list[str] = ["java", "-jar", "/app/estore.jar"]

    # Build
    source_dir: Path = Path(".")
    build_command: list[str] = ["mvn", "-B", "package"]
    build_output_dir: str = "target"
    artifact_glob: str = "target/*.jar"
    build_timeout_seconds: float = 900.0

    # Verification
    grace_period_seconds: float = 10.0
    probe_host: str = "127.0.0.1"
    liveness_path: str = "/app/"
    catalog_path: str = "/products"
    probe_timeout_seconds: float = 5.0

    @model_validator(mode="after")
    def _derive_state_paths(self) -> Settings:
        if self.ledger_path is None:
            self.ledger_path = self.state_dir / "ledger.db"
        if self.artifact_store_path is None:
            self.artifact_store_path = self.state_dir / "artifacts"
        if self.lock_dir is None:
            self.lock_dir = self.state_dir / "locks"
        return self
