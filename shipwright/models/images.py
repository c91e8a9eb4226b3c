"""Container image models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# Labels stamped onto every image Shipwright builds.  Cleanup uses them to
# find superseded images and the artifact each one wraps.
REPOSITORY_LABEL = "io.shipwright.repository"
ARTIFACT_LABEL = "io.shipwright.artifact"
VERSION_LABEL = "io.shipwright.version"


class ImageSpec(BaseModel):
    """Everything baked into an image at build time.

    The entrypoint is fixed here; per-run parameters are passed when the
    Instance starts.  ``exposed_port`` is metadata only and binds nothing.
    """

    model_config = ConfigDict(frozen=True)

    repository: str
    tag: str
    base_image: str
    workdir: str = "/app"
    artifact_name: str
    entrypoint: list[str]
    exposed_port: int
    labels: dict[str, str] = {}

    @property
    def ref(self) -> str:
        return f"{self.repository}:{self.tag}"


class ImageInfo(BaseModel):
    """An image as reported by the container runtime's local registry."""

    model_config = ConfigDict(frozen=True)

    image_id: str
    tags: list[str] = []
    labels: dict[str, str] = {}
    size_bytes: int = 0

    @property
    def artifact_address(self) -> str:
        """Content address of the wrapped artifact, or ``""`` if unlabelled."""
        return self.labels.get(ARTIFACT_LABEL, "")
