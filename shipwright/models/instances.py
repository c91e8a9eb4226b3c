"""Runtime Instance models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class PortBinding(BaseModel):
    """Host port to container port mapping for an Instance."""

    model_config = ConfigDict(frozen=True)

    host_port: int
    container_port: int
    host_ip: str = ""
    protocol: str = "tcp"

    def as_publish_arg(self) -> str:
        """Render as a ``docker run -p`` value."""
        prefix = f"{self.host_ip}:" if self.host_ip else ""
        return f"{prefix}{self.host_port}:{self.container_port}/{self.protocol}"


class ContainerInfo(BaseModel):
    """A named Instance as the runtime currently sees it."""

    model_config = ConfigDict(frozen=True)

    container_id: str
    name: str
    image_id: str
    image_ref: str = ""
    status: str = "unknown"  # created, running, exited, paused, dead, ...
    running: bool = False
    ports: list[PortBinding] = []
    labels: dict[str, str] = {}
