"""Container runtime protocol and its error types.

``ContainerRuntime`` is the seam between the pipeline and the host's
container engine.  ``DockerCliRuntime`` drives the ``docker`` CLI; tests use
an in-memory implementation.  Any object with these methods satisfies the
protocol.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from shipwright.models.images import ImageInfo
from shipwright.models.instances import ContainerInfo, PortBinding


class RuntimeCommandError(RuntimeError):
    """A runtime operation failed.

    ``output`` carries whatever the engine printed, for diagnostics.
    """

    def __init__(self, message: str, *, returncode: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class ContainerNotFoundError(RuntimeCommandError):
    """No container with the given name or id exists."""


class ImageNotFoundError(RuntimeCommandError):
    """The image reference does not resolve in the local registry."""


class PortConflictError(RuntimeCommandError):
    """The host port is already bound by another process or container."""


@runtime_checkable
class ContainerRuntime(Protocol):
    """Operations the pipeline needs from a single-host container engine."""

    def build_image(
        self, context_dir: Path, ref: str, *, labels: dict[str, str] | None = None
    ) -> str:
        """Build ``context_dir`` into *ref*, replacing any image with that tag.

        Returns the new image id.
        """
        ...

    def inspect_image(self, ref: str) -> ImageInfo | None:
        """Return the image for a ref or id, or ``None`` if absent."""
        ...

    def list_images(self, *, label: str | None = None) -> list[ImageInfo]:
        """List local images, optionally only those carrying ``label`` (``key`` or ``key=value``)."""
        ...

    def remove_image(self, image_id: str) -> None:
        ...

    def inspect_container(self, name: str) -> ContainerInfo | None:
        """Return the container with this name in any state, or ``None``."""
        ...

    def list_containers(self, *, running_only: bool = True) -> list[ContainerInfo]:
        ...

    def stop_container(self, name: str) -> None:
        """Stop a container.  Stopping an already stopped container succeeds."""
        ...

    def remove_container(self, name: str) -> None:
        ...

    def run_container(
        self,
        name: str,
        image_ref: str,
        *,
        ports: list[PortBinding],
        env: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Start a detached container and return its id."""
        ...

    def container_logs(self, name: str, *, tail: int = 50) -> str:
        ...
