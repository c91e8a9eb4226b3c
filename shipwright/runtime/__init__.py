"""Container runtime adapters.

``ContainerRuntime`` is the protocol every stage talks to;
``DockerCliRuntime`` is the production implementation.
"""

from shipwright.runtime.base import (
    ContainerNotFoundError,
    ContainerRuntime,
    ImageNotFoundError,
    PortConflictError,
    RuntimeCommandError,
)
from shipwright.runtime.docker_cli import DockerCliRuntime

__all__ = [
    "ContainerRuntime",
    "DockerCliRuntime",
    "RuntimeCommandError",
    "ContainerNotFoundError",
    "ImageNotFoundError",
    "PortConflictError",
]
