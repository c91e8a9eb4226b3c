"""``ContainerRuntime`` backed by the ``docker`` command-line client.

Every call shells out with ``subprocess.run``, captures output, and turns a
non-zero exit into a ``RuntimeCommandError`` subclass chosen from the
engine's error text.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from shipwright.errors import captured_text
from shipwright.models.images import ImageInfo
from shipwright.models.instances import ContainerInfo, PortBinding
from shipwright.runtime.base import (
    ContainerNotFoundError,
    ImageNotFoundError,
    PortConflictError,
    RuntimeCommandError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CONTAINER = ("no such container",)
_NOT_FOUND_IMAGE = (
    "no such image",
    "unable to find image",
    "pull access denied",
    "repository does not exist",
)
_PORT_CONFLICT = (
    "port is already allocated",
    "address already in use",
    "ports are not available",
)


def classify_failure(command: list[str], returncode: int, output: str) -> RuntimeCommandError:
    """Map a failed docker invocation to the most specific error type."""
    text = output.lower()
    message = f"`{' '.join(command)}` exited with {returncode}: {output.strip()[-500:]}"
    if any(marker in text for marker in _PORT_CONFLICT):
        cls: type[RuntimeCommandError] = PortConflictError
    elif any(marker in text for marker in _NOT_FOUND_CONTAINER):
        cls = ContainerNotFoundError
    elif any(marker in text for marker in _NOT_FOUND_IMAGE):
        cls = ImageNotFoundError
    else:
        cls = RuntimeCommandError
    return cls(message, returncode=returncode, output=output)


class DockerCliRuntime:
    """Drive the local Docker engine through its CLI.

    Parameters
    ----------
    binary:
        Name or path of the docker client.
    timeout:
        Seconds before any single docker invocation is abandoned.
    """

    def __init__(self, binary: str = "docker", *, timeout: float = 600.0) -> None:
        self._binary = binary
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        command = [self._binary, *args]
        logger.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            raise RuntimeCommandError(
                f"Container runtime {self._binary!r} not found on PATH"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RuntimeCommandError(
                f"`{' '.join(command)}` timed out after {self._timeout}s",
                output=captured_text(exc.stdout, exc.stderr),
            ) from exc

        if result.returncode != 0:
            raise classify_failure(
                command, result.returncode, (result.stderr or "") + (result.stdout or "")
            )
        return result

    @staticmethod
    def _json_list(stdout: str) -> list[dict[str, Any]]:
        data = json.loads(stdout or "[]")
        return data if isinstance(data, list) else [data]

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def build_image(
        self, context_dir: Path, ref: str, *, labels: dict[str, str] | None = None
    ) -> str:
        args = ["build", "--quiet", "--tag", ref]
        for key, value in sorted((labels or {}).items()):
            args += ["--label", f"{key}={value}"]
        args.append(str(context_dir))
        result = self._run(*args)
        lines = result.stdout.strip().splitlines()
        image_id = lines[-1].strip() if lines else ""
        logger.info("Built image %s (%s)", ref, image_id[:19])
        return image_id

    def inspect_image(self, ref: str) -> ImageInfo | None:
        try:
            result = self._run("image", "inspect", ref)
        except ImageNotFoundError:
            return None
        records = self._json_list(result.stdout)
        return _image_from_inspect(records[0]) if records else None

    def list_images(self, *, label: str | None = None) -> list[ImageInfo]:
        args = ["image", "ls", "--no-trunc", "--format", "{{.ID}}"]
        if label:
            args += ["--filter", f"label={label}"]
        ids = list(dict.fromkeys(line.strip() for line in self._run(*args).stdout.splitlines() if line.strip()))
        if not ids:
            return []
        result = self._run("image", "inspect", *ids)
        return [_image_from_inspect(record) for record in self._json_list(result.stdout)]

    def remove_image(self, image_id: str) -> None:
        self._run("image", "rm", image_id)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def inspect_container(self, name: str) -> ContainerInfo | None:
        try:
            result = self._run("container", "inspect", name)
        except ContainerNotFoundError:
            return None
        records = self._json_list(result.stdout)
        return _container_from_inspect(records[0]) if records else None

    def list_containers(self, *, running_only: bool = True) -> list[ContainerInfo]:
        args = ["container", "ls", "--no-trunc", "--format", "{{.ID}}"]
        if not running_only:
            args.insert(2, "--all")
        ids = [line.strip() for line in self._run(*args).stdout.splitlines() if line.strip()]
        if not ids:
            return []
        result = self._run("container", "inspect", *ids)
        return [_container_from_inspect(record) for record in self._json_list(result.stdout)]

    def stop_container(self, name: str) -> None:
        self._run("container", "stop", name)

    def remove_container(self, name: str) -> None:
        self._run("container", "rm", name)

    def run_container(
        self,
        name: str,
        image_ref: str,
        *,
        ports: list[PortBinding],
        env: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> str:
        # --pull never: a missing image is a deploy error, not a registry fetch.
        args = ["container", "run", "--detach", "--pull", "never", "--name", name]
        for binding in ports:
            args += ["--publish", binding.as_publish_arg()]
        for key, value in sorted((env or {}).items()):
            args += ["--env", f"{key}={value}"]
        for key, value in sorted((labels or {}).items()):
            args += ["--label", f"{key}={value}"]
        args.append(image_ref)
        result = self._run(*args)
        return result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""

    def container_logs(self, name: str, *, tail: int = 50) -> str:
        result = self._run("container", "logs", "--tail", str(tail), name)
        return (result.stdout or "") + (result.stderr or "")


# ---------------------------------------------------------------------------
# Inspect parsing
# ---------------------------------------------------------------------------


def _image_from_inspect(record: dict[str, Any]) -> ImageInfo:
    config = record.get("Config") or {}
    return ImageInfo(
        image_id=record.get("Id", ""),
        tags=list(record.get("RepoTags") or []),
        labels=dict(config.get("Labels") or {}),
        size_bytes=int(record.get("Size") or 0),
    )


def _container_from_inspect(record: dict[str, Any]) -> ContainerInfo:
    config = record.get("Config") or {}
    state = record.get("State") or {}
    host_config = record.get("HostConfig") or {}

    ports: list[PortBinding] = []
    for container_spec, bindings in sorted((host_config.get("PortBindings") or {}).items()):
        container_port, _, protocol = container_spec.partition("/")
        for binding in bindings or []:
            host_port = binding.get("HostPort") or ""
            if not host_port.isdigit():
                continue
            ports.append(
                PortBinding(
                    host_port=int(host_port),
                    container_port=int(container_port),
                    host_ip=binding.get("HostIp") or "",
                    protocol=protocol or "tcp",
                )
            )

    return ContainerInfo(
        container_id=record.get("Id", ""),
        name=(record.get("Name") or "").lstrip("/"),
        image_id=record.get("Image", ""),
        image_ref=config.get("Image", ""),
        status=state.get("Status", "unknown"),
        running=bool(state.get("Running", False)),
        ports=ports,
        labels=dict(config.get("Labels") or {}),
    )
