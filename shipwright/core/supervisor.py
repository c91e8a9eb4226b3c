"""Runtime Supervisor — lifecycle of one named Instance on the host.

The supervisor holds no "current instance" state.  Every operation looks the
Instance up by name against the runtime at call time.
"""

from __future__ import annotations

import logging

from shipwright.errors import DeployFailure
from shipwright.models.instances import ContainerInfo, PortBinding
from shipwright.runtime.base import (
    ContainerNotFoundError,
    ContainerRuntime,
    ImageNotFoundError,
    PortConflictError,
    RuntimeCommandError,
)

logger = logging.getLogger(__name__)

_STAGE_ID = "deploy"


class RuntimeSupervisor:
    """Stop, remove and (re)start a single named Instance.

    Parameters
    ----------
    runtime:
        The container runtime to drive.
    log_tail:
        Number of container log lines captured as failure diagnostics.
    """

    def __init__(self, runtime: ContainerRuntime, *, log_tail: int = 50) -> None:
        self._runtime = runtime
        self._log_tail = log_tail

    def lookup(self, name: str) -> ContainerInfo | None:
        """Fresh lookup of the Instance holding *name*, in any state."""
        return self._runtime.inspect_container(name)

    def retire(self, name: str) -> ContainerInfo | None:
        """Stop and remove the Instance called *name* if there is one.

        "Already stopped" and "already removed" count as success, so this is
        safe to call from a clean or half-failed prior state.  Returns the
        Instance that was retired, or ``None``.
        """
        existing = self.lookup(name)
        if existing is None:
            logger.info("No existing instance named %s", name)
            return None

        logger.info(
            "Retiring instance %s (%s, %s)", name, existing.container_id[:12], existing.status
        )
        try:
            self._runtime.stop_container(name)
        except ContainerNotFoundError:
            logger.info("Instance %s vanished before stop", name)
        try:
            self._runtime.remove_container(name)
        except ContainerNotFoundError:
            logger.info("Instance %s already removed", name)
        return existing

    def replace(
        self,
        name: str,
        image_ref: str,
        binding: PortBinding,
        *,
        env: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> tuple[ContainerInfo, ContainerInfo | None]:
        """Replace whatever holds *name* with a new Instance of *image_ref*.

        Returns ``(new_instance, retired_instance_or_None)``.

        Raises
        ------
        DeployFailure
            Missing image, port conflict, start error, or an Instance that is
            not running right after start.  A retired prior Instance stays
            stopped and removed; it is never restarted.
        """
        # Checked before the prior Instance is touched.
        if self._runtime.inspect_image(image_ref) is None:
            raise DeployFailure(
                f"Image {image_ref} not found in the local registry",
                stage_id=_STAGE_ID,
            )

        try:
            retired = self.retire(name)
        except RuntimeCommandError as exc:
            raise DeployFailure(
                f"Could not retire existing instance {name}: {exc}",
                stage_id=_STAGE_ID,
                diagnostics=exc.output,
            ) from exc

        try:
            container_id = self._runtime.run_container(
                name, image_ref, ports=[binding], env=env, labels=labels
            )
        except PortConflictError as exc:
            raise DeployFailure(
                f"Host port {binding.host_port} is already bound by another process",
                stage_id=_STAGE_ID,
                diagnostics=exc.output,
            ) from exc
        except ImageNotFoundError as exc:
            raise DeployFailure(
                f"Image {image_ref} disappeared before start",
                stage_id=_STAGE_ID,
                diagnostics=exc.output,
            ) from exc
        except RuntimeCommandError as exc:
            raise DeployFailure(
                f"Could not start instance {name}: {exc}",
                stage_id=_STAGE_ID,
                diagnostics=exc.output or self._logs(name),
            ) from exc

        started = self.lookup(name)
        if started is None or not started.running:
            status = started.status if started else "missing"
            raise DeployFailure(
                f"Instance {name} is {status} right after start",
                stage_id=_STAGE_ID,
                diagnostics=self._logs(name),
            )

        logger.info(
            "Started instance %s (%s) from %s on %s",
            name,
            (container_id or started.container_id)[:12],
            image_ref,
            binding.as_publish_arg(),
        )
        return started, retired

    def _logs(self, name: str) -> str:
        try:
            return self._runtime.container_logs(name, tail=self._log_tail)
        except RuntimeCommandError as exc:
            logger.debug("No logs for %s: %s", name, exc)
            return ""
