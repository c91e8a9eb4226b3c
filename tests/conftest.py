"""Shared test fixtures for Shipwright."""

from __future__ import annotations

import hashlib
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from shipwright.config import Settings
from shipwright.core.artifact_store import ContentAddressedStore
from shipwright.core.orchestrator import Orchestrator
from shipwright.core.prerequisite_graph import PrerequisiteGraph
from shipwright.core.run_ledger import RunLedger
from shipwright.core.stage_machine import StageMachine
from shipwright.models.config import PipelineConfig, RunConfig
from shipwright.models.images import ImageInfo
from shipwright.models.instances import ContainerInfo, PortBinding
from shipwright.models.stages import DEFAULT_STAGE_DEFINITIONS
from shipwright.runtime.base import (
    ContainerNotFoundError,
    ImageNotFoundError,
    PortConflictError,
    RuntimeCommandError,
)

# ---------------------------------------------------------------------------
# In-memory container runtime
# ---------------------------------------------------------------------------


class FakeRuntime:
    """A single-host container engine held in dictionaries.

    Image ids are derived from the build context, so building the same
    Artifact twice yields the same id, as a real engine's layer cache does.
    """

    def __init__(self) -> None:
        self.images: dict[str, ImageInfo] = {}
        self.containers: dict[str, ContainerInfo] = {}
        self.logs: dict[str, str] = {}
        # Host ports held by processes outside the runtime.
        self.foreign_ports: set[int] = set()
        self.build_error: str = ""
        self.crash_on_start: bool = False
        self.fail_remove_image: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.dockerfiles: list[str] = []
        self._seq = 0

    # Images ---------------------------------------------------------------

    def build_image(
        self, context_dir: Path, ref: str, *, labels: dict[str, str] | None = None
    ) -> str:
        self.calls.append(("build_image", ref))
        if self.build_error:
            raise RuntimeCommandError(
                f"build of {ref} failed", returncode=1, output=self.build_error
            )

        digest = hashlib.sha256()
        for path in sorted(Path(context_dir).iterdir()):
            digest.update(path.name.encode())
            digest.update(path.read_bytes())
        self.dockerfiles.append((Path(context_dir) / "Dockerfile").read_text())
        image_id = f"sha256:{digest.hexdigest()}"

        # The tag moves to the new image; the old one keeps its other tags.
        for other_id, info in list(self.images.items()):
            if ref in info.tags:
                self.images[other_id] = info.model_copy(
                    update={"tags": [t for t in info.tags if t != ref]}
                )
        existing = self.images.get(image_id)
        tags = [t for t in (existing.tags if existing else []) if t != ref] + [ref]
        self.images[image_id] = ImageInfo(
            image_id=image_id, tags=tags, labels=dict(labels or {}), size_bytes=1000
        )
        return image_id

    def inspect_image(self, ref: str) -> ImageInfo | None:
        for info in self.images.values():
            if info.image_id == ref or ref in info.tags:
                return info
        return None

    def list_images(self, *, label: str | None = None) -> list[ImageInfo]:
        if not label:
            return list(self.images.values())
        key, _, value = label.partition("=")
        return [
            info
            for info in self.images.values()
            if key in info.labels and (not value or info.labels[key] == value)
        ]

    def remove_image(self, image_id: str) -> None:
        self.calls.append(("remove_image", image_id))
        if image_id not in self.images:
            raise ImageNotFoundError(f"No such image: {image_id}")
        if image_id in self.fail_remove_image:
            raise RuntimeCommandError(f"cannot remove {image_id}", returncode=1)
        if any(c.image_id == image_id for c in self.containers.values()):
            raise RuntimeCommandError(
                f"conflict: unable to remove {image_id}, image is being used", returncode=1
            )
        del self.images[image_id]

    # Containers -----------------------------------------------------------

    def inspect_container(self, name: str) -> ContainerInfo | None:
        return self.containers.get(name)

    def list_containers(self, *, running_only: bool = True) -> list[ContainerInfo]:
        return [c for c in self.containers.values() if c.running or not running_only]

    def stop_container(self, name: str) -> None:
        self.calls.append(("stop_container", name))
        if name not in self.containers:
            raise ContainerNotFoundError(f"No such container: {name}")
        self.containers[name] = self.containers[name].model_copy(
            update={"running": False, "status": "exited"}
        )

    def remove_container(self, name: str) -> None:
        self.calls.append(("remove_container", name))
        if name not in self.containers:
            raise ContainerNotFoundError(f"No such container: {name}")
        if self.containers[name].running:
            raise RuntimeCommandError(f"container {name} is running", returncode=1)
        del self.containers[name]

    def run_container(
        self,
        name: str,
        image_ref: str,
        *,
        ports: list[PortBinding],
        env: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
    ) -> str:
        self.calls.append(("run_container", name))
        if name in self.containers:
            raise RuntimeCommandError(
                f'Conflict. The container name "/{name}" is already in use', returncode=125
            )
        image = self.inspect_image(image_ref)
        if image is None:
            raise ImageNotFoundError(f"Unable to find image '{image_ref}' locally")

        busy = set(self.foreign_ports)
        for container in self.containers.values():
            if container.running:
                busy.update(p.host_port for p in container.ports)
        for binding in ports:
            if binding.host_port in busy:
                raise PortConflictError(
                    f"Bind for 0.0.0.0:{binding.host_port} failed: port is already allocated",
                    returncode=125,
                    output=f"Bind for 0.0.0.0:{binding.host_port} failed: port is already allocated",
                )

        self._seq += 1
        container_id = hashlib.sha256(f"{name}-{self._seq}".encode()).hexdigest()
        running = not self.crash_on_start
        self.containers[name] = ContainerInfo(
            container_id=container_id,
            name=name,
            image_id=image.image_id,
            image_ref=image_ref,
            status="running" if running else "exited",
            running=running,
            ports=list(ports),
            labels=dict(labels or {}),
        )
        self.logs[name] = (
            "Started EstoreApplication" if running else "Error: Unable to access jarfile"
        )
        return container_id

    def container_logs(self, name: str, *, tail: int = 50) -> str:
        if name not in self.containers:
            raise ContainerNotFoundError(f"No such container: {name}")
        return self.logs.get(name, "")

    # Helpers --------------------------------------------------------------

    def instances_named(self, name: str) -> list[ContainerInfo]:
        return [c for c in self.containers.values() if c.name == name]


# ---------------------------------------------------------------------------
# Catalog service stand-in
# ---------------------------------------------------------------------------

PRODUCTS: list[dict[str, Any]] = [
    {"id": 1, "name": "Laptop", "description": "High-performance laptop", "price": 1299.99, "category": "Electronics"},
    {"id": 2, "name": "Coffee Mug", "description": "Ceramic mug", "price": 15.99, "category": "Office"},
    {"id": 3, "name": "Keyboard", "description": "Mechanical keyboard", "price": 89.99, "category": "Electronics"},
]


def catalog_handler(
    *, liveness_status: int = 200, catalog_body: bytes | None = None
) -> Callable[[httpx.Request], httpx.Response]:
    """Build an ``httpx.MockTransport`` handler for the deployed service."""
    body = catalog_body if catalog_body is not None else json.dumps(PRODUCTS).encode()

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/app/":
            return httpx.Response(liveness_status, text="<html>estore</html>")
        if request.url.path == "/products":
            return httpx.Response(
                200, content=body, headers={"content-type": "application/json"}
            )
        return httpx.Response(404)

    return _handler


def refusing_handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

BUILD_SCRIPT = """\
import pathlib
out = pathlib.Path("target")
out.mkdir(exist_ok=True)
(out / "svc.jar").write_bytes(pathlib.Path("src/App.java").read_bytes())
print("BUILD SUCCESS")
"""


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test state."""
    return tmp_path


@pytest.fixture
def source_tree(tmp_dir: Path) -> Path:
    """A source tree whose build writes exactly one ``target/svc.jar``."""
    root = tmp_dir / "src-tree"
    (root / "src").mkdir(parents=True)
    (root / "src" / "App.java").write_text("class App { }\n")
    (root / "build.py").write_text(BUILD_SCRIPT)
    return root


@pytest.fixture
def pipeline_config(tmp_dir: Path, source_tree: Path) -> PipelineConfig:
    """Config for a ``svc:1.0`` Instance named ``svc`` on port 9090."""
    state = tmp_dir / "state"
    return PipelineConfig(
        ledger_db_path=state / "ledger.db",
        artifact_store_path=state / "artifacts",
        lock_dir=state / "locks",
        source_dir=source_tree,
        build_command=[sys.executable, "build.py"],
        build_output_dir="target",
        artifact_glob="target/*.jar",
        image_repository="svc",
        image_tag="1.0",
        artifact_name="svc.jar",
        entrypoint=["java", "-jar", "/app/svc.jar"],
        instance_name="svc",
        host_port=9090,
        container_port=9090,
        grace_period_seconds=10,
    )


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def sleeps() -> list[float]:
    """Records every grace-period sleep instead of sleeping."""
    return []


@pytest.fixture
def healthy_transport() -> httpx.MockTransport:
    return httpx.MockTransport(catalog_handler())


@pytest.fixture
def healthy_client(healthy_transport: httpx.MockTransport) -> httpx.Client:
    return httpx.Client(transport=healthy_transport)


@pytest.fixture
def make_orchestrator(
    pipeline_config: PipelineConfig,
    fake_runtime: FakeRuntime,
    healthy_client: httpx.Client,
    sleeps: list[float],
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator on the fake runtime and mock HTTP."""

    def _factory(
        config: PipelineConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
        **config_overrides: Any,
    ) -> Orchestrator:
        cfg = config or pipeline_config
        if config_overrides:
            cfg = cfg.model_copy(update=config_overrides)
        return Orchestrator(
            cfg,
            settings=Settings(),
            runtime=fake_runtime,
            http_client=http_client or healthy_client,
            sleep=sleeps.append,
        )

    return _factory


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def graph() -> PrerequisiteGraph:
    """Provide a PrerequisiteGraph with the default pipeline stages."""
    return PrerequisiteGraph(DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: PrerequisiteGraph) -> StageMachine:
    """Provide a StageMachine wired to test ledger and graph."""
    return StageMachine(ledger, graph, instance_name="svc")


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "sw-test-run-001"


@pytest.fixture
def make_run_context(
    pipeline_config: PipelineConfig,
    fake_runtime: FakeRuntime,
    healthy_client: httpx.Client,
    sleeps: list[float],
) -> Callable[..., dict[str, Any]]:
    """Factory fixture: a run_context for calling a stage directly."""

    def _factory(config: PipelineConfig | None = None, **extra: Any) -> dict[str, Any]:
        cfg = config or pipeline_config
        context: dict[str, Any] = {
            "run_id": "sw-test-run-001",
            "run_config": RunConfig(run_id="sw-test-run-001", pipeline_config=cfg),
            "stage_results": {},
            "stage_states": {},
            "stage_definitions": {},
            "runtime": fake_runtime,
            "artifact_store": ContentAddressedStore(cfg.artifact_store_path),
            "http_client": healthy_client,
            "sleep": sleeps.append,
        }
        context.update(extra)
        return context

    return _factory


@pytest.fixture
def make_http_client() -> Callable[..., httpx.Client]:
    """Factory fixture: a mock-transport client for the deployed service.

    ``refuse=True`` gives a client whose every request is refused;
    other keyword arguments go to ``catalog_handler``.
    """

    def _factory(*, refuse: bool = False, **handler_kwargs: Any) -> httpx.Client:
        handler = refusing_handler if refuse else catalog_handler(**handler_kwargs)
        return httpx.Client(transport=httpx.MockTransport(handler))

    return _factory
