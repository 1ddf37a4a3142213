"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import sys
from pathlib import Path

# Insert local src directory at the beginning of sys.path
# This ensures that the local pgd package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of pgd modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("pgd"):
        del sys.modules[module_name]

import itertools  # noqa: E402
from collections.abc import Iterator  # noqa: E402

import pytest  # noqa: E402

from pgd.core.errors import ContainerNotFoundError, ContainerRuntimeError  # noqa: E402
from pgd.runtime.base import (  # noqa: E402
    ContainerDescriptor,
    ContainerRuntime,
    ContainerStatus,
    LogLine,
    LogStream,
    PortBinding,
    VolumeRef,
)


class FakeContainer:
    def __init__(
        self,
        container_id: str,
        name: str,
        image_tag: str,
        host_port: int | None,
        volume: VolumeRef | None,
        env: dict[str, str],
        labels: dict[str, str],
    ) -> None:
        self.id = container_id
        self.name = name
        self.image_tag = image_tag
        self.host_port = host_port
        self.volume = volume
        self.env = env
        self.labels = labels
        self.status = ContainerStatus.CREATED
        self.logs: list[LogLine] = [
            LogLine("stdout", "PostgreSQL init process complete; ready for start up."),
            LogLine("stderr", "LOG:  database system is ready to accept connections"),
        ]

    def describe(self) -> ContainerDescriptor:
        return ContainerDescriptor(
            id=self.id,
            name=self.name,
            image_tag=self.image_tag,
            status=self.status,
            bound_host_port=self.host_port,
            volume_ref=self.volume.name if self.volume else None,
            labels=dict(self.labels),
        )


class FakeRuntime(ContainerRuntime):
    """In-memory ContainerRuntime that records every call."""

    def __init__(self) -> None:
        self.containers: dict[str, FakeContainer] = {}
        self.volumes: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.available = True
        # When set, started containers exit immediately (e.g. bad password env)
        self.exit_on_start = False
        self.closed_streams = 0
        self._ids = itertools.count(1)

    # -- test helpers ----------------------------------------------------------

    def add_container(
        self,
        name: str,
        image_tag: str = "postgres:16",
        status: ContainerStatus = ContainerStatus.RUNNING,
        host_port: int | None = 5432,
    ) -> FakeContainer:
        container = FakeContainer(f"{next(self._ids):012x}", name, image_tag, host_port, None, {}, {})
        container.status = status
        self.containers[name] = container
        return container

    def mutations(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] not in ("inspect", "ping", "stream_logs")]

    def _by_id(self, container_id: str) -> FakeContainer:
        for container in self.containers.values():
            if container.id == container_id:
                return container
        raise ContainerNotFoundError.for_instance(container_id)

    def close(self) -> None:
        pass

    # -- ContainerRuntime ------------------------------------------------------

    def ping(self) -> None:
        self.calls.append(("ping", ""))
        if not self.available:
            raise ContainerRuntimeError.unavailable("fake://", "daemon not running")

    def create(
        self,
        name: str,
        image_tag: str,
        env: dict[str, str],
        port_binding: PortBinding,
        volume_ref: VolumeRef,
        labels: dict[str, str] | None = None,
    ) -> str:
        self.calls.append(("create", name))
        if name in self.containers:
            raise ContainerRuntimeError.operation_failed("create", name, "already exists")
        container = FakeContainer(
            f"{next(self._ids):012x}",
            name,
            image_tag,
            port_binding.host_port,
            volume_ref,
            dict(env),
            dict(labels or {}),
        )
        self.containers[name] = container
        self.volumes.add(volume_ref.name)
        return container.id

    def start(self, container_id: str) -> None:
        self.calls.append(("start", container_id))
        container = self._by_id(container_id)
        container.status = ContainerStatus.STOPPED if self.exit_on_start else ContainerStatus.RUNNING

    def stop(self, container_id: str) -> None:
        self.calls.append(("stop", container_id))
        container = self._by_id(container_id)
        if container.status is ContainerStatus.RUNNING:
            container.status = ContainerStatus.STOPPED

    def remove(self, container_id: str) -> None:
        self.calls.append(("remove", container_id))
        container = self._by_id(container_id)
        if container.status is ContainerStatus.RUNNING:
            raise ContainerRuntimeError.operation_failed("remove", container_id, "container is running")
        del self.containers[container.name]

    def remove_volume(self, volume_ref: VolumeRef) -> None:
        self.calls.append(("remove_volume", volume_ref.name))
        if any(c.volume and c.volume.name == volume_ref.name for c in self.containers.values()):
            raise ContainerRuntimeError.operation_failed("remove volume", volume_ref.name, "in use")
        self.volumes.discard(volume_ref.name)

    def inspect(self, name: str) -> ContainerDescriptor | None:
        self.calls.append(("inspect", name))
        container = self.containers.get(name)
        return container.describe() if container is not None else None

    def stream_logs(self, container_id: str, *, follow: bool) -> LogStream:
        self.calls.append(("stream_logs", container_id))
        container = self._by_id(container_id)

        def lines() -> Iterator[LogLine]:
            yield from list(container.logs)
            while follow:
                yield LogLine("stdout", "LOG:  checkpoint complete")

        def on_close() -> None:
            self.closed_streams += 1

        return LogStream(lines(), on_close=on_close)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root.resolve()
