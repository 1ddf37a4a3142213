"""Container runtime interface.

The lifecycle controller only talks to a ``ContainerRuntime``. The Docker
implementation lives in docker.py; tests use an in-memory fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from types import TracebackType

POSTGRES_CONTAINER_PORT = 5432


def split_image_tag(image_tag: str) -> tuple[str, str]:
    """``postgres:16`` -> (``postgres``, ``16``); defaults the tag to latest."""
    image, sep, tag = image_tag.rpartition(":")
    if not sep or "/" in tag:
        return image_tag, "latest"
    return image, tag


class ContainerStatus(StrEnum):
    """Observed container status, collapsed from the runtime's own states."""

    ABSENT = "absent"
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class PortBinding:
    host_port: int
    host_ip: str = "127.0.0.1"
    container_port: int = POSTGRES_CONTAINER_PORT


@dataclass(frozen=True, slots=True)
class VolumeRef:
    name: str
    mount_path: str


@dataclass(frozen=True, slots=True)
class ContainerDescriptor:
    """One observation of a container, as returned by ``inspect()``."""

    id: str
    name: str
    image_tag: str
    status: ContainerStatus
    bound_host_port: int | None = None
    volume_ref: str | None = None
    labels: dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class LogLine:
    stream: str  # "stdout" or "stderr"
    text: str


class LogStream:
    """Lazy, cancellable sequence of log lines.

    Finite when created without follow, otherwise runs until ``close()``
    is called (or the ``with`` block exits). Closing releases the
    underlying connection.
    """

    def __init__(self, lines: Iterator[LogLine], on_close: Callable[[], None] | None = None) -> None:
        self._lines = lines
        self._on_close = on_close
        self._closed = False

    def __iter__(self) -> Iterator[LogLine]:
        return self

    def __next__(self) -> LogLine:
        if self._closed:
            raise StopIteration
        return next(self._lines)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._lines, "close", None)
        if close is not None:
            close()
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> LogStream:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ContainerRuntime(ABC):
    """Interface for a single local container runtime.

    Implementations: DockerRuntime
    """

    @abstractmethod
    def ping(self) -> None:
        """Raise ContainerRuntimeError if the runtime cannot be reached."""
        ...

    @abstractmethod
    def create(
        self,
        name: str,
        image_tag: str,
        env: dict[str, str],
        port_binding: PortBinding,
        volume_ref: VolumeRef,
        labels: dict[str, str] | None = None,
    ) -> str:
        """Create (but do not start) a container. Returns the container id."""
        ...

    @abstractmethod
    def start(self, container_id: str) -> None: ...

    @abstractmethod
    def stop(self, container_id: str) -> None: ...

    @abstractmethod
    def remove(self, container_id: str) -> None: ...

    @abstractmethod
    def remove_volume(self, volume_ref: VolumeRef) -> None: ...

    @abstractmethod
    def inspect(self, name: str) -> ContainerDescriptor | None:
        """Observe a container by name or id; None if it does not exist."""
        ...

    @abstractmethod
    def stream_logs(self, container_id: str, *, follow: bool) -> LogStream: ...
