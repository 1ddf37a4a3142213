"""Docker Engine API runtime.

Talks to the local daemon over its HTTP API (unix socket or TCP) with
httpx. Image pulls happen inside ``create`` so callers never deal with
image management.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from typing import Any

import httpx
import structlog

from pgd.config.models import DockerConfig
from pgd.core.errors import ContainerNotFoundError, ContainerRuntimeError
from pgd.runtime.base import (
    ContainerDescriptor,
    ContainerRuntime,
    ContainerStatus,
    LogLine,
    LogStream,
    PortBinding,
    VolumeRef,
    split_image_tag,
)

log = structlog.get_logger()

_STATUS_MAP = {
    "created": ContainerStatus.CREATED,
    "running": ContainerStatus.RUNNING,
    "restarting": ContainerStatus.RUNNING,
    "paused": ContainerStatus.RUNNING,
    "exited": ContainerStatus.STOPPED,
    "dead": ContainerStatus.STOPPED,
    "removing": ContainerStatus.STOPPED,
}

_STREAM_NAMES = {0: "stdin", 1: "stdout", 2: "stderr"}
_FRAME_HEADER = 8


def _create_client(host: str, timeout: float, transport: httpx.BaseTransport | None) -> httpx.Client:
    if transport is not None:
        return httpx.Client(transport=transport, base_url="http://docker", timeout=timeout)
    if host.startswith("unix://"):
        socket_path = host.removeprefix("unix://")
        return httpx.Client(
            transport=httpx.HTTPTransport(uds=socket_path),
            base_url="http://localhost",
            timeout=timeout,
        )
    base_url = host
    if base_url.startswith("tcp://"):
        base_url = base_url.replace("tcp://", "http://", 1)
    return httpx.Client(base_url=base_url, timeout=timeout)


def _error_reason(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("message") or resp.text)
    except (json.JSONDecodeError, AttributeError, httpx.ResponseNotRead):
        return f"HTTP {resp.status_code}"


class LogDemuxer:
    """Splits Docker's multiplexed log stream into lines.

    Each frame is an 8 byte header (stream type, 3 zero bytes, big-endian
    payload size) followed by the payload. Partial lines are buffered per
    stream until their newline arrives.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._partial: dict[int, bytes] = {}

    def feed(self, chunk: bytes) -> list[LogLine]:
        self._buffer += chunk
        lines: list[LogLine] = []
        while len(self._buffer) >= _FRAME_HEADER:
            stream_type = self._buffer[0]
            size = int.from_bytes(self._buffer[4:8], "big")
            if len(self._buffer) < _FRAME_HEADER + size:
                break
            payload = self._buffer[_FRAME_HEADER : _FRAME_HEADER + size]
            self._buffer = self._buffer[_FRAME_HEADER + size :]
            lines.extend(self._split(stream_type, payload))
        return lines

    def flush(self) -> list[LogLine]:
        lines = [
            LogLine(stream=_STREAM_NAMES.get(t, "stdout"), text=rest.decode("utf-8", errors="replace"))
            for t, rest in self._partial.items()
            if rest
        ]
        self._partial.clear()
        return lines

    def _split(self, stream_type: int, payload: bytes) -> Iterator[LogLine]:
        data = self._partial.pop(stream_type, b"") + payload
        *complete, rest = data.split(b"\n")
        if rest:
            self._partial[stream_type] = rest
        name = _STREAM_NAMES.get(stream_type, "stdout")
        for raw in complete:
            yield LogLine(stream=name, text=raw.decode("utf-8", errors="replace").rstrip("\r"))


class DockerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the Docker Engine API."""

    def __init__(self, config: DockerConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._client = _create_client(config.host, config.api_timeout_sec, transport)

    def close(self) -> None:
        self._client.close()

    # -- plumbing --------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ContainerRuntimeError.unavailable(self._config.host, f"timed out: {e}") from e
        except httpx.TransportError as e:
            raise ContainerRuntimeError.unavailable(self._config.host, str(e)) from e

    def _fail(self, operation: str, target: str, resp: httpx.Response) -> ContainerRuntimeError:
        reason = _error_reason(resp)
        log.debug("runtime.request_failed", operation=operation, target=target, status=resp.status_code)
        return ContainerRuntimeError.operation_failed(operation, target, reason)

    # -- images and volumes ----------------------------------------------------

    def _image_exists(self, image_tag: str) -> bool:
        resp = self._request("GET", f"/images/{image_tag}/json")
        if resp.status_code == 404:
            return False
        if resp.status_code != 200:
            raise self._fail("inspect image", image_tag, resp)
        return True

    def _pull(self, image_tag: str) -> None:
        image, tag = split_image_tag(image_tag)
        log.info("runtime.pull", image=image, tag=tag)
        try:
            with self._client.stream(
                "POST",
                "/images/create",
                params={"fromImage": image, "tag": tag},
                timeout=self._config.pull_timeout_sec,
            ) as resp:
                if resp.status_code != 200:
                    resp.read()
                    raise self._fail("pull", image_tag, resp)
                # Pull errors arrive inside a 200 response as JSON lines
                for line in resp.iter_lines():
                    if not line.strip():
                        continue
                    event = json.loads(line)
                    if "error" in event:
                        raise ContainerRuntimeError.operation_failed("pull", image_tag, event["error"])
        except httpx.TransportError as e:
            raise ContainerRuntimeError.unavailable(self._config.host, str(e)) from e
        log.info("runtime.pulled", image=image_tag)

    def _ensure_image(self, image_tag: str) -> None:
        if not self._image_exists(image_tag):
            self._pull(image_tag)

    def _ensure_volume(self, volume_ref: VolumeRef, labels: dict[str, str]) -> None:
        resp = self._request("POST", "/volumes/create", json={"Name": volume_ref.name, "Labels": labels})
        if resp.status_code not in (200, 201):
            raise self._fail("create volume", volume_ref.name, resp)

    # -- ContainerRuntime ------------------------------------------------------

    def ping(self) -> None:
        resp = self._request("GET", "/_ping")
        if resp.status_code != 200:
            raise ContainerRuntimeError.unavailable(self._config.host, _error_reason(resp))

    def create(
        self,
        name: str,
        image_tag: str,
        env: dict[str, str],
        port_binding: PortBinding,
        volume_ref: VolumeRef,
        labels: dict[str, str] | None = None,
    ) -> str:
        labels = labels or {}
        self._ensure_image(image_tag)
        self._ensure_volume(volume_ref, labels)

        container_port = f"{port_binding.container_port}/tcp"
        body = {
            "Image": image_tag,
            "Env": [f"{k}={v}" for k, v in env.items()],
            "Labels": labels,
            "ExposedPorts": {container_port: {}},
            "HostConfig": {
                "PortBindings": {
                    container_port: [
                        {"HostIp": port_binding.host_ip, "HostPort": str(port_binding.host_port)}
                    ]
                },
                "Mounts": [
                    {"Type": "volume", "Source": volume_ref.name, "Target": volume_ref.mount_path}
                ],
            },
        }
        resp = self._request("POST", "/containers/create", params={"name": name}, json=body)
        if resp.status_code == 409:
            raise ContainerRuntimeError.operation_failed(
                "create", name, "a container with this name already exists"
            )
        if resp.status_code != 201:
            raise self._fail("create", name, resp)

        container_id = str(resp.json()["Id"])
        log.info("runtime.created", name=name, container_id=container_id[:12], image=image_tag)
        return container_id

    def start(self, container_id: str) -> None:
        resp = self._request("POST", f"/containers/{container_id}/start")
        if resp.status_code == 404:
            raise ContainerNotFoundError.for_instance(container_id)
        # 304: already running
        if resp.status_code not in (204, 304):
            raise self._fail("start", container_id, resp)
        log.info("runtime.started", container_id=container_id[:12])

    def stop(self, container_id: str) -> None:
        grace = self._config.stop_timeout_sec
        resp = self._request(
            "POST",
            f"/containers/{container_id}/stop",
            params={"t": str(grace)},
            timeout=grace + self._config.api_timeout_sec,
        )
        if resp.status_code == 404:
            raise ContainerNotFoundError.for_instance(container_id)
        # 304: already stopped
        if resp.status_code not in (204, 304):
            raise self._fail("stop", container_id, resp)
        log.info("runtime.stopped", container_id=container_id[:12])

    def remove(self, container_id: str) -> None:
        resp = self._request("DELETE", f"/containers/{container_id}", params={"v": "false"})
        if resp.status_code == 404:
            raise ContainerNotFoundError.for_instance(container_id)
        if resp.status_code != 204:
            raise self._fail("remove", container_id, resp)
        log.info("runtime.removed", container_id=container_id[:12])

    def remove_volume(self, volume_ref: VolumeRef) -> None:
        resp = self._request("DELETE", f"/volumes/{volume_ref.name}")
        if resp.status_code == 404:
            log.debug("runtime.volume_absent", volume=volume_ref.name)
            return
        if resp.status_code == 409:
            raise ContainerRuntimeError.operation_failed(
                "remove volume", volume_ref.name, "volume is in use by a container"
            )
        if resp.status_code != 204:
            raise self._fail("remove volume", volume_ref.name, resp)
        log.info("runtime.volume_removed", volume=volume_ref.name)

    def inspect(self, name: str) -> ContainerDescriptor | None:
        resp = self._request("GET", f"/containers/{name}/json")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise self._fail("inspect", name, resp)
        return descriptor_from_inspect(resp.json())

    def stream_logs(self, container_id: str, *, follow: bool) -> LogStream:
        request = self._client.build_request(
            "GET",
            f"/containers/{container_id}/logs",
            params={"stdout": "1", "stderr": "1", "follow": "1" if follow else "0", "tail": "all"},
            # A followed stream stays open for as long as the caller reads it
            timeout=None if follow else self._config.api_timeout_sec,
        )
        try:
            resp = self._client.send(request, stream=True)
        except httpx.TransportError as e:
            raise ContainerRuntimeError.unavailable(self._config.host, str(e)) from e

        if resp.status_code != 200:
            resp.read()
            resp.close()
            if resp.status_code == 404:
                raise ContainerNotFoundError.for_instance(container_id)
            raise self._fail("read logs of", container_id, resp)

        return LogStream(_demux(resp.iter_bytes()), on_close=resp.close)


def _demux(chunks: Iterable[bytes]) -> Iterator[LogLine]:
    demuxer = LogDemuxer()
    for chunk in chunks:
        yield from demuxer.feed(chunk)
    yield from demuxer.flush()


def _host_port(data: dict[str, Any]) -> int | None:
    for ports in (
        (data.get("NetworkSettings") or {}).get("Ports"),
        (data.get("HostConfig") or {}).get("PortBindings"),
    ):
        for binding in (ports or {}).get("5432/tcp") or []:
            host_port = binding.get("HostPort")
            if host_port:
                return int(host_port)
    return None


def descriptor_from_inspect(data: dict[str, Any]) -> ContainerDescriptor:
    """Fold a ``GET /containers/{id}/json`` payload into a descriptor."""
    state = (data.get("State") or {}).get("Status", "")
    config = data.get("Config") or {}
    volume = next(
        (m.get("Name") for m in data.get("Mounts") or [] if m.get("Type") == "volume"),
        None,
    )
    return ContainerDescriptor(
        id=str(data["Id"]),
        name=str(data.get("Name", "")).lstrip("/"),
        image_tag=str(config.get("Image", "")),
        status=_STATUS_MAP.get(state, ContainerStatus.STOPPED),
        bound_host_port=_host_port(data),
        volume_ref=volume,
        labels=dict(config.get("Labels") or {}),
    )
