"""Container runtime boundary."""

from pgd.runtime.base import (
    ContainerDescriptor,
    ContainerRuntime,
    ContainerStatus,
    LogLine,
    LogStream,
    PortBinding,
    VolumeRef,
)
from pgd.runtime.docker import DockerRuntime

__all__ = [
    "ContainerDescriptor",
    "ContainerRuntime",
    "ContainerStatus",
    "DockerRuntime",
    "LogLine",
    "LogStream",
    "PortBinding",
    "VolumeRef",
]
