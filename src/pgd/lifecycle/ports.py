"""Host port allocation.

A port is handed out only if no other known project claims it and a bind
probe on the host succeeds. The allocator holds no state of its own: the
lease set is reloaded on every call, and nothing is persisted until the
caller writes the returned lease into the project config.
"""

from __future__ import annotations

import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog

from pgd.config.models import PortsConfig
from pgd.core.errors import PortUnavailableError

log = structlog.get_logger()

LeaseSource = Callable[[Path | None], set[int]]
BindProbe = Callable[[str, int], bool]


@dataclass(frozen=True, slots=True)
class PortLease:
    port: int
    bound_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def can_bind(host: str, port: int) -> bool:
    """Try to bind ``host:port`` and release it immediately."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    """Finds a free host port that no other project has claimed."""

    def __init__(
        self,
        leased_ports: LeaseSource,
        config: PortsConfig | None = None,
        probe: BindProbe = can_bind,
    ) -> None:
        self._leased_ports = leased_ports
        self._config = config or PortsConfig()
        self._probe = probe

    def _candidates(self, start: int) -> range:
        end = min(start + self._config.search_range, 65536)
        return range(start, end)

    def allocate(
        self,
        preferred: int | None = None,
        *,
        owner: Path | None = None,
        also_exclude: frozenset[int] = frozenset(),
    ) -> PortLease:
        """Return a lease on the first acceptable port from ``preferred`` (or the default start).

        Ports leased by ``owner`` itself are not counted as taken.

        Raises:
            PortUnavailableError: Every port in the scanned range is leased or busy.
        """
        start = preferred if preferred is not None else self._config.start
        leased = self._leased_ports(owner) | also_exclude
        candidates = self._candidates(start)

        for port in candidates:
            if port in leased:
                log.debug("ports.leased", port=port)
                continue
            if not self._probe(self._config.host, port):
                log.debug("ports.busy", port=port)
                continue
            log.info("ports.allocated", port=port, preferred=preferred)
            return PortLease(port=port)

        raise PortUnavailableError.exhausted(candidates.start, candidates.stop - 1)

    def reallocate(
        self, current: int | None, preferred: int | None = None, *, owner: Path | None = None
    ) -> PortLease:
        """Pick a replacement port while ``current`` still counts as leased.

        The current lease is released only when the caller persists the
        new one, so the project is never left without a valid port.
        """
        keep = frozenset({current}) if current is not None else frozenset()
        return self.allocate(preferred, owner=owner, also_exclude=keep)
