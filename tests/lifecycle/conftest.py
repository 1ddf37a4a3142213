"""Test fixtures for the lifecycle module."""

from __future__ import annotations

from pathlib import Path

import pytest

from pgd.config.models import PortsConfig
from pgd.config.store import ConfigStore
from pgd.lifecycle import LifecycleController, PortAllocator
from pgd.state import StateStore


@pytest.fixture
def config_store(state_dir: Path) -> ConfigStore:
    return ConfigStore(state_dir)


@pytest.fixture
def state_store(state_dir: Path) -> StateStore:
    return StateStore(state_dir)


@pytest.fixture
def busy_ports() -> set[int]:
    """Ports the bind probe reports as taken by some other process."""
    return set()


@pytest.fixture
def allocator(config_store: ConfigStore, busy_ports: set[int]) -> PortAllocator:
    return PortAllocator(config_store.leased_ports, PortsConfig(), probe=lambda _host, port: port not in busy_ports)


@pytest.fixture
def controller(
    config_store: ConfigStore,
    state_store: StateStore,
    fake_runtime: object,
    allocator: PortAllocator,
) -> LifecycleController:
    return LifecycleController(config_store, state_store, fake_runtime, allocator)  # type: ignore[arg-type]
