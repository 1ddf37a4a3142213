"""Test fixtures for CLI commands.

Commands run in-process through CliRunner with the Docker runtime replaced
by the in-memory FakeRuntime and all pgd state kept under tmp_path.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_logging() -> Generator[None, None, None]:
    yield
    # CliRunner closes its captured stderr; drop handlers bound to it
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()


@pytest.fixture
def cli_env(
    tmp_path: Path,
    project_root: Path,
    state_dir: Path,
    fake_runtime: object,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[Path, None, None]:
    """Run commands from ``project_root`` against the fake runtime. Yields the project root."""
    monkeypatch.setenv("PGD__STATE_DIR", str(state_dir))
    monkeypatch.chdir(project_root)
    with (
        patch("pgd.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "no-global-config.yaml"),
        patch("pgd.cli.utils.DockerRuntime", return_value=fake_runtime),
        patch("pgd.cli.utils.can_bind", return_value=True),
    ):
        yield project_root
