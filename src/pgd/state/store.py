"""Last-known observed state of each instance.

Stored in ``<state_dir>/state.yaml`` (auto-generated, not user-editable).
The record is a cache of the last trustworthy observation; callers that need
correctness re-inspect the live container.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from pgd.core.errors import ConfigError, ContainerNotFoundError
from pgd.runtime.base import ContainerStatus

log = structlog.get_logger()

STATE_FILENAME = "state.yaml"

STATE_HEADER = """\
# AUTO-GENERATED - DO NOT EDIT MANUALLY
# Last observed state of every pgd instance on this machine.
# Safe to delete: it is rebuilt the next time each project runs 'pgd init'.

"""


def utc_now() -> datetime:
    return datetime.now(UTC)


class InstanceState(BaseModel):
    """Observed state of one project's container."""

    container_id: str | None = None
    container_name: str
    project_name: str
    project_root: str
    last_known_version: str
    last_known_port: int | None = None
    last_known_status: ContainerStatus
    last_seen_at: datetime = Field(default_factory=utc_now)


class StateStore:
    """YAML-backed map of instance key -> InstanceState.

    The file is re-read on every call so separate invocations see each
    other's writes.
    """

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / STATE_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, InstanceState]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open() as f:
                data = yaml.safe_load(f) or {}
            instances = data.get("instances") or {}
            return {key: InstanceState.model_validate(value) for key, value in instances.items()}
        except (yaml.YAMLError, ValidationError, AttributeError) as e:
            raise ConfigError.parse_error(str(self._path), str(e)) from e

    def _write(self, instances: dict[str, InstanceState]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "instances": {
                key: state.model_dump(mode="json") for key, state in sorted(instances.items())
            }
        }
        content = STATE_HEADER + yaml.dump(data, default_flow_style=False, sort_keys=False)
        self._path.write_text(content)

    def load(self, key: str) -> InstanceState | None:
        return self._read().get(key)

    def save(self, key: str, state: InstanceState) -> None:
        instances = self._read()
        instances[key] = state
        self._write(instances)
        log.debug("state.saved", key=key, status=state.last_known_status.value)

    def delete(self, key: str) -> bool:
        """Remove a record. Returns False if there was nothing to remove."""
        instances = self._read()
        if instances.pop(key, None) is None:
            return False
        self._write(instances)
        log.debug("state.deleted", key=key)
        return True

    def all(self) -> dict[str, InstanceState]:
        return self._read()

    def find(self, name: str) -> tuple[str, InstanceState]:
        """Resolve an instance by its key or by an unambiguous project name.

        Raises:
            ContainerNotFoundError: No match, or several projects share the name.
        """
        instances = self._read()
        if name in instances:
            return name, instances[name]

        matches = sorted(key for key, state in instances.items() if state.project_name == name)
        if not matches:
            raise ContainerNotFoundError.unknown_name(name)
        if len(matches) > 1:
            raise ContainerNotFoundError.ambiguous_name(name, matches)
        return matches[0], instances[matches[0]]
