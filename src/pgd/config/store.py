"""Per-project configuration storage.

Desired state is stored in ``pgd.toml`` at the project root::

    postgres_version = "16"
    database_name = "postgres"
    user_name = "postgres"
    password = "..."
    port = 5432

Every project root that has been saved is also recorded in a registry file
under the state directory, so the port allocator can see the ports claimed
by all projects on this machine.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from pgd.config.models import ProjectConfig
from pgd.core.errors import ConfigError, PgdError

log = structlog.get_logger()

PROJECT_FILENAME = "pgd.toml"
REGISTRY_FILENAME = "projects.yaml"

# project_name and project_root come from the directory, never from the file
PROJECT_KEYS = frozenset({"postgres_version", "database_name", "user_name", "password", "port"})

REGISTRY_HEADER = """\
# AUTO-GENERATED - DO NOT EDIT MANUALLY
# Project roots known to pgd. Used to avoid handing out the same port twice.

"""


def project_name_for(project_root: Path) -> str:
    """Project name is the basename of the project directory."""
    name = project_root.resolve().name
    if not name:
        raise ConfigError.invalid_value("project_root", str(project_root), "cannot derive a project name")
    return name


def validation_error(e: ValidationError) -> ConfigError:
    """Report the first pydantic validation failure as a ConfigError."""
    err = e.errors()[0]
    field = ".".join(str(loc) for loc in err["loc"])
    return ConfigError.invalid_value(field, err.get("input"), err["msg"])


def _toml_str(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes
    return json.dumps(value, ensure_ascii=False)


def render_project_config(config: ProjectConfig) -> str:
    """Render a config as commented TOML."""
    lines = [
        "# pgd project configuration",
        f"# Instance for project '{config.project_name}'. Managed by 'pgd init'.",
        "",
        "# PostgreSQL version (image tag). Changing it does not upgrade an existing instance.",
        f"postgres_version = {_toml_str(config.postgres_version)}",
        "",
        f"database_name = {_toml_str(config.database_name)}",
        f"user_name = {_toml_str(config.user_name)}",
        "",
        "# Sensitive: do not commit this file if the database holds real data.",
        f"password = {_toml_str(config.password)}",
        "",
    ]
    if config.port is not None:
        lines.append("# Host port bound on 127.0.0.1 (change with: pgd instance reassign-port)")
        lines.append(f"port = {config.port}")
        lines.append("")
    return "\n".join(lines)


class ConfigStore:
    """Loads and saves ``pgd.toml`` files and tracks known project roots."""

    def __init__(self, state_dir: Path) -> None:
        self._registry_path = state_dir / REGISTRY_FILENAME

    @staticmethod
    def config_path(project_root: Path) -> Path:
        return project_root / PROJECT_FILENAME

    def load(self, project_root: Path) -> ProjectConfig | None:
        """Load the project config, or None if the project has no pgd.toml."""
        path = self.config_path(project_root)
        if not path.exists():
            return None

        try:
            with path.open("rb") as f:
                data: dict[str, Any] = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError.parse_error(str(path), str(e)) from e

        unknown = sorted(set(data) - PROJECT_KEYS)
        if unknown:
            raise ConfigError.parse_error(
                str(path),
                f"unknown key(s) {', '.join(unknown)}; expected only {', '.join(sorted(PROJECT_KEYS))}",
            )

        root = project_root.resolve()
        try:
            return ProjectConfig(project_root=root, project_name=project_name_for(root), **data)
        except ValidationError as e:
            raise validation_error(e) from e

    def require(self, project_root: Path) -> ProjectConfig:
        config = self.load(project_root)
        if config is None:
            raise ConfigError.missing(str(project_root))
        return config

    def save(self, project_root: Path, config: ProjectConfig) -> None:
        """Write pgd.toml and record the project root in the registry."""
        path = self.config_path(project_root)
        path.write_text(render_project_config(config))
        log.debug("config.saved", path=str(path), port=config.port)
        self._register(project_root.resolve())

    def known_roots(self) -> list[Path]:
        """Project roots recorded in the registry, read fresh from disk."""
        if not self._registry_path.exists():
            return []
        try:
            with self._registry_path.open() as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError.parse_error(str(self._registry_path), str(e)) from e
        return [Path(p) for p in data.get("projects", [])]

    def leased_ports(self, exclude_root: Path | None = None) -> set[int]:
        """Ports claimed by every known project except ``exclude_root``."""
        excluded = exclude_root.resolve() if exclude_root is not None else None
        ports: set[int] = set()
        for root in self.known_roots():
            if root == excluded:
                continue
            try:
                config = self.load(root)
            except PgdError as e:
                log.warning("config.unreadable", project_root=str(root), error=e.message)
                continue
            if config is not None and config.port is not None:
                ports.add(config.port)
        return ports

    def _register(self, project_root: Path) -> None:
        roots = self.known_roots()
        # Roots whose pgd.toml is gone no longer hold a lease
        kept = [r for r in roots if r != project_root and self.config_path(r).exists()]
        kept.append(project_root)
        self._registry_path.parent.mkdir(parents=True, exist_ok=True)
        content = REGISTRY_HEADER + yaml.dump(
            {"projects": sorted(str(r) for r in kept)}, default_flow_style=False
        )
        self._registry_path.write_text(content)
