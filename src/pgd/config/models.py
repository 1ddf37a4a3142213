"""Pydantic configuration models.

Two kinds of configuration live here:

- ``ProjectConfig``: the per-project desired state stored in ``pgd.toml``.
- Tool settings (``DockerConfig``, ``PortsConfig``, ``LoggingConfig``) that
  apply to every project. See loader.py for how those are resolved.

Environment Variable Format:
    PGD__<SECTION>__<KEY>=<VALUE>

Examples:
    PGD__LOGGING__LEVEL=DEBUG
    PGD__DOCKER__HOST=unix:///run/user/1000/docker.sock
    PGD__PORTS__START=6543
"""

from __future__ import annotations

import os
import re
import secrets
import string
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

DEFAULT_POSTGRES_VERSION = "16"
DEFAULT_DATABASE = "postgres"
DEFAULT_USER = "postgres"
DEFAULT_PORT_START = 5432
DEFAULT_PORT_RANGE = 100

_VERSION_RE = re.compile(r"^\d+(\.\d+)?$")
PASSWORD_LENGTH = 16


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _validate_port(v: int | None) -> int | None:
    if v is not None and not (1 <= v <= 65535):
        raise ValueError(f"Port must be 1-65535, got {v}")
    return v


class ProjectConfig(BaseModel):
    """Desired state of one project's database instance.

    ``project_name`` and ``project_root`` are derived from the directory
    holding ``pgd.toml`` and are never written to the file.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_root: Path = Field(exclude=True)
    project_name: str = Field(exclude=True)
    postgres_version: str = DEFAULT_POSTGRES_VERSION
    database_name: str = DEFAULT_DATABASE
    user_name: str = DEFAULT_USER
    password: str = Field(min_length=1)
    port: int | None = None

    @field_validator("postgres_version", mode="before")
    @classmethod
    def validate_version(cls, v: object) -> str:
        text = str(v).strip()
        if not _VERSION_RE.match(text):
            raise ValueError(f"expected a version like '16' or '16.4', got {v!r}")
        return text

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int | None) -> int | None:
        return _validate_port(v)

    @field_validator("database_name", "user_name")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be empty")
        return v

    @property
    def image_tag(self) -> str:
        return f"postgres:{self.postgres_version}"


class LoggingConfig(BaseModel):
    """Logging configuration.

    Console output always goes to stderr. ``file`` adds a JSON log at the
    same level.

    Env vars:
        PGD__LOGGING__LEVEL: Log level (default WARNING, --verbose forces DEBUG)
        PGD__LOGGING__FILE: Also write JSON logs to this absolute path
    """

    level: LogLevel = "WARNING"
    file: str | None = None

    @field_validator("file")
    @classmethod
    def validate_file(cls, v: str | None) -> str | None:
        if v is None:
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"Log file must be an absolute path: {v}")
        return str(path)


def _default_docker_host() -> str:
    return os.environ.get("DOCKER_HOST") or "unix:///var/run/docker.sock"


class DockerConfig(BaseModel):
    """Container runtime connection.

    Env vars:
        PGD__DOCKER__HOST: unix:// socket or tcp:// address (default: $DOCKER_HOST)
        PGD__DOCKER__API_TIMEOUT_SEC: Per-request timeout
        PGD__DOCKER__STOP_TIMEOUT_SEC: Grace period before the daemon kills postgres
    """

    host: str = Field(default_factory=_default_docker_host)
    api_timeout_sec: float = 30.0
    pull_timeout_sec: float = 600.0
    stop_timeout_sec: int = 10


class PortsConfig(BaseModel):
    """Host port allocation.

    Env vars:
        PGD__PORTS__START: First port scanned when no port is requested
        PGD__PORTS__SEARCH_RANGE: Number of consecutive ports scanned
    """

    host: str = "127.0.0.1"
    start: int = DEFAULT_PORT_START
    search_range: int = Field(default=DEFAULT_PORT_RANGE, ge=1)

    @field_validator("start")
    @classmethod
    def validate_start(cls, v: int) -> int:
        _validate_port(v)
        return v


class PgdConfig(BaseModel):
    """Resolved tool settings. Built by ``load_settings``."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    state_dir: Path = Field(default_factory=lambda: Path("~/.pgd").expanduser())
