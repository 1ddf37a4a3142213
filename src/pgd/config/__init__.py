"""Config module exports."""

from pgd.config.loader import load_settings
from pgd.config.models import (
    DockerConfig,
    LoggingConfig,
    PgdConfig,
    PortsConfig,
    ProjectConfig,
)
from pgd.config.store import ConfigStore

__all__ = [
    "load_settings",
    "ConfigStore",
    "DockerConfig",
    "LoggingConfig",
    "PgdConfig",
    "PortsConfig",
    "ProjectConfig",
]
