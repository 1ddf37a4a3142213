"""Resource naming for project instances.

Names are pure functions of the project identity. The path hash keeps two
projects that share a directory name apart.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path

from pgd.config.models import ProjectConfig
from pgd.runtime.base import VolumeRef

PREFIX = "pgd-"
VOLUME_SUFFIX = "-data"
# 12 hex chars = 48 bits of the path hash
PATH_HASH_LENGTH = 12
_SLUG_MAX = 40

_UNSAFE = re.compile(r"[^a-z0-9_.-]+")

# Labels written on every container we create
LABEL_PROJECT = "pgd.project"
LABEL_PROJECT_ROOT = "pgd.project_root"
LABEL_VERSION = "pgd.postgres.version"


def slugify(project_name: str) -> str:
    """Lowercase, Docker-safe form of a project name."""
    slug = _UNSAFE.sub("-", project_name.lower()).strip("-_.")
    return slug[:_SLUG_MAX] or "project"


def path_hash(project_root: Path) -> str:
    digest = hashlib.sha256(str(project_root.resolve()).encode()).hexdigest()
    return digest[:PATH_HASH_LENGTH]


def container_name(config: ProjectConfig) -> str:
    return f"{PREFIX}{slugify(config.project_name)}-{path_hash(config.project_root)}"


def volume_name(config: ProjectConfig) -> str:
    return f"{container_name(config)}{VOLUME_SUFFIX}"


def data_mount_path(postgres_version: str) -> str:
    """Where the data volume is mounted inside the container.

    The official images from 18 on keep PGDATA in a versioned subdirectory
    of /var/lib/postgresql and expect the volume there.
    """
    major = int(postgres_version.split(".", 1)[0])
    if major >= 18:
        return "/var/lib/postgresql"
    return "/var/lib/postgresql/data"


def volume_ref(config: ProjectConfig) -> VolumeRef:
    return VolumeRef(name=volume_name(config), mount_path=data_mount_path(config.postgres_version))


def container_labels(config: ProjectConfig) -> dict[str, str]:
    return {
        LABEL_PROJECT: config.project_name,
        LABEL_PROJECT_ROOT: str(config.project_root),
        LABEL_VERSION: config.postgres_version,
    }
