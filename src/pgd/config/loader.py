"""Tool settings loading with pydantic-settings.

Precedence (highest first):
1. Direct kwargs
2. Environment variables (PGD__SECTION__KEY)
3. Global YAML (~/.config/pgd/config.yaml)
4. Built-in defaults

Per-project desired state is not handled here; see store.py.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from pgd.config.models import DockerConfig, LoggingConfig, PgdConfig, PortsConfig
from pgd.config.store import validation_error
from pgd.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/pgd/config.yaml").expanduser()


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top level must be a mapping")
    return data


class _YamlSource(PydanticBaseSettingsSource):
    """Settings source that reads from pre-loaded YAML config."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_config: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self._yaml_config = yaml_config

    def get_field_value(
        self,
        field: Any,  # noqa: ARG002
        field_name: str,
    ) -> tuple[Any, str, bool]:
        val = self._yaml_config.get(field_name)
        return val, field_name, val is not None

    def __call__(self) -> dict[str, Any]:
        return self._yaml_config


def _make_settings_class(yaml_config: dict[str, Any]) -> type[BaseSettings]:
    """Create a Settings class bound to one YAML payload."""

    class PgdSettings(BaseSettings):
        """Root settings. Env vars: PGD__LOGGING__LEVEL, PGD__DOCKER__HOST, etc."""

        model_config = SettingsConfigDict(
            env_prefix="PGD__",
            env_nested_delimiter="__",
            case_sensitive=False,
        )

        logging: LoggingConfig = LoggingConfig()
        docker: DockerConfig = DockerConfig()
        ports: PortsConfig = PortsConfig()
        state_dir: Path = Path("~/.pgd")

        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            # Precedence (first wins): init kwargs > env vars > yaml file
            return (init_settings, env_settings, _YamlSource(settings_cls, yaml_config))

    return PgdSettings


def load_settings(config_path: Path | None = None, **kwargs: Any) -> PgdConfig:
    """Load tool settings: defaults < global YAML < env vars < kwargs.

    Raises:
        ConfigError: On invalid YAML syntax or validation errors.
    """
    yaml_config = _load_yaml(config_path or GLOBAL_CONFIG_PATH)

    settings_cls = _make_settings_class(yaml_config)
    try:
        settings = settings_cls(**kwargs)
        resolved = PgdConfig.model_validate(settings.model_dump())
    except ValidationError as e:
        raise validation_error(e) from e

    return resolved.model_copy(update={"state_dir": resolved.state_dir.expanduser()})
