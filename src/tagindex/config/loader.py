"""Configuration loading.

Sources, lowest to highest precedence:

    built-in defaults
    ~/.config/tagindex/config.yaml            (global)
    <workspace>/.tagindex/config.yaml         (workspace)
    load_config(config_file=...)              (explicit file, must exist)
    TAGINDEX__SECTION__KEY environment variables
    keyword arguments to load_config()

The YAML files are deep-merged into one file layer before pydantic-settings
resolves env vars and kwargs on top of it.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from tagindex.config.constants import INDEX_DB_NAME, WORKSPACE_DIR_NAME
from tagindex.config.models import (
    DatabaseConfig,
    IndexConfig,
    LoggingConfig,
    TagIndexConfig,
)
from tagindex.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/tagindex/config.yaml").expanduser()

# Merged YAML for the load_config() call running in this context
_file_layer: ContextVar[dict[str, Any]] = ContextVar("tagindex_config_file_layer", default={})


def _load_yaml(path: Path) -> dict[str, Any]:
    """Parse one YAML config file. A missing or empty file is an empty mapping."""
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError.parse_error(
            str(path), f"expected a mapping at top level, got {type(data).__name__}"
        )
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return base updated by override; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


class _FileLayerSource(PydanticBaseSettingsSource):
    """Feeds the merged YAML layer of the current load into pydantic-settings."""

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:  # noqa: ARG002
        layer = _file_layer.get()
        return layer.get(field_name), field_name, field_name in layer

    def __call__(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in _file_layer.get().items()
            if name in self.settings_cls.model_fields
        }


class TagIndexSettings(BaseSettings):
    """Environment-aware root settings, e.g. TAGINDEX__INDEX__BATCH_SIZE=16."""

    model_config = SettingsConfigDict(
        env_prefix="TAGINDEX__",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    logging: LoggingConfig = LoggingConfig()
    index: IndexConfig = IndexConfig()
    database: DatabaseConfig = DatabaseConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # First source wins
        return (init_settings, env_settings, _FileLayerSource(settings_cls))


@contextmanager
def _using_file_layer(layer: dict[str, Any]) -> Iterator[None]:
    token = _file_layer.set(layer)
    try:
        yield
    finally:
        _file_layer.reset(token)


def load_config(
    workspace_root: Path | None = None,
    config_file: Path | None = None,
    **kwargs: Any,
) -> TagIndexConfig:
    """Resolve configuration for a workspace.

    Args:
        workspace_root: Directory holding ``.tagindex/config.yaml``.
                        Defaults to the current working directory.
        config_file: Extra YAML file layered over the workspace file.
        **kwargs: Section overrides, e.g. ``index=IndexConfig(batch_size=8)``.

    Raises:
        ConfigError: config_file does not exist, a YAML file does not parse,
            or a value fails validation.
    """
    root = workspace_root or Path.cwd()
    layer = _deep_merge(
        _load_yaml(GLOBAL_CONFIG_PATH),
        _load_yaml(root / WORKSPACE_DIR_NAME / "config.yaml"),
    )
    if config_file is not None:
        if not config_file.is_file():
            raise ConfigError.file_not_found(str(config_file))
        layer = _deep_merge(layer, _load_yaml(config_file))

    with _using_file_layer(layer):
        try:
            settings = TagIndexSettings(**kwargs)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            raise ConfigError.invalid_value(field, first.get("input"), first["msg"]) from e

    return TagIndexConfig.model_validate(settings.model_dump())


def get_index_path(workspace_root: Path, config: TagIndexConfig | None = None) -> Path:
    """Location of the SQLite index file; ``index.index_path`` relocates its directory."""
    resolved = config if config is not None else load_config(workspace_root)
    custom_dir = resolved.index.index_path
    base = Path(custom_dir).expanduser() if custom_dir else workspace_root / WORKSPACE_DIR_NAME
    return base / INDEX_DB_NAME
