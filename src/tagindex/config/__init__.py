"""Config module exports."""

from tagindex.config.loader import get_index_path, load_config
from tagindex.config.models import (
    DatabaseConfig,
    IndexConfig,
    LoggingConfig,
    LogOutputConfig,
    TagIndexConfig,
)

__all__ = [
    "load_config",
    "get_index_path",
    "TagIndexConfig",
    "DatabaseConfig",
    "IndexConfig",
    "LoggingConfig",
    "LogOutputConfig",
]
