"""Core module exports."""

from tagindex.core.errors import (
    ConfigError,
    ErrorCode,
    ExtractionError,
    IntegrityError,
    InternalError,
    PersistenceError,
    TagIndexError,
)
from tagindex.core.logging import (
    clear_run_id,
    configure_logging,
    get_logger,
    get_run_id,
    new_run_id,
    run_context,
    set_run_id,
)

__all__ = [
    # Errors
    "TagIndexError",
    "ErrorCode",
    "ConfigError",
    "ExtractionError",
    "IntegrityError",
    "PersistenceError",
    "InternalError",
    # Logging
    "clear_run_id",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "new_run_id",
    "run_context",
    "set_run_id",
]
