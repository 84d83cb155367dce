"""Pydantic configuration models.

Every field can be set from the environment as TAGINDEX__<SECTION>__<FIELD>,
for example::

    TAGINDEX__LOGGING__LEVEL=DEBUG
    TAGINDEX__INDEX__BATCH_SIZE=200
    TAGINDEX__DATABASE__MAX_RETRIES=5

See loader.py for how the sources are layered.
"""

import codecs
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from tagindex.config.constants import BATCH_SIZE_MAX

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["json", "console"]

_STREAMS = frozenset({"stderr", "stdout"})


class LogOutputConfig(BaseModel):
    """One log sink: a standard stream or a file."""

    format: LogFormat = "console"
    destination: str = Field(
        default="stderr",
        description="'stderr', 'stdout' or an absolute file path ('~' is expanded).",
    )
    level: LogLevel | None = Field(
        default=None,
        description="Minimum level for this sink. None uses LoggingConfig.level.",
    )

    @field_validator("destination")
    @classmethod
    def _resolve_destination(cls, value: str) -> str:
        if value in _STREAMS:
            return value
        expanded = Path(value).expanduser()
        if not expanded.is_absolute():
            raise ValueError(f"log file destination must be an absolute path, got {value!r}")
        return str(expanded)


class LoggingConfig(BaseModel):
    level: LogLevel = Field(
        default="INFO",
        description="Root level. At DEBUG every committed batch is logged.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class IndexConfig(BaseModel):
    """Snippet index behaviour."""

    index_path: str | None = Field(
        default=None,
        description="Directory holding index.db. Unset means <workspace>/.tagindex/.",
    )
    batch_size: int = Field(
        default=64,
        ge=1,
        le=BATCH_SIZE_MAX,
        description="Diff entries applied per transaction; each commit is acknowledged "
        "once. Larger batches commit less often and redo more after a crash.",
    )
    max_file_size_mb: int = Field(
        default=10,
        gt=0,
        description="Files above this size are reported unreadable instead of extracted.",
    )
    read_encoding: str = Field(
        default="utf-8",
        description="Codec for decoding source files; undecodable bytes are replaced.",
    )

    @field_validator("read_encoding")
    @classmethod
    def _known_codec(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as e:
            raise ValueError(f"unknown encoding {value!r}") from e
        return value


class DatabaseConfig(BaseModel):
    """SQLite connection and lock-retry settings."""

    busy_timeout_ms: int = Field(
        default=30000,
        ge=0,
        description="SQLite busy_timeout. Each lock attempt waits this long before failing.",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Extra attempts to take the write lock after the first one is refused.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        ge=0,
        description="First backoff delay; doubles on every further attempt.",
    )
    retry_max_delay_sec: float = Field(
        default=2.0,
        ge=0,
        description="Cap on a single backoff delay.",
    )


class TagIndexConfig(BaseModel):
    """Resolved configuration, as returned by load_config()."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
