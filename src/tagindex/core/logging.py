"""structlog setup for tagindex.

Events are rendered by stdlib handlers through ProcessorFormatter, so the
same processor chain formats structlog events and records from third-party
loggers (SQLAlchemy). Each configured output gets its own handler, level and
renderer.

Correlation: a run id is kept in structlog's context variables and merged
into every event logged while it is bound. The reconciler binds one per run.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from structlog.contextvars import (
    bind_contextvars,
    bound_contextvars,
    get_contextvars,
    unbind_contextvars,
)

if TYPE_CHECKING:
    from tagindex.config.models import LoggingConfig, LogOutputConfig

_RUN_ID_KEY = "run_id"

# First file destination of the active configuration, if any
_log_file_path: Path | None = None


def new_run_id() -> str:
    return uuid4().hex[:12]


def get_run_id() -> str | None:
    value = get_contextvars().get(_RUN_ID_KEY)
    return str(value) if value is not None else None


def set_run_id(run_id: str | None = None) -> str:
    """Bind run_id (or a fresh one) for the current context and return it."""
    rid = run_id or new_run_id()
    bind_contextvars(**{_RUN_ID_KEY: rid})
    return rid


def clear_run_id() -> None:
    unbind_contextvars(_RUN_ID_KEY)


@contextmanager
def run_context(run_id: str | None = None, **extra: Any) -> Generator[str, None, None]:
    """Bind a run id plus extra keys for the duration of the block.

    Previously bound values are restored on exit.
    """
    rid = run_id or new_run_id()
    with bound_contextvars(**{_RUN_ID_KEY: rid}, **extra):
        yield rid


def get_log_file_path() -> Path | None:
    return _log_file_path


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
    ]


def _level_number(name: str | None, default: int) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else default


def _open_stream(destination: str) -> logging.Handler:
    streams = {"stderr": sys.stderr, "stdout": sys.stdout}
    if destination in streams:
        return logging.StreamHandler(streams[destination])
    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8")


def _build_handler(
    output: LogOutputConfig,
    level: int,
    shared: list[structlog.types.Processor],
) -> logging.Handler:
    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        interactive = output.destination == "stderr" and sys.stderr.isatty()
        renderer = structlog.dev.ConsoleRenderer(colors=interactive, pad_event_to=0)

    handler = _open_stream(output.destination)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    return handler


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Route structlog and stdlib logging to the configured outputs.

    Args:
        config: Full logging configuration. Wins over the simple params.
        json_format: Single stderr output in JSON instead of console format.
        level: Root level for the single-output setup.
    """
    global _log_file_path
    from tagindex.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level.upper(),  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )

    root_level = _level_number(config.level, logging.INFO)
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.setLevel(root_level)

    _log_file_path = None
    for output in config.outputs:
        if output.destination not in ("stderr", "stdout") and _log_file_path is None:
            _log_file_path = Path(output.destination)
        root.addHandler(_build_handler(output, _level_number(output.level, root_level), shared))

    # Statement echo from the engine is noise at any level we use
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name) if name else structlog.get_logger()
    return logger  # type: ignore[no-any-return]
