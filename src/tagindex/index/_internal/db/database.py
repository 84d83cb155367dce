"""SQLite engine and transaction scopes.

Several reconciliation runs (one per tag) may write to the same file. Every
write scope opens with BEGIN IMMEDIATE, which takes the RESERVED lock before
any statement runs, so writers are serialized per transaction while WAL keeps
readers unblocked.

Only taking the lock is retried. Once a write scope's body has started, any
error rolls it back and propagates unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import Engine, event, text
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from tagindex.config.models import DatabaseConfig

logger = structlog.get_logger()

CHECKPOINT_MODES = frozenset({"PASSIVE", "FULL", "RESTART", "TRUNCATE"})

_LOCK_MESSAGES = ("database is locked", "database is busy")


def _is_lock_contention(error: OperationalError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return any(fragment in message for fragment in _LOCK_MESSAGES)


def _connection_pragmas(busy_timeout_ms: int) -> tuple[str, ...]:
    return (
        "PRAGMA journal_mode=WAL",
        f"PRAGMA busy_timeout={int(busy_timeout_ms)}",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA foreign_keys=ON",
    )


class Database:
    """Engine owner for one index file.

    Usage::

        db = Database(path, config.database)
        db.create_all()

        with db.immediate_transaction() as session:
            session.add(row)

        with db.session() as session:
            rows = session.exec(select(Model)).all()
    """

    def __init__(self, db_path: Path, config: DatabaseConfig | None = None) -> None:
        self.db_path = db_path
        self.config = config or DatabaseConfig()

        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        pragmas = _connection_pragmas(self.config.busy_timeout_ms)

        @event.listens_for(self.engine, "connect")
        def _apply_pragmas(dbapi_conn: Any, _record: Any) -> None:
            cursor = dbapi_conn.cursor()
            try:
                for pragma in pragmas:
                    cursor.execute(pragma)
            finally:
                cursor.close()

    def create_all(self) -> None:
        """Create missing tables and indexes."""
        SQLModel.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read scope. Nothing is committed."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def immediate_transaction(self, max_retries: int | None = None) -> Iterator[Session]:
        """Write scope opened with BEGIN IMMEDIATE.

        Commits when the block exits normally. Any exception, including
        KeyboardInterrupt and task cancellation, rolls back and is re-raised.

        Args:
            max_retries: Lock attempts after the first refusal. Defaults to
                ``config.max_retries``.

        Raises:
            OperationalError: The lock stayed contended through every retry,
                or the database failed for another reason.
        """
        attempts_left = self.config.max_retries if max_retries is None else max_retries
        session = self._acquire_write_lock(attempts_left)
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _backoff(self, attempt: int) -> float:
        return min(self.config.retry_base_delay_sec * 2**attempt, self.config.retry_max_delay_sec)

    def _acquire_write_lock(self, retries: int) -> Session:
        attempt = 0
        while True:
            session = Session(self.engine)
            try:
                session.connection().exec_driver_sql("BEGIN IMMEDIATE")
            except OperationalError as e:
                session.close()
                if attempt >= retries or not _is_lock_contention(e):
                    raise
                delay = self._backoff(attempt)
                attempt += 1
                logger.warning(
                    "sqlite_write_lock_retry",
                    attempt=attempt,
                    max_retries=retries,
                    delay_sec=delay,
                )
                time.sleep(delay)
            else:
                return session

    def checkpoint(self, mode: str = "PASSIVE") -> None:
        """Fold the WAL back into the main database file.

        Raises:
            ValueError: mode is not one of CHECKPOINT_MODES.
        """
        normalized = mode.upper()
        if normalized not in CHECKPOINT_MODES:
            raise ValueError(
                f"Invalid checkpoint mode: {mode}. Expected one of {sorted(CHECKPOINT_MODES)}"
            )
        with self.engine.connect() as conn:
            busy, wal_pages, checkpointed = conn.execute(
                text(f"PRAGMA wal_checkpoint({normalized})")
            ).one()
        logger.debug(
            "wal_checkpoint_completed",
            mode=normalized,
            busy=bool(busy),
            wal_pages=wal_pages,
            checkpointed=checkpointed,
        )
