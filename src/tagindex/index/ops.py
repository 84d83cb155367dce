"""High-level entry point for the code snippets index.

CodeSnippetsIndex owns the database, the store and the extractor registry and
is what callers (a refresh scheduler, a repo-map tool) talk to. It enforces
one serialization rule:

- one update() per tag at a time; different tags may update concurrently and
  are serialized at the SQLite write lock only
"""

from __future__ import annotations

import asyncio
import threading
from pathlib import Path

import structlog

from tagindex.config.constants import PATHS_AND_SIGNATURES_LIMIT_MAX, SNIPPETS_ARTIFACT_ID
from tagindex.config.models import TagIndexConfig
from tagindex.core.errors import InternalError
from tagindex.index._internal.db import Database, SnippetStore
from tagindex.index._internal.extraction import ExtractorRegistry, default_registry
from tagindex.index._internal.reconcile import (
    FileReader,
    MarkComplete,
    ReconcileResult,
    SnippetReconciler,
)
from tagindex.index.models import (
    PathsAndSignatures,
    RefreshDiff,
    SnippetRecord,
    Tag,
)

logger = structlog.get_logger()


class CodeSnippetsIndex:
    """Tag-scoped index of code snippets.

    Usage::

        index = CodeSnippetsIndex(db_path)
        index.setup()

        tag = Tag("/repo", "main")
        result = index.update(tag, diff, mark_complete=planner.mark_complete)

        page = index.get_paths_and_signatures(tag, limit=100)
        index.close()
    """

    artifact_id = SNIPPETS_ARTIFACT_ID

    def __init__(
        self,
        db: Path | Database,
        config: TagIndexConfig | None = None,
        registry: ExtractorRegistry | None = None,
        *,
        read_file: FileReader | None = None,
    ) -> None:
        self.config = config or TagIndexConfig()
        if isinstance(db, Database):
            self.db = db
        else:
            self.db = Database(Path(db), self.config.database)
        self.store = SnippetStore(self.db)
        self.registry = registry if registry is not None else default_registry()
        self.reconciler = SnippetReconciler(
            self.store,
            self.registry,
            batch_size=self.config.index.batch_size,
            read_file=read_file,
            max_file_size_bytes=self.config.index.max_file_size_mb * 1024 * 1024,
            encoding=self.config.index.read_encoding,
        )

        self._tag_locks: dict[Tag, threading.Lock] = {}
        self._tag_locks_guard = threading.Lock()
        self._closed = False

    def setup(self) -> None:
        """Create tables and indexes. Idempotent."""
        self.store.setup()
        logger.debug("snippet_index_ready", db_path=str(self.db.db_path))

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def _lock_for(self, tag: Tag) -> threading.Lock:
        with self._tag_locks_guard:
            lock = self._tag_locks.get(tag)
            if lock is None:
                lock = self._tag_locks[tag] = threading.Lock()
            return lock

    def update(
        self,
        tag: Tag,
        diff: RefreshDiff,
        mark_complete: MarkComplete | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ReconcileResult:
        """
        Apply a refresh diff for tag.

        SERIALIZED per tag: a second update() for the same tag waits.

        mark_complete is called once per committed batch; entries not passed to
        it (extraction failures, cancellation, errors) should be re-planned.

        Raises:
            IntegrityError: AddTag referenced content that does not exist.
            PersistenceError: A batch failed to commit.
            InternalError: The index has been closed.
        """
        if self._closed:
            raise InternalError.unexpected("update on a closed index", tag=str(tag))
        with self._lock_for(tag):
            return self.reconciler.reconcile(tag, diff, mark_complete, cancel_event)

    async def update_async(
        self,
        tag: Tag,
        diff: RefreshDiff,
        mark_complete: MarkComplete | None = None,
    ) -> ReconcileResult:
        """
        Run update() in a worker thread.

        Cancelling the awaiting task stops the run at the next batch boundary:
        the in-flight batch still commits and is acknowledged, then the
        cancellation is re-raised. mark_complete runs on the worker thread.
        """
        cancel_event = threading.Event()
        task = asyncio.ensure_future(
            asyncio.to_thread(self.update, tag, diff, mark_complete, cancel_event)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            cancel_event.set()
            logger.info("snippet_update_cancel_requested", tag=str(tag))
            await task
            raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_for_id(self, snippet_id: int) -> SnippetRecord:
        """Snippet by row id.

        Raises:
            LookupError: No snippet with that id.
        """
        record = self.store.get_snippet(snippet_id)
        if record is None:
            raise LookupError(f"No snippet with id {snippet_id}")
        return record

    def get_all(self, tag: Tag) -> list[SnippetRecord]:
        """Every snippet visible in tag, ordered by path then position."""
        return self.store.list_artifacts(tag)

    def get_paths_and_signatures(
        self,
        tag: Tag,
        offset: int = 0,
        limit: int = PATHS_AND_SIGNATURES_LIMIT_MAX,
    ) -> PathsAndSignatures:
        if offset < 0:
            raise ValueError(f"offset must be non-negative, got {offset}")
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        limit = min(limit, PATHS_AND_SIGNATURES_LIMIT_MAX)
        return self.store.paths_and_signatures(tag, offset, limit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Checkpoint the WAL and release database handles."""
        if self._closed:
            return
        self._closed = True
        try:
            self.db.checkpoint("PASSIVE")
        finally:
            self.db.dispose()

    def __enter__(self) -> CodeSnippetsIndex:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
