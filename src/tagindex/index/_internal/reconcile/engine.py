"""Tag-scoped snippet reconciliation.

The SnippetReconciler applies one RefreshDiff for one tag to the store:

    Compute -> RemoveTag -> AddTag -> Delete

Each action's entries are split into batches of ``batch_size``; every batch
is one store transaction. The completion callback is invoked exactly once per
committed batch, after the commit and before the next batch starts, so a
caller that checkpoints on it can resume a crashed or cancelled run without
redoing acknowledged work.

Extraction (file read + extractor call) always happens before the batch's
write transaction opens; no lock is held while an extractor runs.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlparse

import structlog

from tagindex.core.errors import ExtractionError
from tagindex.core.logging import run_context
from tagindex.index._internal.db.store import SnippetStore, StoreTransaction
from tagindex.index._internal.extraction import ExtractorRegistry
from tagindex.index.models import (
    PROCESSING_ORDER,
    CompletionEvent,
    IndexResultType,
    PathAndCacheKey,
    RefreshDiff,
    Snippet,
    Tag,
)

logger = structlog.get_logger()

MarkComplete = Callable[[list[PathAndCacheKey], IndexResultType], None]
FileReader = Callable[[str], str]


@dataclass
class ReconcileResult:
    """Result of one reconciliation run."""

    tag: Tag
    events: list[CompletionEvent] = field(default_factory=list)
    extraction_errors: list[ExtractionError] = field(default_factory=list)
    deferred: list[PathAndCacheKey] = field(default_factory=list)
    extractions: int = 0  # extractor invocations
    reused: int = 0  # Compute entries served from existing content
    snippets_added: int = 0
    artifacts_deleted: int = 0
    cancelled: bool = False
    duration_ms: float = 0.0

    def completed(self, result_type: IndexResultType) -> list[PathAndCacheKey]:
        """All acknowledged entries of one action kind, in commit order."""
        return [
            entry
            for event in self.events
            if event.result_type == result_type
            for entry in event.entries
        ]

    @property
    def entries_completed(self) -> int:
        return sum(len(event.entries) for event in self.events)


def _batches(entries: Sequence[PathAndCacheKey], size: int) -> Iterator[list[PathAndCacheKey]]:
    for start in range(0, len(entries), size):
        yield list(entries[start : start + size])


def _validate_snippets(path: str, snippets: Sequence[object]) -> list[Snippet]:
    validated: list[Snippet] = []
    for position, snippet in enumerate(snippets):
        if not isinstance(snippet, Snippet):
            raise ExtractionError.malformed(
                path, f"item {position} is {type(snippet).__name__}, not Snippet"
            )
        if snippet.start_line < 0 or snippet.end_line < snippet.start_line:
            raise ExtractionError.malformed(
                path,
                f"item {position} has invalid range {snippet.start_line}-{snippet.end_line}",
            )
        validated.append(snippet)
    return validated


def _filesystem_path(path: str) -> Path:
    if path.startswith("file://"):
        return Path(unquote(urlparse(path).path))
    return Path(path)


class SnippetReconciler:
    """Applies refresh diffs to the snippet store. Stateless across calls.

    Usage::

        reconciler = SnippetReconciler(store, registry, batch_size=64)
        result = reconciler.reconcile(tag, diff, mark_complete=checkpoint)
    """

    def __init__(
        self,
        store: SnippetStore,
        registry: ExtractorRegistry,
        *,
        batch_size: int = 64,
        read_file: FileReader | None = None,
        max_file_size_bytes: int | None = None,
        encoding: str = "utf-8",
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.registry = registry
        self.batch_size = batch_size
        self._read_file = read_file
        self._max_file_size_bytes = max_file_size_bytes
        self._encoding = encoding

    def reconcile(
        self,
        tag: Tag,
        diff: RefreshDiff,
        mark_complete: MarkComplete | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ReconcileResult:
        """
        Apply diff for tag, acknowledging each committed batch.

        Args:
            tag: Tag whose associations are being reconciled.
            diff: Planner output for this tag.
            mark_complete: Called once per committed batch with its entries.
            cancel_event: Checked before every batch; when set, the run stops
                and already acknowledged batches stay committed.

        Returns:
            ReconcileResult with completion events and per-path failures.

        Raises:
            IntegrityError: AddTag for content that does not exist.
            PersistenceError: A batch failed to commit; it was not acknowledged.
        """
        start_time = time.perf_counter()
        result = ReconcileResult(tag=tag)
        if diff.is_empty:
            logger.debug("snippet_reconcile_skipped", tag=str(tag), reason="empty_diff")
            return result

        with run_context(tag=str(tag)):
            logger.info("snippet_reconcile_started", entries=len(diff))
            self._run(tag, diff, mark_complete, cancel_event, result)
            result.duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "snippet_reconcile_finished",
                cancelled=result.cancelled,
                entries_completed=result.entries_completed,
                extractions=result.extractions,
                reused=result.reused,
                extraction_errors=len(result.extraction_errors),
                duration_ms=round(result.duration_ms, 2),
            )
        return result

    def _run(
        self,
        tag: Tag,
        diff: RefreshDiff,
        mark_complete: MarkComplete | None,
        cancel_event: threading.Event | None,
        result: ReconcileResult,
    ) -> None:
        for result_type in PROCESSING_ORDER:
            for batch in _batches(diff.entries_for(result_type), self.batch_size):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    logger.info(
                        "snippet_reconcile_cancelled",
                        at=result_type.value,
                        entries_completed=result.entries_completed,
                    )
                    return

                committed = self._apply_batch(result_type, tag, batch, result)
                if not committed:
                    continue

                result.events.append(
                    CompletionEvent(entries=tuple(committed), result_type=result_type)
                )
                logger.debug(
                    "snippet_batch_committed",
                    result_type=result_type.value,
                    entries=len(committed),
                )
                if mark_complete is not None:
                    mark_complete(list(committed), result_type)

    # ------------------------------------------------------------------
    # Batch application
    # ------------------------------------------------------------------

    def _apply_batch(
        self,
        result_type: IndexResultType,
        tag: Tag,
        batch: list[PathAndCacheKey],
        result: ReconcileResult,
    ) -> list[PathAndCacheKey]:
        """Commit one batch and return the entries it covered."""
        if result_type is IndexResultType.COMPUTE:
            return self._compute(tag, batch, result)

        with self.store.transaction() as tx:
            for entry in batch:
                if result_type is IndexResultType.REMOVE_TAG:
                    tx.remove_association(entry, tag)
                elif result_type is IndexResultType.ADD_TAG:
                    tx.add_association(entry, tag)
                else:
                    self._delete(tx, entry, tag, result)
        return batch

    def _compute(
        self, tag: Tag, batch: list[PathAndCacheKey], result: ReconcileResult
    ) -> list[PathAndCacheKey]:
        # Phase 1, no transaction open: look up existing content, extract the rest
        planned: dict[PathAndCacheKey, list[Snippet] | None] = {}
        for entry in batch:
            if entry in planned:
                continue
            if self.store.has_artifact(entry):
                planned[entry] = None
                result.reused += 1
                continue
            try:
                planned[entry] = self._extract(entry, result)
            except ExtractionError as e:
                result.extraction_errors.append(e)
                logger.warning(
                    "snippet_extraction_failed",
                    path=entry.path,
                    cache_key=entry.cache_key,
                    error=e.error_name,
                    reason=e.details.get("reason"),
                )

        if not planned:
            return []

        # Phase 2: one write transaction for the whole batch
        committed: list[PathAndCacheKey] = []
        with self.store.transaction() as tx:
            for entry, snippets in planned.items():
                if snippets is not None:
                    if tx.put_artifact(entry, snippets):
                        result.snippets_added += len(snippets)
                elif not tx.has_artifact(entry):
                    # Another tag deleted the content after the lookup
                    result.deferred.append(entry)
                    logger.warning(
                        "snippet_reuse_lost_race",
                        path=entry.path,
                        cache_key=entry.cache_key,
                    )
                    continue
                tx.add_association(entry, tag)
                committed.append(entry)
        return committed

    def _delete(
        self,
        tx: StoreTransaction,
        entry: PathAndCacheKey,
        tag: Tag,
        result: ReconcileResult,
    ) -> None:
        tx.remove_association(entry, tag)
        if not tx.has_artifact(entry):
            # Already applied by a run that crashed before acknowledging
            logger.warning(
                "snippet_delete_missing_artifact",
                path=entry.path,
                cache_key=entry.cache_key,
            )
            return
        if tx.delete_artifact(entry):
            result.artifacts_deleted += 1

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract(self, entry: PathAndCacheKey, result: ReconcileResult) -> list[Snippet]:
        contents = self._read(entry.path)
        result.extractions += 1
        try:
            snippets = self.registry.extract(entry.path, contents)
        except ExtractionError:
            raise
        except Exception as e:
            # Extractors are pluggable; any failure stays scoped to its path
            raise ExtractionError.failed(entry.path, f"{type(e).__name__}: {e}") from e
        return _validate_snippets(entry.path, snippets)

    def _read(self, path: str) -> str:
        if self._read_file is not None:
            try:
                return self._read_file(path)
            except Exception as e:
                raise ExtractionError.unreadable(path, str(e)) from e

        file_path = _filesystem_path(path)
        try:
            size = file_path.stat().st_size
            if self._max_file_size_bytes is not None and size > self._max_file_size_bytes:
                raise ExtractionError.unreadable(
                    path, f"{size} bytes exceeds limit of {self._max_file_size_bytes}"
                )
            return file_path.read_text(encoding=self._encoding, errors="replace")
        except OSError as e:
            raise ExtractionError.unreadable(path, str(e)) from e
