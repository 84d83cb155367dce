"""Content store for snippet artifacts and tag associations.

The store owns the dedup and cascade rules:
- At most one set of snippet rows per (path, cache_key); re-inserting is a no-op
- An association is only created for content that exists (IntegrityError otherwise)
- Content is only deleted when no association of any tag still references it,
  checked inside the same transaction as the delete

Database access patterns:
- Every mutation runs inside SnippetStore.transaction() (BEGIN IMMEDIATE)
- Reads use plain ORM sessions
- SQLAlchemy errors are translated at this boundary: constraint violations
  become IntegrityError, everything else PersistenceError
"""

from __future__ import annotations

import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, delete, func
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from tagindex.core.errors import IntegrityError, PersistenceError
from tagindex.index.models import (
    AssociationRecord,
    CodeSnippet,
    CodeSnippetTag,
    PathAndCacheKey,
    PathsAndSignatures,
    Snippet,
    SnippetRecord,
    SnippetSource,
    Tag,
)

if TYPE_CHECKING:
    from tagindex.index._internal.db.database import Database

logger = structlog.get_logger()


def _tag_filter(tag: Tag) -> tuple[object, ...]:
    return (
        CodeSnippetTag.directory == tag.directory,
        CodeSnippetTag.branch == tag.branch,
        CodeSnippetTag.artifact_id == tag.artifact_id,
    )


def _key_filter(
    model: type[SnippetSource | CodeSnippet | CodeSnippetTag], entry: PathAndCacheKey
) -> tuple[object, ...]:
    return (model.path == entry.path, model.cache_key == entry.cache_key)


def _content_join() -> object:
    return and_(
        CodeSnippetTag.path == CodeSnippet.path,
        CodeSnippetTag.cache_key == CodeSnippet.cache_key,
    )


class StoreTransaction:
    """Mutations bound to one open write transaction.

    Obtained from SnippetStore.transaction(); never commits by itself.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def has_artifact(self, entry: PathAndCacheKey) -> bool:
        stmt = select(SnippetSource.id).where(*_key_filter(SnippetSource, entry))
        return self._session.exec(stmt).first() is not None

    def count_associations(self, entry: PathAndCacheKey) -> int:
        stmt = select(func.count()).select_from(CodeSnippetTag).where(
            *_key_filter(CodeSnippetTag, entry)
        )
        return int(self._session.exec(stmt).one())

    def put_artifact(self, entry: PathAndCacheKey, snippets: Sequence[Snippet]) -> bool:
        """Persist extracted snippets for entry.

        Returns False (and writes nothing) when content for the key already exists.
        """
        if self.has_artifact(entry):
            return False

        conn = self._session.connection()
        conn.execute(
            sqlite_insert(SnippetSource)
            .values(
                path=entry.path,
                cache_key=entry.cache_key,
                snippet_count=len(snippets),
                indexed_at=time.time(),
            )
            .on_conflict_do_nothing(index_elements=["path", "cache_key"])
        )
        if snippets:
            conn.execute(
                sqlite_insert(CodeSnippet),
                [
                    {
                        "path": entry.path,
                        "cache_key": entry.cache_key,
                        "ordinal": ordinal,
                        "title": snippet.title,
                        "content": snippet.content,
                        "signature": snippet.signature,
                        "start_line": snippet.start_line,
                        "end_line": snippet.end_line,
                    }
                    for ordinal, snippet in enumerate(snippets)
                ],
            )
        return True

    def add_association(self, entry: PathAndCacheKey, tag: Tag) -> bool:
        """Make entry visible in tag.

        Raises:
            IntegrityError: No artifact exists for entry.
        """
        if not self.has_artifact(entry):
            raise IntegrityError.missing_artifact(entry.path, entry.cache_key, str(tag))

        result = self._session.connection().execute(
            sqlite_insert(CodeSnippetTag)
            .values(
                path=entry.path,
                cache_key=entry.cache_key,
                directory=tag.directory,
                branch=tag.branch,
                artifact_id=tag.artifact_id,
            )
            .on_conflict_do_nothing()
        )
        return bool(result.rowcount)

    def remove_association(self, entry: PathAndCacheKey, tag: Tag) -> bool:
        result = self._session.connection().execute(
            delete(CodeSnippetTag).where(
                *_key_filter(CodeSnippetTag, entry),
                *_tag_filter(tag),
            )
        )
        return bool(result.rowcount)

    def delete_artifact(self, entry: PathAndCacheKey) -> bool:
        """Delete all content rows for entry.

        Refuses when any tag still references the content: the other tag's
        association wins and the content is kept. Returns True if rows were
        deleted.
        """
        remaining = self.count_associations(entry)
        if remaining:
            logger.warning(
                "snippet_delete_skipped_still_tagged",
                path=entry.path,
                cache_key=entry.cache_key,
                associations=remaining,
            )
            return False

        conn = self._session.connection()
        conn.execute(delete(CodeSnippet).where(*_key_filter(CodeSnippet, entry)))
        result = conn.execute(delete(SnippetSource).where(*_key_filter(SnippetSource, entry)))
        return bool(result.rowcount)


class SnippetStore:
    """Durable, queryable persistence of snippets and tag associations."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def setup(self) -> None:
        """Create tables if absent. Safe to call on every start."""
        try:
            self.db.create_all()
        except sa_exc.SQLAlchemyError as e:
            raise PersistenceError.commit_failed(f"schema setup failed: {e}") from e

    @contextmanager
    def transaction(self) -> Generator[StoreTransaction, None, None]:
        """One atomic write transaction.

        Commits on success. On any error the transaction is rolled back, the
        connection released, and SQLAlchemy errors are re-raised as
        IntegrityError / PersistenceError.
        """
        try:
            with self.db.immediate_transaction() as session:
                yield StoreTransaction(session)
        except sa_exc.IntegrityError as e:
            raise IntegrityError.constraint(str(e.orig)) from e
        except sa_exc.SQLAlchemyError as e:
            raise PersistenceError.commit_failed(str(e)) from e

    # ------------------------------------------------------------------
    # Single-operation writes (each in its own transaction)
    # ------------------------------------------------------------------

    def put_artifact(self, entry: PathAndCacheKey, snippets: Sequence[Snippet]) -> bool:
        with self.transaction() as tx:
            return tx.put_artifact(entry, snippets)

    def add_association(self, entry: PathAndCacheKey, tag: Tag) -> bool:
        with self.transaction() as tx:
            return tx.add_association(entry, tag)

    def remove_association(self, entry: PathAndCacheKey, tag: Tag) -> bool:
        with self.transaction() as tx:
            return tx.remove_association(entry, tag)

    def delete_artifact(self, entry: PathAndCacheKey) -> bool:
        with self.transaction() as tx:
            return tx.delete_artifact(entry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @contextmanager
    def _read_session(self) -> Generator[Session, None, None]:
        try:
            with self.db.session() as session:
                yield session
        except sa_exc.SQLAlchemyError as e:
            raise PersistenceError.commit_failed(f"read failed: {e}") from e

    def has_artifact(self, entry: PathAndCacheKey) -> bool:
        with self._read_session() as session:
            return StoreTransaction(session).has_artifact(entry)

    def list_artifacts(self, tag: Tag | None = None) -> list[SnippetRecord]:
        """Snippets, optionally restricted to those visible in tag."""
        with self._read_session() as session:
            stmt = select(CodeSnippet)
            if tag is not None:
                stmt = stmt.join(CodeSnippetTag, _content_join()).where(*_tag_filter(tag))
            stmt = stmt.order_by(col(CodeSnippet.path), col(CodeSnippet.ordinal))
            return [
                SnippetRecord.model_validate(row, from_attributes=True)
                for row in session.exec(stmt)
            ]

    def list_associations(self, tag: Tag | None = None) -> list[AssociationRecord]:
        with self._read_session() as session:
            stmt = select(CodeSnippetTag)
            if tag is not None:
                stmt = stmt.where(*_tag_filter(tag))
            stmt = stmt.order_by(col(CodeSnippetTag.path), col(CodeSnippetTag.id))
            return [
                AssociationRecord.model_validate(row, from_attributes=True)
                for row in session.exec(stmt)
            ]

    def get_snippet(self, snippet_id: int) -> SnippetRecord | None:
        with self._read_session() as session:
            row = session.get(CodeSnippet, snippet_id)
            if row is None:
                return None
            return SnippetRecord.model_validate(row, from_attributes=True)

    def paths_and_signatures(self, tag: Tag, offset: int, limit: int) -> PathsAndSignatures:
        """One page of path -> signatures for the content visible in tag.

        Pages over distinct paths ordered by path.
        """
        with self._read_session() as session:
            path_stmt = (
                select(CodeSnippetTag.path)
                .where(*_tag_filter(tag))
                .distinct()
                .order_by(col(CodeSnippetTag.path))
                .offset(offset)
                .limit(limit + 1)
            )
            paths = list(session.exec(path_stmt))
            has_more = len(paths) > limit
            paths = paths[:limit]

            signatures: dict[str, list[str]] = {path: [] for path in paths}
            if paths:
                sig_stmt = (
                    select(CodeSnippet.path, CodeSnippet.signature)
                    .join(CodeSnippetTag, _content_join())
                    .where(col(CodeSnippet.path).in_(paths), *_tag_filter(tag))
                    .order_by(col(CodeSnippet.path), col(CodeSnippet.ordinal))
                )
                for path, signature in session.exec(sig_stmt):
                    signatures[path].append(signature)

        return PathsAndSignatures(signatures=signatures, offset=offset, has_more=has_more)
