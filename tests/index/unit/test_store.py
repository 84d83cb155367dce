"""Unit tests for the snippet content store.

Tests cover:
- Artifact dedup by (path, cache_key)
- Association integrity (no association without content)
- Delete refusing while other tags reference the content
- Error translation at the store boundary
- Read queries (tag-scoped listing, paths and signatures paging)
"""

from __future__ import annotations

import pytest
from sqlalchemy import text

from tagindex.core.errors import IntegrityError, PersistenceError
from tagindex.index._internal.db import Database, SnippetStore
from tagindex.index.models import PathAndCacheKey, Snippet, Tag


def _snippet(title: str, line: int = 0) -> Snippet:
    return Snippet(
        title=title,
        content=f"def {title}():\n    pass",
        signature=f"def {title}()",
        start_line=line,
        end_line=line + 1,
    )


def _count(db: Database, table: str) -> int:
    with db.session() as session:
        return int(session.connection().execute(text(f"SELECT COUNT(*) FROM {table}")).scalar())


class TestPutArtifact:
    """Tests for artifact insertion and dedup."""

    def test_put_inserts_source_and_snippets(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey
    ) -> None:
        assert store.put_artifact(entry, [_snippet("a"), _snippet("b", 3)]) is True

        assert _count(temp_db, "snippet_sources") == 1
        assert _count(temp_db, "code_snippets") == 2
        assert store.has_artifact(entry)

    def test_put_same_key_twice_is_noop(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey
    ) -> None:
        store.put_artifact(entry, [_snippet("a")])

        assert store.put_artifact(entry, [_snippet("other")]) is False
        assert _count(temp_db, "code_snippets") == 1

    def test_put_with_no_snippets_still_records_source(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey
    ) -> None:
        """Empty extraction output is still content that can be tagged."""
        store.put_artifact(entry, [])

        assert store.has_artifact(entry)
        assert _count(temp_db, "code_snippets") == 0

    def test_new_cache_key_adds_new_rows(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey
    ) -> None:
        store.put_artifact(entry, [_snippet("a")])
        store.put_artifact(PathAndCacheKey(entry.path, "beef02"), [_snippet("a")])

        assert _count(temp_db, "snippet_sources") == 2
        assert _count(temp_db, "code_snippets") == 2


class TestAssociations:
    """Tests for tag associations."""

    def test_add_association_requires_artifact(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        with pytest.raises(IntegrityError) as exc_info:
            store.add_association(entry, tag)

        assert exc_info.value.details["cache_key"] == entry.cache_key
        assert _count(temp_db, "code_snippets_tags") == 0

    def test_add_association_is_idempotent(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        store.put_artifact(entry, [_snippet("a")])

        assert store.add_association(entry, tag) is True
        assert store.add_association(entry, tag) is False
        assert len(store.list_associations(tag)) == 1

    def test_remove_association_keeps_content(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        store.put_artifact(entry, [_snippet("a")])
        store.add_association(entry, tag)

        assert store.remove_association(entry, tag) is True
        assert store.list_associations(tag) == []
        assert store.has_artifact(entry)

    def test_remove_missing_association_is_noop(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        assert store.remove_association(entry, tag) is False

    def test_association_record_exposes_tag_and_key(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        store.put_artifact(entry, [_snippet("a")])
        store.add_association(entry, tag)

        (record,) = store.list_associations()
        assert record.tag == tag
        assert record.key == entry


class TestDeleteArtifact:
    """Tests for content deletion."""

    def test_delete_removes_source_and_snippets(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey
    ) -> None:
        store.put_artifact(entry, [_snippet("a"), _snippet("b")])

        assert store.delete_artifact(entry) is True
        assert _count(temp_db, "snippet_sources") == 0
        assert _count(temp_db, "code_snippets") == 0

    def test_delete_refused_while_tagged(
        self,
        store: SnippetStore,
        temp_db: Database,
        entry: PathAndCacheKey,
        other_tag: Tag,
    ) -> None:
        """Another tag's live association keeps the content alive."""
        store.put_artifact(entry, [_snippet("a")])
        store.add_association(entry, other_tag)

        assert store.delete_artifact(entry) is False
        assert _count(temp_db, "code_snippets") == 1

    def test_delete_missing_artifact_returns_false(
        self, store: SnippetStore, entry: PathAndCacheKey
    ) -> None:
        assert store.delete_artifact(entry) is False

    def test_delete_does_not_touch_other_cache_keys(
        self, store: SnippetStore, temp_db: Database, entry: PathAndCacheKey
    ) -> None:
        other = PathAndCacheKey(entry.path, "beef02")
        store.put_artifact(entry, [_snippet("a")])
        store.put_artifact(other, [_snippet("b")])

        store.delete_artifact(entry)

        assert store.has_artifact(other)
        assert _count(temp_db, "code_snippets") == 1


class TestTransaction:
    """Tests for multi-operation transactions and error translation."""

    def test_transaction_commits_all_operations(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        with store.transaction() as tx:
            tx.put_artifact(entry, [_snippet("a")])
            tx.add_association(entry, tag)

        assert len(store.list_artifacts(tag)) == 1

    def test_transaction_rolls_back_on_error(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        missing = PathAndCacheKey("/workspace/repo/other.py", "0000")

        with pytest.raises(IntegrityError), store.transaction() as tx:
            tx.put_artifact(entry, [_snippet("a")])
            tx.add_association(missing, tag)

        assert not store.has_artifact(entry)

    def test_sqlalchemy_errors_become_persistence_errors(
        self, store: SnippetStore, entry: PathAndCacheKey
    ) -> None:
        with pytest.raises(PersistenceError) as exc_info, store.transaction() as tx:
            tx._session.connection().execute(text("INSERT INTO no_such_table VALUES (1)"))

        assert exc_info.value.retryable

    def test_constraint_violations_become_integrity_errors(
        self, store: SnippetStore, entry: PathAndCacheKey
    ) -> None:
        store.put_artifact(entry, [_snippet("a")])

        with pytest.raises(IntegrityError), store.transaction() as tx:
            tx._session.connection().execute(
                text(
                    "INSERT INTO snippet_sources (path, cache_key, snippet_count) "
                    "VALUES (:path, :key, 0)"
                ),
                {"path": entry.path, "key": entry.cache_key},
            )


class TestReads:
    """Tests for read queries."""

    def test_list_artifacts_scoped_to_tag(
        self, store: SnippetStore, tag: Tag, other_tag: Tag
    ) -> None:
        a = PathAndCacheKey("/workspace/repo/a.py", "k1")
        b = PathAndCacheKey("/workspace/repo/b.py", "k2")
        store.put_artifact(a, [_snippet("alpha")])
        store.put_artifact(b, [_snippet("beta")])
        store.add_association(a, tag)
        store.add_association(b, other_tag)

        assert [r.title for r in store.list_artifacts(tag)] == ["alpha"]
        assert [r.title for r in store.list_artifacts(other_tag)] == ["beta"]
        assert len(store.list_artifacts()) == 2

    def test_list_artifacts_preserves_extractor_order(
        self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag
    ) -> None:
        store.put_artifact(entry, [_snippet("z", 0), _snippet("a", 5), _snippet("m", 9)])
        store.add_association(entry, tag)

        assert [r.title for r in store.list_artifacts(tag)] == ["z", "a", "m"]

    def test_get_snippet_by_id(self, store: SnippetStore, entry: PathAndCacheKey, tag: Tag) -> None:
        store.put_artifact(entry, [_snippet("a")])
        store.add_association(entry, tag)
        (record,) = store.list_artifacts(tag)

        fetched = store.get_snippet(record.id)
        assert fetched is not None
        assert fetched.signature == "def a()"
        assert store.get_snippet(record.id + 1000) is None

    def test_paths_and_signatures_pages_by_path(self, store: SnippetStore, tag: Tag) -> None:
        for name in ("a", "b", "c"):
            key = PathAndCacheKey(f"/workspace/repo/{name}.py", f"k-{name}")
            store.put_artifact(key, [_snippet(f"{name}1"), _snippet(f"{name}2", 4)])
            store.add_association(key, tag)

        first = store.paths_and_signatures(tag, offset=0, limit=2)
        second = store.paths_and_signatures(tag, offset=2, limit=2)

        assert first.has_more is True
        assert list(first.signatures) == ["/workspace/repo/a.py", "/workspace/repo/b.py"]
        assert first.signatures["/workspace/repo/a.py"] == ["def a1()", "def a2()"]
        assert second.has_more is False
        assert list(second.signatures) == ["/workspace/repo/c.py"]

    def test_paths_and_signatures_ignores_other_tags_content(
        self, store: SnippetStore, tag: Tag, other_tag: Tag
    ) -> None:
        """Only the cache key tagged in this tag contributes signatures."""
        old = PathAndCacheKey("/workspace/repo/a.py", "old")
        new = PathAndCacheKey("/workspace/repo/a.py", "new")
        store.put_artifact(old, [_snippet("before")])
        store.put_artifact(new, [_snippet("after")])
        store.add_association(old, other_tag)
        store.add_association(new, tag)

        page = store.paths_and_signatures(tag, offset=0, limit=10)

        assert page.signatures == {"/workspace/repo/a.py": ["def after()"]}
