"""Shared fixtures for index tests."""

from __future__ import annotations

import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from tagindex.index.models import PathAndCacheKey, Snippet, Tag

if TYPE_CHECKING:
    from tagindex.index._internal.db import Database, SnippetStore


class RecordingExtractor:
    """Extractor returning one snippet per file and recording every call."""

    def __init__(self, title: str = "") -> None:
        self.title = title
        self.calls: list[str] = []

    def extract(self, path: str, contents: str) -> list[Snippet]:
        self.calls.append(path)
        return [
            Snippet(
                title=self.title,
                content=contents,
                signature=contents.split("\n", 1)[0],
                start_line=0,
                end_line=max(contents.count("\n") - 1, 0),
            )
        ]


class FakeFiles:
    """In-memory file reader for the reconciler."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files = dict(files or {})

    def __call__(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path) from None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with schema."""
    from tagindex.index._internal.db import Database

    db = Database(temp_dir / "test.db")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def store(temp_db: Database) -> SnippetStore:
    from tagindex.index._internal.db import SnippetStore

    return SnippetStore(temp_db)


@pytest.fixture
def tag() -> Tag:
    return Tag("/workspace/repo", "main")


@pytest.fixture
def other_tag() -> Tag:
    return Tag("/workspace/repo", "feature")


@pytest.fixture
def entry() -> PathAndCacheKey:
    return PathAndCacheKey("/workspace/repo/src/app.py", "cafe01")


@pytest.fixture
def extractor() -> RecordingExtractor:
    return RecordingExtractor()


@pytest.fixture
def files() -> FakeFiles:
    return FakeFiles()
