"""Unit tests for the extractor registry."""

from __future__ import annotations

import pytest

from tagindex.index._internal.extraction import (
    ExtractorRegistry,
    NullExtractor,
    SnippetExtractor,
    file_suffix,
)
from tagindex.index.models import Snippet


class _ConstantExtractor:
    def __init__(self, title: str) -> None:
        self.title = title

    def extract(self, path: str, contents: str) -> list[Snippet]:
        return [Snippet(self.title, contents, self.title, 0, 0)]


class TestFileSuffix:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("src/app.py", ".py"),
            ("src/App.TSX", ".tsx"),
            ("file:///repo/main.go", ".go"),
            ("C:\\repo\\lib.rs", ".rs"),
            ("Makefile", ""),
            (".gitignore", ""),
            ("archive.tar.gz", ".gz"),
        ],
    )
    def test_suffix(self, path: str, expected: str) -> None:
        assert file_suffix(path) == expected


class TestExtractorRegistry:
    def test_dispatches_by_suffix(self) -> None:
        registry = ExtractorRegistry()
        registry.register(_ConstantExtractor("py"), [".py"])
        registry.register(_ConstantExtractor("go"), ["go"])

        assert registry.extract("a.py", "x")[0].title == "py"
        assert registry.extract("b.GO", "x")[0].title == "go"
        assert registry.suffixes == frozenset({".py", ".go"})

    def test_unknown_suffix_uses_null_fallback(self) -> None:
        registry = ExtractorRegistry()

        assert isinstance(registry.get("notes.txt"), NullExtractor)
        assert registry.extract("notes.txt", "hello") == []

    def test_custom_fallback(self) -> None:
        registry = ExtractorRegistry(fallback=_ConstantExtractor("any"))

        assert registry.extract("notes.txt", "hello")[0].title == "any"

    def test_later_registration_wins(self) -> None:
        registry = ExtractorRegistry()
        registry.register(_ConstantExtractor("first"), [".py"])
        registry.register(_ConstantExtractor("second"), [".py"])

        assert registry.extract("a.py", "")[0].title == "second"

    def test_protocol_is_structural(self) -> None:
        assert isinstance(_ConstantExtractor("x"), SnippetExtractor)
        assert isinstance(NullExtractor(), SnippetExtractor)
