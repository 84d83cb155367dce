"""Unit tests for the tree-sitter snippet extractor."""

from __future__ import annotations

import pytest

from tagindex.core.errors import ErrorCode, ExtractionError
from tagindex.index._internal.extraction import default_registry
from tagindex.index._internal.extraction.treesitter import (
    LANGUAGES_BY_SUFFIX,
    GrammarSpec,
    TreeSitterSnippetExtractor,
)

PYTHON_SOURCE = '''\
import os


def top_level(a, b=1):
    return a + b


class Greeter(Base):
    """Says hello."""

    def greet(self, name: str) -> str:
        return f"hello {name}"
'''

GO_SOURCE = """\
package main

func Add(a int, b int) int {
	return a + b
}
"""


class TestPythonExtraction:
    @pytest.fixture(autouse=True)
    def _grammar(self) -> None:
        pytest.importorskip("tree_sitter_python")

    def test_extracts_definitions_in_document_order(self) -> None:
        snippets = TreeSitterSnippetExtractor().extract("pkg/mod.py", PYTHON_SOURCE)

        assert [s.title for s in snippets] == ["top_level", "Greeter", "greet"]

    def test_signature_stops_at_body(self) -> None:
        snippets = TreeSitterSnippetExtractor().extract("pkg/mod.py", PYTHON_SOURCE)
        by_title = {s.title: s for s in snippets}

        assert by_title["top_level"].signature == "def top_level(a, b=1)"
        assert by_title["Greeter"].signature == "class Greeter(Base)"
        assert by_title["greet"].signature == "def greet(self, name: str) -> str"

    def test_lines_are_zero_based_and_inclusive(self) -> None:
        snippets = TreeSitterSnippetExtractor().extract("pkg/mod.py", PYTHON_SOURCE)
        by_title = {s.title: s for s in snippets}

        assert (by_title["top_level"].start_line, by_title["top_level"].end_line) == (3, 4)
        assert by_title["greet"].content.startswith("def greet")

    def test_deterministic_for_identical_contents(self) -> None:
        extractor = TreeSitterSnippetExtractor()

        assert extractor.extract("a.py", PYTHON_SOURCE) == extractor.extract("a.py", PYTHON_SOURCE)

    def test_file_without_definitions_yields_nothing(self) -> None:
        assert TreeSitterSnippetExtractor().extract("a.py", "x = 1\n") == []


class TestGoExtraction:
    def test_function_declaration(self) -> None:
        pytest.importorskip("tree_sitter_go")

        (snippet,) = TreeSitterSnippetExtractor().extract("main.go", GO_SOURCE)

        assert snippet.title == "Add"
        assert snippet.signature == "func Add(a int, b int) int"
        assert (snippet.start_line, snippet.end_line) == (2, 4)


class TestMissingGrammar:
    def test_unknown_suffix_yields_nothing(self) -> None:
        assert TreeSitterSnippetExtractor().extract("README.md", "# hi") == []

    def test_uninstalled_grammar_raises_extraction_error(self) -> None:
        grammar = GrammarSpec(
            name="nonexistent",
            module="tree_sitter_does_not_exist",
            definitions=frozenset({"function_definition"}),
        )
        extractor = TreeSitterSnippetExtractor({".xyz": grammar})

        with pytest.raises(ExtractionError) as exc_info:
            extractor.extract("a.xyz", "anything")

        assert exc_info.value.code == ErrorCode.EXTRACTION_FAILED
        assert exc_info.value.path == "a.xyz"


class TestDefaultRegistry:
    def test_registers_every_known_suffix(self) -> None:
        registry = default_registry()

        assert registry.suffixes == frozenset(LANGUAGES_BY_SUFFIX)
        assert isinstance(registry.get("x.py"), TreeSitterSnippetExtractor)
