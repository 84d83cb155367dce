"""Tree-sitter snippet extractor.

Yields one snippet per top-level or nested definition (functions, classes,
methods, interfaces, ...). Grammars are separate PyPI packages
(``tree-sitter-python``, ``tree-sitter-go``, ...) loaded lazily; a file whose
grammar is not installed fails with ExtractionError and is skipped by the
reconciler.
"""

from __future__ import annotations

import importlib
import threading
from dataclasses import dataclass
from typing import Any

import structlog
import tree_sitter

from tagindex.core.errors import ExtractionError
from tagindex.index._internal.extraction import file_suffix
from tagindex.index.models import Snippet

logger = structlog.get_logger()


@dataclass(frozen=True)
class GrammarSpec:
    """How to load one grammar and which node types are definitions."""

    name: str
    module: str
    definitions: frozenset[str]
    language_func: str = "language"


_PYTHON = GrammarSpec(
    name="python",
    module="tree_sitter_python",
    definitions=frozenset({"function_definition", "class_definition"}),
)
_JS_DEFINITIONS = frozenset(
    {
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "method_definition",
    }
)
_JAVASCRIPT = GrammarSpec(
    name="javascript",
    module="tree_sitter_javascript",
    definitions=_JS_DEFINITIONS,
)
_TS_DEFINITIONS = _JS_DEFINITIONS | {"abstract_class_declaration", "interface_declaration"}
_TYPESCRIPT = GrammarSpec(
    name="typescript",
    module="tree_sitter_typescript",
    definitions=_TS_DEFINITIONS,
    language_func="language_typescript",
)
_TSX = GrammarSpec(
    name="tsx",
    module="tree_sitter_typescript",
    definitions=_TS_DEFINITIONS,
    language_func="language_tsx",
)
_GO = GrammarSpec(
    name="go",
    module="tree_sitter_go",
    definitions=frozenset({"function_declaration", "method_declaration"}),
)
_RUST = GrammarSpec(
    name="rust",
    module="tree_sitter_rust",
    definitions=frozenset(
        {"function_item", "struct_item", "enum_item", "trait_item", "impl_item"}
    ),
)
_JAVA = GrammarSpec(
    name="java",
    module="tree_sitter_java",
    definitions=frozenset(
        {
            "class_declaration",
            "interface_declaration",
            "enum_declaration",
            "method_declaration",
            "constructor_declaration",
        }
    ),
)

LANGUAGES_BY_SUFFIX: dict[str, GrammarSpec] = {
    ".py": _PYTHON,
    ".pyi": _PYTHON,
    ".js": _JAVASCRIPT,
    ".jsx": _JAVASCRIPT,
    ".mjs": _JAVASCRIPT,
    ".cjs": _JAVASCRIPT,
    ".ts": _TYPESCRIPT,
    ".mts": _TYPESCRIPT,
    ".tsx": _TSX,
    ".go": _GO,
    ".rs": _RUST,
    ".java": _JAVA,
}

# impl blocks have no name; the implemented type is the best title
_TITLE_FIELDS = ("name", "type", "declarator")


class TreeSitterSnippetExtractor:
    """Definition-level snippet extractor backed by tree-sitter grammars.

    Language objects are cached per grammar; a fresh Parser is created per
    call so one extractor can serve several threads.
    """

    def __init__(self, languages: dict[str, GrammarSpec] | None = None) -> None:
        self._grammars = languages if languages is not None else LANGUAGES_BY_SUFFIX
        self._languages: dict[str, Any] = {}
        self._lock = threading.Lock()

    def extract(self, path: str, contents: str) -> list[Snippet]:
        grammar = self._grammars.get(file_suffix(path))
        if grammar is None:
            return []

        language = self._get_language(grammar, path)
        parser = tree_sitter.Parser(language)
        source = contents.encode("utf-8")
        tree = parser.parse(source)

        snippets: list[Snippet] = []
        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            if node.type in grammar.definitions:
                snippet = self._to_snippet(node, source)
                if snippet is not None:
                    snippets.append(snippet)
            # Reversed so definitions come out in document order
            stack.extend(reversed(node.children))
        return snippets

    def _get_language(self, grammar: GrammarSpec, path: str) -> Any:
        with self._lock:
            cached = self._languages.get(grammar.name)
            if cached is not None:
                return cached
            try:
                module = importlib.import_module(grammar.module)
                language = tree_sitter.Language(getattr(module, grammar.language_func)())
            except (ImportError, AttributeError) as e:
                raise ExtractionError.failed(
                    path, f"grammar {grammar.module} not available: {e}"
                ) from e
            self._languages[grammar.name] = language
            logger.debug("grammar_loaded", language=grammar.name)
            return language

    @staticmethod
    def _text(source: bytes, start: int, end: int) -> str:
        return source[start:end].decode("utf-8", errors="replace")

    def _to_snippet(self, node: Any, source: bytes) -> Snippet | None:
        title_node = None
        for field_name in _TITLE_FIELDS:
            title_node = node.child_by_field_name(field_name)
            if title_node is not None:
                break
        if title_node is None:
            return None

        content = self._text(source, node.start_byte, node.end_byte)
        body = node.child_by_field_name("body")
        if body is not None:
            signature = self._text(source, node.start_byte, body.start_byte)
        else:
            signature = content.split("\n", 1)[0]
        signature = signature.rstrip().rstrip("{:").rstrip()

        return Snippet(
            title=self._text(source, title_node.start_byte, title_node.end_byte),
            content=content,
            signature=signature,
            start_line=node.start_point[0],
            end_line=node.end_point[0],
        )
