"""Snippet extraction protocol and registry.

Defines the interface for content-type specific snippet extractors and a
registry that picks one by file extension. Extractors are pure: identical
contents must yield identical snippets.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import PurePosixPath
from typing import Protocol, runtime_checkable

from tagindex.index.models import Snippet


@runtime_checkable
class SnippetExtractor(Protocol):
    """Protocol for snippet extraction.

    Implementations raise ExtractionError for content they cannot handle;
    any other exception is treated the same way by the reconciler.
    """

    def extract(self, path: str, contents: str) -> list[Snippet]:
        """Return the snippets found in contents (possibly none)."""
        ...


class NullExtractor:
    """Extractor for content types nothing else claims: no snippets."""

    def extract(self, path: str, contents: str) -> list[Snippet]:  # noqa: ARG002
        return []


def file_suffix(path: str) -> str:
    """Lower-cased extension of path, including the dot ("" if none)."""
    # Paths may arrive as URIs or Windows paths; only the extension matters.
    name = PurePosixPath(path.replace("\\", "/")).name
    dot = name.rfind(".")
    return name[dot:].lower() if dot > 0 else ""


class ExtractorRegistry:
    """Maps file extensions to extractors, with a fallback for the rest.

    Usage::

        registry = ExtractorRegistry()
        registry.register(TreeSitterSnippetExtractor(), [".py", ".go"])
        snippets = registry.extract("src/app.py", contents)
    """

    def __init__(self, fallback: SnippetExtractor | None = None) -> None:
        self._by_suffix: dict[str, SnippetExtractor] = {}
        self._fallback: SnippetExtractor = fallback or NullExtractor()

    def register(self, extractor: SnippetExtractor, suffixes: Iterable[str]) -> None:
        for suffix in suffixes:
            normalized = suffix.lower() if suffix.startswith(".") else f".{suffix.lower()}"
            self._by_suffix[normalized] = extractor

    def get(self, path: str) -> SnippetExtractor:
        return self._by_suffix.get(file_suffix(path), self._fallback)

    @property
    def suffixes(self) -> frozenset[str]:
        return frozenset(self._by_suffix)

    def extract(self, path: str, contents: str) -> list[Snippet]:
        return list(self.get(path).extract(path, contents))


def default_registry() -> ExtractorRegistry:
    """Registry with the tree-sitter extractor for every language it knows."""
    from tagindex.index._internal.extraction.treesitter import (
        LANGUAGES_BY_SUFFIX,
        TreeSitterSnippetExtractor,
    )

    registry = ExtractorRegistry()
    registry.register(TreeSitterSnippetExtractor(), LANGUAGES_BY_SUFFIX)
    return registry


__all__ = [
    "ExtractorRegistry",
    "NullExtractor",
    "SnippetExtractor",
    "default_registry",
    "file_suffix",
]
