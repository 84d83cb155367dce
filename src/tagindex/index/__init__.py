"""Index module - tag-scoped code snippet index.

This module provides:
- Content store: snippets addressed by (path, cache_key), shared by tags
- Reconciliation: applies planner diffs in batches with per-batch acknowledgment
- Extraction: pluggable per file extension, tree-sitter by default

Public API is in `tagindex.index.ops`:
- CodeSnippetsIndex: High-level entry point
- ReconcileResult: Result type of an update

Internal implementations are in `tagindex.index._internal/`.
"""

from tagindex.index._internal.db import Database, SnippetStore
from tagindex.index._internal.extraction import (
    ExtractorRegistry,
    NullExtractor,
    SnippetExtractor,
    default_registry,
)
from tagindex.index._internal.reconcile import (
    MarkComplete,
    ReconcileResult,
    SnippetReconciler,
)
from tagindex.index.models import (
    PROCESSING_ORDER,
    AssociationRecord,
    CodeSnippet,
    CodeSnippetTag,
    CompletionEvent,
    IndexResultType,
    PathAndCacheKey,
    PathsAndSignatures,
    RefreshDiff,
    Snippet,
    SnippetRecord,
    SnippetSource,
    Tag,
)
from tagindex.index.ops import CodeSnippetsIndex

__all__ = [
    # Public API (ops.py)
    "CodeSnippetsIndex",
    "ReconcileResult",
    "MarkComplete",
    # Components
    "Database",
    "SnippetStore",
    "SnippetReconciler",
    "ExtractorRegistry",
    "NullExtractor",
    "SnippetExtractor",
    "default_registry",
    # Enums
    "IndexResultType",
    "PROCESSING_ORDER",
    # Value types
    "Tag",
    "PathAndCacheKey",
    "Snippet",
    "RefreshDiff",
    "CompletionEvent",
    # Table models
    "SnippetSource",
    "CodeSnippet",
    "CodeSnippetTag",
    # Read models
    "SnippetRecord",
    "AssociationRecord",
    "PathsAndSignatures",
]
