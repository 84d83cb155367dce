"""Reconciliation of refresh diffs into the snippet store."""

from tagindex.index._internal.reconcile.engine import (
    FileReader,
    MarkComplete,
    ReconcileResult,
    SnippetReconciler,
)

__all__ = ["FileReader", "MarkComplete", "ReconcileResult", "SnippetReconciler"]
