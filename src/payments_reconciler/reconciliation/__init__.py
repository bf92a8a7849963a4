"""Reconciliation module for payment intents.

This module reconciles the internal record of payments against the
providers' record of the same payments.

Features:
- Classify every provider transaction and successful intent in a window
- Persist append-only runs and items for audit
- Manual override for gaps the automatic pass cannot close
- Paginated, filterable report with status counts
"""

from .models import (
    IntentSnapshot,
    ProviderTransactionSnapshot,
    ItemDraft,
    ReconciliationRequest,
    ReconciliationRunSummary,
    ManualReconcileRequest,
    ReportFilters,
    ReportRow,
    ReconciliationReportPage,
)
from .reconciler import Reconciler, index_key
from .service import ReconciliationService
from .report import ReportGenerator

__all__ = [
    # Models
    "IntentSnapshot",
    "ProviderTransactionSnapshot",
    "ItemDraft",
    "ReconciliationRequest",
    "ReconciliationRunSummary",
    "ManualReconcileRequest",
    "ReportFilters",
    "ReportRow",
    "ReconciliationReportPage",
    # Core Components
    "Reconciler",
    "index_key",
    "ReconciliationService",
    "ReportGenerator",
]
