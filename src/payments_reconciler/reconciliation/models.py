"""Models for payment reconciliation."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..database.models import (
    PaymentProvider,
    ReconciliationReason,
    ReconciliationStatus,
)
from ..timeutils import ensure_naive_utc


class IntentSnapshot(BaseModel):
    """The fields of a payment intent the reconciler compares."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    status: str
    amount: Decimal
    currency: str
    provider_reference: Optional[str] = None
    checkout_request_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    is_finalized: bool = False
    invoice_id: Optional[str] = None

    @property
    def reference(self) -> Optional[str]:
        """Checkout request id for Mpesa, provider reference otherwise."""
        if self.provider == PaymentProvider.MPESA.value:
            return self.checkout_request_id
        return self.provider_reference


class ProviderTransactionSnapshot(BaseModel):
    """A provider-side transaction as seen by the reconciler."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Internal row id of the provider transaction")
    provider: str
    provider_transaction_id: str = Field(..., description="Transaction ID from the provider")
    reference: Optional[str] = None
    status: str
    amount: Decimal
    currency: str
    paid_at: Optional[datetime] = None


class ItemDraft(BaseModel):
    """A classified finding, before it is persisted under a run."""
    provider: str
    reference: Optional[str] = None
    payment_intent_id: Optional[str] = None
    provider_transaction_ref_id: Optional[str] = None
    invoice_id: Optional[str] = None
    status: ReconciliationStatus
    reason: ReconciliationReason = ReconciliationReason.NONE
    details: str = ""


class ReconciliationRequest(BaseModel):
    """Request model for starting a reconciliation run."""
    from_utc: datetime = Field(..., description="Start of time range to reconcile (inclusive)")
    to_utc: datetime = Field(..., description="End of time range to reconcile (exclusive)")
    provider: Optional[PaymentProvider] = Field(default=None, description="Optional provider filter")

    @field_validator("from_utc", "to_utc")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return ensure_naive_utc(value)


class ReconciliationRunSummary(BaseModel):
    """Outcome of one reconciliation run with per-status counts."""
    run_id: str
    provider: Optional[str] = None
    from_utc: datetime
    to_utc: datetime
    mode: str
    created_at: datetime
    total_intents: int = 0
    total_provider_transactions: int = 0
    total_items: int = 0
    matched: int = 0
    needs_review: int = 0
    mismatch: int = 0
    missing_internal_intent: int = 0
    missing_provider_transaction: int = 0
    duplicate: int = 0
    finalizer_failed: int = 0
    manually_resolved: int = 0
    items: List[ItemDraft] = Field(default_factory=list)

    @property
    def issues(self) -> int:
        """Items that need attention (everything except matched and manually resolved)."""
        return self.total_items - self.matched - self.manually_resolved

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return the summary without the item list."""
        return {
            "run_id": self.run_id,
            "provider": self.provider,
            "from_utc": self.from_utc.isoformat(),
            "to_utc": self.to_utc.isoformat(),
            "mode": self.mode,
            "created_at": self.created_at.isoformat(),
            "statistics": {
                "total_intents": self.total_intents,
                "total_provider_transactions": self.total_provider_transactions,
                "total_items": self.total_items,
                "issues": self.issues,
            },
            "counts": status_counts_dict(self),
        }

    def to_full_dict(self) -> Dict[str, Any]:
        result = self.to_summary_dict()
        result["items"] = [item.model_dump(mode="json") for item in self.items]
        return result


def status_counts_dict(source: Any) -> Dict[str, int]:
    return {status.value: getattr(source, status.value, 0) for status in ReconciliationStatus}


class ManualReconcileRequest(BaseModel):
    """Operator-supplied facts used to force an intent into agreement with the provider."""
    payment_intent_id: str = Field(..., description="Payment intent to resolve")
    provider: PaymentProvider
    amount: Decimal
    currency: str
    reference: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    paid_at_utc: datetime
    channel: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("paid_at_utc")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return ensure_naive_utc(value)


class ReportFilters(BaseModel):
    """Filters and paging for the reconciliation report."""
    from_utc: datetime
    to_utc: datetime
    provider: Optional[PaymentProvider] = None
    status: Optional[ReconciliationStatus] = None
    reason: Optional[ReconciliationReason] = None
    skip: int = 0
    take: int = 50

    @field_validator("from_utc", "to_utc")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return ensure_naive_utc(value)


class ReportRow(BaseModel):
    """One reconciliation item joined with its payment intent."""
    item_id: str
    run_id: str
    created_at: datetime
    provider: str
    reference: Optional[str] = None
    status: str
    reason: str
    details: Optional[str] = None
    payment_intent_id: Optional[str] = None
    provider_transaction_ref_id: Optional[str] = None
    invoice_id: Optional[str] = None
    intent_amount: Optional[Decimal] = None
    intent_currency: Optional[str] = None
    intent_status: Optional[str] = None
    intent_is_finalized: Optional[bool] = None
    intent_purpose: Optional[str] = None
    user_id: Optional[str] = None
    institution_id: Optional[str] = None


class ReconciliationReportPage(BaseModel):
    """A page of report rows with totals over the whole filtered set."""
    from_utc: datetime
    to_utc: datetime
    total: int = 0
    skip: int = 0
    take: int = 50
    matched: int = 0
    needs_review: int = 0
    mismatch: int = 0
    missing_internal_intent: int = 0
    missing_provider_transaction: int = 0
    duplicate: int = 0
    finalizer_failed: int = 0
    manually_resolved: int = 0
    rows: List[ReportRow] = Field(default_factory=list)
