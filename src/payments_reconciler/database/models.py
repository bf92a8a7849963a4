"""SQLAlchemy models for the payment record store."""

import uuid
import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    ForeignKey,
    Numeric,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from ..timeutils import utcnow

MONEY = Numeric(18, 4, asdecimal=True)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentProvider(str, enum.Enum):
    """Payment providers. Mpesa references payments by checkout request id."""
    MPESA = "mpesa"
    PAYSTACK = "paystack"
    MANUAL = "manual"


class PaymentPurpose(str, enum.Enum):
    """What a payment intent collects money for."""
    PUBLIC_SIGNUP_FEE = "public_signup_fee"
    PUBLIC_PRODUCT_PURCHASE = "public_product_purchase"
    PUBLIC_PRODUCT_SUBSCRIPTION = "public_product_subscription"
    INSTITUTION_PRODUCT_SUBSCRIPTION = "institution_product_subscription"
    PUBLIC_LEGAL_DOCUMENT_PURCHASE = "public_legal_document_purchase"


class PaymentStatus(str, enum.Enum):
    """Internal payment intent statuses."""
    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProviderTransactionStatus(str, enum.Enum):
    """Provider-side transaction statuses."""
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"


class ReconciliationMode(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ReconciliationStatus(str, enum.Enum):
    """Classification of a single reconciliation item."""
    MATCHED = "matched"
    NEEDS_REVIEW = "needs_review"
    MISMATCH = "mismatch"
    MISSING_INTERNAL_INTENT = "missing_internal_intent"
    MISSING_PROVIDER_TRANSACTION = "missing_provider_transaction"
    DUPLICATE = "duplicate"
    FINALIZER_FAILED = "finalizer_failed"
    MANUALLY_RESOLVED = "manually_resolved"


class ReconciliationReason(str, enum.Enum):
    """Why an item received its status."""
    AMOUNT_MISMATCH = "amount_mismatch"
    CURRENCY_MISMATCH = "currency_mismatch"
    STATUS_MISMATCH = "status_mismatch"
    NO_PAYMENT_INTENT_FOR_REFERENCE = "no_payment_intent_for_reference"
    NO_PROVIDER_TRANSACTION_FOR_INTENT = "no_provider_transaction_for_intent"
    DUPLICATE_REFERENCE = "duplicate_reference"
    FINALIZATION_ERROR = "finalization_error"
    MANUAL_OVERRIDE = "manual_override"
    NONE = "none"


class BillingPeriod(str, enum.Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    VOID = "void"


class PaymentIntent(Base):
    """A request to collect money for a specific purpose.

    Exactly one correlation field is populated, depending on ``purpose``.
    ``is_finalized`` flips to True once, inside the unit of work that applies
    the domain effect.
    """
    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentProvider.MPESA.value)
    purpose: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=PaymentStatus.PENDING.value)

    # Correlation
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    institution_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    registration_intent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("registration_intents.id"), nullable=True
    )
    content_product_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    content_product_price_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    legal_document_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    duration_in_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="KES")

    # Provider linkage
    provider_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    checkout_request_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    merchant_request_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider_paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    provider_channel: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    provider_result_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    provider_result_desc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    manual_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    # Lifecycle
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    invoice_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("invoices.id"), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    invoice: Mapped[Optional["Invoice"]] = relationship("Invoice")

    __table_args__ = (
        UniqueConstraint("provider", "provider_reference", name="uq_payment_intents_provider_reference"),
        UniqueConstraint("provider", "provider_transaction_id", name="uq_payment_intents_provider_transaction_id"),
        Index("ix_payment_intents_status_finalized", "status", "is_finalized"),
        Index("ix_payment_intents_created_at", "created_at"),
    )

    @property
    def reconciliation_reference(self) -> Optional[str]:
        """Reference used to match provider transactions.

        Mpesa payments are referenced by checkout request id, other providers
        by their direct reference.
        """
        if self.provider == PaymentProvider.MPESA.value:
            return self.checkout_request_id
        return self.provider_reference

    @property
    def payment_reference(self) -> str:
        """Strongest human-facing reference for the payment, used on purchase records."""
        for value in (
            self.mpesa_receipt_number,
            self.manual_reference,
            self.checkout_request_id,
            self.provider_reference,
        ):
            if value and value.strip():
                return value
        return "PAYMENT"

    def to_dict(self) -> Dict[str, Any]:
        """Convert the intent to a dictionary representation."""
        return {
            "id": self.id,
            "provider": self.provider,
            "purpose": self.purpose,
            "status": self.status,
            "amount": str(self.amount),
            "currency": self.currency,
            "user_id": self.user_id,
            "institution_id": self.institution_id,
            "provider_reference": self.provider_reference,
            "checkout_request_id": self.checkout_request_id,
            "provider_transaction_id": self.provider_transaction_id,
            "is_finalized": self.is_finalized,
            "invoice_id": self.invoice_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProviderTransaction(Base):
    """Latest known provider-side state of a settled transaction."""
    __tablename__ = "payment_provider_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reference: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProviderTransactionStatus.UNKNOWN.value)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="KES")
    channel: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False, default="")
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("provider", "provider_transaction_id", name="uq_provider_transactions_provider_txid"),
        Index("ix_provider_transactions_reference", "provider", "reference"),
    )


class ReconciliationRun(Base):
    """One invocation of the reconciliation engine. Immutable once written."""
    __tablename__ = "payment_reconciliation_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    from_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    to_utc: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    performed_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default=ReconciliationMode.AUTO.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    items: Mapped[List["ReconciliationItem"]] = relationship(
        "ReconciliationItem",
        back_populates="run",
        order_by="ReconciliationItem.created_at",
    )


class ReconciliationItem(Base):
    """One classified discrepancy (or match) produced by a run. Append-only."""
    __tablename__ = "payment_reconciliation_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("payment_reconciliation_runs.id"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("payment_intents.id"), nullable=True
    )
    provider_transaction_ref_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("payment_provider_transactions.id"), nullable=True
    )
    invoice_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("invoices.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False, default=ReconciliationReason.NONE.value)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    run: Mapped["ReconciliationRun"] = relationship("ReconciliationRun", back_populates="items")
    payment_intent: Mapped[Optional["PaymentIntent"]] = relationship("PaymentIntent")

    __table_args__ = (
        Index("ix_reconciliation_items_created_at", "created_at"),
        Index("ix_reconciliation_items_status", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "provider": self.provider,
            "reference": self.reference,
            "payment_intent_id": self.payment_intent_id,
            "provider_transaction_ref_id": self.provider_transaction_ref_id,
            "invoice_id": self.invoice_id,
            "status": self.status,
            "reason": self.reason,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Invoice(Base):
    """Financial record for a successful payment. Total equals the sum of line totals."""
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    invoice_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceStatus.ISSUED.value)
    purpose: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="KES")
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    discount_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    institution_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    lines: Mapped[List["InvoiceLine"]] = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    invoice_id: Mapped[str] = mapped_column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    item_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    line_subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    content_product_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    legal_document_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="lines")


class InvoiceSequence(Base):
    """Last issued invoice number for one calendar year."""
    __tablename__ = "invoice_sequences"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class RegistrationIntent(Base):
    """Pending sign-up awaiting its signup fee."""
    __tablename__ = "registration_intents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class PricingPlan(Base):
    """Price plan of a content product, scoped by billing period and effective window."""
    __tablename__ = "content_product_prices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    content_product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    billing_period: Mapped[str] = mapped_column(String(20), nullable=False, default=BillingPeriod.MONTHLY.value)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="KES")
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_from_utc: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    effective_to_utc: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class UserProductSubscription(Base):
    __tablename__ = "user_product_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content_product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SubscriptionStatus.PENDING.value)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_trial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    granted_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "content_product_id", name="uq_user_product_subscriptions_user_product"),
    )


class LegalDocumentOwnership(Base):
    """Ownership record created when a legal document purchase is fulfilled."""
    __tablename__ = "user_legal_document_purchases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    legal_document_id: Mapped[str] = mapped_column(String(36), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="KES")
    payment_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "legal_document_id", name="uq_legal_document_purchases_user_document"),
    )
