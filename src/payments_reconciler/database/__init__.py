"""Database module for the payment record store."""

from .models import (
    Base,
    PaymentIntent,
    ProviderTransaction,
    ReconciliationRun,
    ReconciliationItem,
    Invoice,
    InvoiceLine,
    InvoiceSequence,
    RegistrationIntent,
    PricingPlan,
    UserProductSubscription,
    LegalDocumentOwnership,
    PaymentProvider,
    PaymentPurpose,
    PaymentStatus,
    ProviderTransactionStatus,
    ReconciliationMode,
    ReconciliationStatus,
    ReconciliationReason,
    BillingPeriod,
    SubscriptionStatus,
    InvoiceStatus,
)
from .session import (
    get_database_url,
    create_async_engine,
    create_session_factory,
    begin_locked,
    is_sqlite_memory,
    DatabaseManager,
)
from .repository import (
    PaymentIntentRepository,
    ProviderTransactionRepository,
    ReconciliationRepository,
    PricingPlanRepository,
    SubscriptionRepository,
    LegalDocumentOwnershipRepository,
    RegistrationIntentRepository,
)

__all__ = [
    # Models
    "Base",
    "PaymentIntent",
    "ProviderTransaction",
    "ReconciliationRun",
    "ReconciliationItem",
    "Invoice",
    "InvoiceLine",
    "InvoiceSequence",
    "RegistrationIntent",
    "PricingPlan",
    "UserProductSubscription",
    "LegalDocumentOwnership",
    # Enums
    "PaymentProvider",
    "PaymentPurpose",
    "PaymentStatus",
    "ProviderTransactionStatus",
    "ReconciliationMode",
    "ReconciliationStatus",
    "ReconciliationReason",
    "BillingPeriod",
    "SubscriptionStatus",
    "InvoiceStatus",
    # Session management
    "get_database_url",
    "create_async_engine",
    "create_session_factory",
    "begin_locked",
    "is_sqlite_memory",
    "DatabaseManager",
    # Repositories
    "PaymentIntentRepository",
    "ProviderTransactionRepository",
    "ReconciliationRepository",
    "PricingPlanRepository",
    "SubscriptionRepository",
    "LegalDocumentOwnershipRepository",
    "RegistrationIntentRepository",
]
