"""Finalization of successful payment intents."""

from .finalizer import FinalizerService
from .purposes import (
    PurposeEffect,
    SignupFee,
    ProductPurchase,
    UserSubscription,
    InstitutionSubscription,
    LegalDocumentPurchase,
    UnhandledPurpose,
    effect_for_intent,
    requires_legal_document_fulfillment,
)
from .subscriptions import (
    months_for_billing_period,
    resolve_subscription_months,
    create_or_extend_user_subscription,
)

__all__ = [
    "FinalizerService",
    "PurposeEffect",
    "SignupFee",
    "ProductPurchase",
    "UserSubscription",
    "InstitutionSubscription",
    "LegalDocumentPurchase",
    "UnhandledPurpose",
    "effect_for_intent",
    "requires_legal_document_fulfillment",
    "months_for_billing_period",
    "resolve_subscription_months",
    "create_or_extend_user_subscription",
]
