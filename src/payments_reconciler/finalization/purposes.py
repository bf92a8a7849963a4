"""Domain effects of a successful payment, one variant per purpose.

Each variant carries exactly the fields its effect needs, so a missing
correlation id is reported when the variant is built rather than deep inside
the effect.
"""

from dataclasses import dataclass
from typing import Optional, Union

from ..database.models import PaymentIntent, PaymentPurpose
from ..errors import ValidationFailure


@dataclass(frozen=True)
class SignupFee:
    registration_intent_id: str


@dataclass(frozen=True)
class ProductPurchase:
    user_id: str
    content_product_id: str
    reference: str


@dataclass(frozen=True)
class UserSubscription:
    user_id: str
    content_product_id: str
    price_plan_id: Optional[str]
    legacy_duration_months: Optional[int]


@dataclass(frozen=True)
class InstitutionSubscription:
    institution_id: str
    content_product_id: str
    price_plan_id: Optional[str]
    legacy_duration_months: Optional[int]


@dataclass(frozen=True)
class LegalDocumentPurchase:
    """Fulfilled by the legal document collaborator, not by the finalizer.

    The ids are carried as stored; fulfillment validates them.
    """
    user_id: Optional[str]
    legal_document_id: Optional[str]


@dataclass(frozen=True)
class UnhandledPurpose:
    purpose: str


PurposeEffect = Union[
    SignupFee,
    ProductPurchase,
    UserSubscription,
    InstitutionSubscription,
    LegalDocumentPurchase,
    UnhandledPurpose,
]


def _require(intent: PaymentIntent, value: Optional[str], field_name: str) -> str:
    if not value:
        raise ValidationFailure(
            f"Payment intent {intent.id} ({intent.purpose}) is missing {field_name}."
        )
    return value


def effect_for_intent(intent: PaymentIntent) -> PurposeEffect:
    """Build the effect variant for an intent.

    Raises:
        ValidationFailure: A field the purpose requires is not set.
    """
    match intent.purpose:
        case PaymentPurpose.PUBLIC_SIGNUP_FEE.value:
            return SignupFee(
                registration_intent_id=_require(
                    intent, intent.registration_intent_id, "registration_intent_id"
                ),
            )
        case PaymentPurpose.PUBLIC_PRODUCT_PURCHASE.value:
            return ProductPurchase(
                user_id=_require(intent, intent.user_id, "user_id"),
                content_product_id=_require(intent, intent.content_product_id, "content_product_id"),
                reference=intent.payment_reference,
            )
        case PaymentPurpose.PUBLIC_PRODUCT_SUBSCRIPTION.value:
            return UserSubscription(
                user_id=_require(intent, intent.user_id, "user_id"),
                content_product_id=_require(intent, intent.content_product_id, "content_product_id"),
                price_plan_id=intent.content_product_price_id,
                legacy_duration_months=intent.duration_in_months,
            )
        case PaymentPurpose.INSTITUTION_PRODUCT_SUBSCRIPTION.value:
            return InstitutionSubscription(
                institution_id=_require(intent, intent.institution_id, "institution_id"),
                content_product_id=_require(intent, intent.content_product_id, "content_product_id"),
                price_plan_id=intent.content_product_price_id,
                legacy_duration_months=intent.duration_in_months,
            )
        case PaymentPurpose.PUBLIC_LEGAL_DOCUMENT_PURCHASE.value:
            return LegalDocumentPurchase(
                user_id=intent.user_id,
                legal_document_id=intent.legal_document_id,
            )
        case _:
            return UnhandledPurpose(purpose=intent.purpose)


def requires_legal_document_fulfillment(intent: PaymentIntent) -> bool:
    return intent.purpose == PaymentPurpose.PUBLIC_LEGAL_DOCUMENT_PURCHASE.value
