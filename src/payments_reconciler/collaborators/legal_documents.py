"""Database-backed fulfillment of legal document purchases."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PaymentIntent, PaymentPurpose, PaymentStatus
from ..database.repository import LegalDocumentOwnershipRepository, PaymentIntentRepository
from ..errors import ValidationFailure
from .base import LegalDocumentFulfillment

logger = logging.getLogger(__name__)


class LegalDocumentFulfillmentService(LegalDocumentFulfillment):
    """
    Grants ownership of a purchased legal document.

    Idempotency is keyed on the ownership record rather than on
    ``is_finalized``, so an intent finalized without an ownership row still
    gets one when healing retries it.
    """

    async def fulfill(self, session: AsyncSession, intent: PaymentIntent) -> None:
        if intent.purpose != PaymentPurpose.PUBLIC_LEGAL_DOCUMENT_PURCHASE.value:
            raise ValidationFailure(
                f"Payment intent {intent.id} is not a legal document purchase."
            )
        if intent.status != PaymentStatus.SUCCESS.value:
            raise ValidationFailure("Payment not successful.")
        if not intent.user_id or not intent.legal_document_id:
            raise ValidationFailure(
                f"Payment intent {intent.id} is missing the user or legal document."
            )

        ownership = LegalDocumentOwnershipRepository(session)
        if await ownership.exists(intent.user_id, intent.legal_document_id):
            logger.info(
                f"Legal document {intent.legal_document_id} already owned by user {intent.user_id}"
            )
        else:
            await ownership.create(
                user_id=intent.user_id,
                legal_document_id=intent.legal_document_id,
                amount=intent.amount,
                currency=intent.currency,
                payment_reference=intent.payment_reference,
            )

        if not intent.is_finalized:
            await PaymentIntentRepository(session).mark_finalized(intent)
