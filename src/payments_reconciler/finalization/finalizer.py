"""Exactly-once application of a successful payment's domain effect."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..collaborators.base import Collaborators
from ..database.models import PaymentIntent, PaymentStatus
from ..database.repository import PaymentIntentRepository, RegistrationIntentRepository
from ..database.session import begin_locked
from ..errors import DomainEffectFailure, NotFound, ReconcilerError, ValidationFailure
from ..timeutils import utcnow
from .purposes import (
    InstitutionSubscription,
    LegalDocumentPurchase,
    ProductPurchase,
    SignupFee,
    UnhandledPurpose,
    UserSubscription,
    effect_for_intent,
)
from .subscriptions import create_or_extend_user_subscription, resolve_subscription_months

logger = logging.getLogger(__name__)


class FinalizerService:
    """
    Applies the domain effect of a successful payment intent exactly once.

    The finalized flag is set and flushed before the effect runs, in the same
    transaction and under a row lock on the intent. If the effect fails the
    flag rolls back with it, so healing can retry later.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Collaborators,
    ):
        self.session_factory = session_factory
        self.collaborators = collaborators

    async def finalize_if_needed(self, intent_id: str) -> bool:
        """Finalize an intent if it succeeded and has not been finalized yet.

        Args:
            intent_id: Payment intent ID.

        Returns:
            True when this call applied the effect, False when there was
            nothing to do.

        Raises:
            NotFound: No such intent.
            ValidationFailure: The intent lacks a field its purpose requires.
            DomainEffectFailure: A collaborator raised while applying the effect.
        """
        async with self.session_factory() as session:
            async with session.begin():
                await begin_locked(session)
                intents = PaymentIntentRepository(session)
                intent = await intents.get_by_id(intent_id, for_update=True)
                if intent is None:
                    raise NotFound("Payment intent", intent_id)
                if intent.status != PaymentStatus.SUCCESS.value:
                    logger.debug(f"Payment intent {intent_id} is {intent.status}, nothing to finalize")
                    return False
                if intent.is_finalized:
                    return False

                await intents.mark_finalized(intent)
                try:
                    await self._apply_effect(session, intent)
                except ReconcilerError:
                    raise
                except Exception as e:
                    logger.error(f"Domain effect failed for payment intent {intent_id}: {e}")
                    raise DomainEffectFailure(intent_id, str(e)) from e

        logger.info(f"Finalized payment intent {intent_id} ({intent.purpose})")
        return True

    async def finalize_payment_intent(
        self,
        intent_id: str,
        approver_id: Optional[str] = None,
    ) -> bool:
        """Operator-initiated finalization, optionally recording who approved it.

        Raises:
            NotFound: No such intent.
            ValidationFailure: The intent is not successful.
        """
        async with self.session_factory() as session:
            intent = await PaymentIntentRepository(session).get_by_id(intent_id)
            if intent is None:
                raise NotFound("Payment intent", intent_id)
            if intent.status != PaymentStatus.SUCCESS.value:
                raise ValidationFailure("Payment not successful.")
            if intent.is_finalized:
                return False

            if approver_id:
                now = utcnow()
                intent.approved_by_user_id = approver_id
                intent.approved_at = now
                intent.updated_at = now
                await session.commit()
                logger.info(f"Payment intent {intent_id} approved by {approver_id}")

        return await self.finalize_if_needed(intent_id)

    async def _apply_effect(self, session: AsyncSession, intent: PaymentIntent) -> None:
        now = utcnow()
        match effect_for_intent(intent):
            case SignupFee(registration_intent_id=registration_intent_id):
                registration = await RegistrationIntentRepository(session).get_by_id(
                    registration_intent_id
                )
                if registration is None:
                    raise NotFound("Registration intent", registration_intent_id)
                registration.payment_completed = True
                await session.flush()
                await self.collaborators.registrations.create_user_from_registration_intent(
                    session, registration
                )

            case ProductPurchase(user_id=user_id, content_product_id=product_id, reference=reference):
                await self.collaborators.purchases.complete_public_purchase(
                    session, user_id, product_id, reference
                )

            case UserSubscription() as effect:
                months = await resolve_subscription_months(
                    session,
                    effect.content_product_id,
                    effect.price_plan_id,
                    effect.legacy_duration_months,
                    now,
                )
                await create_or_extend_user_subscription(
                    session,
                    effect.user_id,
                    effect.content_product_id,
                    months,
                    intent.approved_by_user_id,
                    now,
                )

            case InstitutionSubscription() as effect:
                months = await resolve_subscription_months(
                    session,
                    effect.content_product_id,
                    effect.price_plan_id,
                    effect.legacy_duration_months,
                    now,
                )
                await self.collaborators.institution_subscriptions.create_or_extend_subscription(
                    session, effect.institution_id, effect.content_product_id, months
                )

            case LegalDocumentPurchase():
                # Ownership is granted by the legal document fulfillment service.
                pass

            case UnhandledPurpose(purpose=purpose):
                logger.warning(f"No finalization effect for purpose {purpose} on intent {intent.id}")
