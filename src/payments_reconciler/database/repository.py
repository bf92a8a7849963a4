"""Repository layer for the payment record store."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, List, Sequence, Tuple

from sqlalchemy import select, and_, func, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from ..timeutils import utcnow
from .models import (
    PaymentIntent,
    ProviderTransaction,
    ReconciliationRun,
    ReconciliationItem,
    PricingPlan,
    UserProductSubscription,
    LegalDocumentOwnership,
    RegistrationIntent,
    PaymentStatus,
    PaymentPurpose,
    ProviderTransactionStatus,
    ReconciliationMode,
)

logger = logging.getLogger(__name__)


def intent_effective_time() -> ColumnElement:
    """Time used to place an intent in a reconciliation window."""
    return func.coalesce(
        PaymentIntent.provider_paid_at,
        PaymentIntent.updated_at,
        PaymentIntent.created_at,
    )


def intent_age_time() -> ColumnElement:
    """Time used to decide whether an intent is old enough to heal."""
    return func.coalesce(PaymentIntent.updated_at, PaymentIntent.created_at)


def transaction_effective_time() -> ColumnElement:
    return func.coalesce(ProviderTransaction.paid_at, ProviderTransaction.last_seen_at)


class PaymentIntentRepository:
    """Repository for PaymentIntent reads and writes."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_id(self, intent_id: str, for_update: bool = False) -> Optional[PaymentIntent]:
        """Get a payment intent by its ID.

        Args:
            intent_id: Payment intent ID.
            for_update: Lock the row until the surrounding transaction ends.

        Returns:
            PaymentIntent instance if found, None otherwise.
        """
        stmt = select(PaymentIntent).where(PaymentIntent.id == intent_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_in_window(
        self,
        from_utc: datetime,
        to_utc: datetime,
        provider: Optional[str] = None,
    ) -> List[PaymentIntent]:
        """List intents whose effective time falls in ``[from_utc, to_utc)``.

        Args:
            from_utc: Inclusive window start.
            to_utc: Exclusive window end.
            provider: Optional provider filter.

        Returns:
            List of PaymentIntent instances.
        """
        effective = intent_effective_time()
        conditions: List[ColumnElement] = [effective >= from_utc, effective < to_utc]
        if provider is not None:
            conditions.append(PaymentIntent.provider == provider)

        result = await self.session.execute(
            select(PaymentIntent).where(and_(*conditions)).order_by(effective)
        )
        return list(result.scalars().all())

    async def list_unfinalized_successes(self, cutoff: datetime, limit: int) -> List[str]:
        """IDs of successful, unfinalized intents last touched at or before ``cutoff``, oldest first."""
        age = intent_age_time()
        conditions = [
            PaymentIntent.status == PaymentStatus.SUCCESS.value,
            PaymentIntent.is_finalized.is_(False),
            age <= cutoff,
        ]
        result = await self.session.execute(
            select(PaymentIntent.id)
            .where(and_(*conditions))
            .order_by(age.asc())
            .limit(max(1, limit))
        )
        return list(result.scalars().all())

    async def list_unfulfilled_legal_document_purchases(
        self,
        cutoff: datetime,
        limit: int,
    ) -> List[str]:
        """IDs of successful legal document purchases that have no ownership record, newest first."""
        age = intent_age_time()
        owned = exists().where(
            and_(
                LegalDocumentOwnership.user_id == PaymentIntent.user_id,
                LegalDocumentOwnership.legal_document_id == PaymentIntent.legal_document_id,
            )
        )
        conditions = [
            PaymentIntent.status == PaymentStatus.SUCCESS.value,
            PaymentIntent.purpose == PaymentPurpose.PUBLIC_LEGAL_DOCUMENT_PURCHASE.value,
            PaymentIntent.user_id.is_not(None),
            PaymentIntent.legal_document_id.is_not(None),
            age <= cutoff,
            ~owned,
        ]
        result = await self.session.execute(
            select(PaymentIntent.id)
            .where(and_(*conditions))
            .order_by(age.desc())
            .limit(max(1, limit))
        )
        return list(result.scalars().all())

    async def mark_finalized(self, intent: PaymentIntent) -> PaymentIntent:
        intent.is_finalized = True
        intent.updated_at = utcnow()
        await self.session.flush()
        logger.info(f"Marked payment intent {intent.id} finalized")
        return intent


class ProviderTransactionRepository:
    """Repository for provider-side transaction records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, provider: str, provider_transaction_id: str) -> Optional[ProviderTransaction]:
        result = await self.session.execute(
            select(ProviderTransaction).where(
                and_(
                    ProviderTransaction.provider == provider,
                    ProviderTransaction.provider_transaction_id == provider_transaction_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_in_window(
        self,
        from_utc: datetime,
        to_utc: datetime,
        provider: Optional[str] = None,
    ) -> List[ProviderTransaction]:
        """List transactions whose paid (or last seen) time falls in ``[from_utc, to_utc)``."""
        effective = transaction_effective_time()
        conditions: List[ColumnElement] = [effective >= from_utc, effective < to_utc]
        if provider is not None:
            conditions.append(ProviderTransaction.provider == provider)

        result = await self.session.execute(
            select(ProviderTransaction).where(and_(*conditions)).order_by(effective)
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        provider: str,
        provider_transaction_id: str,
        reference: str,
        amount: Decimal,
        currency: str,
        paid_at: Optional[datetime] = None,
        channel: Optional[str] = None,
        status: str = ProviderTransactionStatus.SUCCESS.value,
        raw_json: str = "",
    ) -> ProviderTransaction:
        """Insert or refresh the record keyed by (provider, provider_transaction_id).

        Args:
            provider: Provider value.
            provider_transaction_id: Provider's transaction identifier.
            reference: Provider reference (may be empty).
            amount: Settled amount.
            currency: Currency code.
            paid_at: When the provider settled the payment.
            channel: Optional payment channel.
            status: Provider status value.
            raw_json: Raw provider payload, if any.

        Returns:
            The created or refreshed ProviderTransaction.
        """
        now = utcnow()
        txn = await self.get(provider, provider_transaction_id)
        if txn is None:
            txn = ProviderTransaction(
                provider=provider,
                provider_transaction_id=provider_transaction_id,
                first_seen_at=now,
            )
            self.session.add(txn)
            logger.info(f"Recorded provider transaction {provider}|{provider_transaction_id}")

        txn.reference = reference or ""
        txn.amount = amount
        txn.currency = currency
        txn.status = status
        txn.paid_at = paid_at
        txn.channel = channel
        txn.raw_json = raw_json
        txn.last_seen_at = now

        await self.session.flush()
        return txn


class ReconciliationRepository:
    """Repository for reconciliation runs and their items."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_run(
        self,
        from_utc: datetime,
        to_utc: datetime,
        provider: Optional[str] = None,
        performed_by_user_id: Optional[str] = None,
        mode: str = ReconciliationMode.AUTO.value,
    ) -> ReconciliationRun:
        """Create a reconciliation run record.

        Args:
            from_utc: Inclusive window start.
            to_utc: Exclusive window end.
            provider: Optional provider the run was filtered by.
            performed_by_user_id: Operator who started the run.
            mode: auto or manual.

        Returns:
            Created ReconciliationRun instance.
        """
        run = ReconciliationRun(
            provider=provider,
            from_utc=from_utc,
            to_utc=to_utc,
            performed_by_user_id=performed_by_user_id,
            mode=mode,
            created_at=utcnow(),
        )
        self.session.add(run)
        await self.session.flush()
        logger.info(f"Created {mode} reconciliation run {run.id}")
        return run

    async def add_items(self, run: ReconciliationRun, items: Sequence[ReconciliationItem]) -> None:
        for item in items:
            item.run_id = run.id
            self.session.add(item)
        await self.session.flush()

    async def get_run(self, run_id: str) -> Optional[ReconciliationRun]:
        return await self.session.get(ReconciliationRun, run_id)

    async def list_items_for_run(self, run_id: str) -> List[ReconciliationItem]:
        result = await self.session.execute(
            select(ReconciliationItem)
            .where(ReconciliationItem.run_id == run_id)
            .order_by(ReconciliationItem.created_at)
        )
        return list(result.scalars().all())

    async def count_items(self, conditions: Sequence[ColumnElement]) -> int:
        result = await self.session.execute(
            select(func.count(ReconciliationItem.id)).where(and_(*conditions))
        )
        return int(result.scalar_one())

    async def count_items_by_status(self, conditions: Sequence[ColumnElement]) -> Dict[str, int]:
        result = await self.session.execute(
            select(ReconciliationItem.status, func.count(ReconciliationItem.id))
            .where(and_(*conditions))
            .group_by(ReconciliationItem.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def list_items_with_intents(
        self,
        conditions: Sequence[ColumnElement],
        skip: int,
        take: int,
    ) -> List[Tuple[ReconciliationItem, Optional[PaymentIntent]]]:
        """Page through items, newest first, joined to their intent when present."""
        result = await self.session.execute(
            select(ReconciliationItem, PaymentIntent)
            .outerjoin(PaymentIntent, ReconciliationItem.payment_intent_id == PaymentIntent.id)
            .where(and_(*conditions))
            .order_by(ReconciliationItem.created_at.desc(), ReconciliationItem.id)
            .offset(skip)
            .limit(take)
        )
        return [(item, intent) for item, intent in result.all()]


class PricingPlanRepository:
    """Lookup of content product pricing plans."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, price_plan_id: str) -> Optional[PricingPlan]:
        return await self.session.get(PricingPlan, price_plan_id)


class SubscriptionRepository:
    """Repository for individual users' product subscriptions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_user_product(
        self,
        user_id: str,
        content_product_id: str,
    ) -> Optional[UserProductSubscription]:
        result = await self.session.execute(
            select(UserProductSubscription).where(
                and_(
                    UserProductSubscription.user_id == user_id,
                    UserProductSubscription.content_product_id == content_product_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def add(self, subscription: UserProductSubscription) -> UserProductSubscription:
        self.session.add(subscription)
        await self.session.flush()
        return subscription


class LegalDocumentOwnershipRepository:
    """Repository for legal document ownership records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, user_id: str, legal_document_id: str) -> bool:
        result = await self.session.execute(
            select(LegalDocumentOwnership.id).where(
                and_(
                    LegalDocumentOwnership.user_id == user_id,
                    LegalDocumentOwnership.legal_document_id == legal_document_id,
                )
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def create(
        self,
        user_id: str,
        legal_document_id: str,
        amount: Decimal,
        currency: str,
        payment_reference: Optional[str] = None,
    ) -> LegalDocumentOwnership:
        ownership = LegalDocumentOwnership(
            user_id=user_id,
            legal_document_id=legal_document_id,
            amount=amount,
            currency=currency,
            payment_reference=payment_reference,
            purchased_at=utcnow(),
        )
        self.session.add(ownership)
        await self.session.flush()
        logger.info(f"Granted legal document {legal_document_id} to user {user_id}")
        return ownership


class RegistrationIntentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, registration_intent_id: str) -> Optional[RegistrationIntent]:
        return await self.session.get(RegistrationIntent, registration_intent_id)
