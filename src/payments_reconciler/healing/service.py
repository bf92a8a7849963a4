"""Healing pass: retries finalization and legal document fulfillment that appear stuck."""

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..collaborators.base import LegalDocumentFulfillment
from ..config import HealingSettings
from ..database.repository import PaymentIntentRepository
from ..database.session import begin_locked
from ..finalization.finalizer import FinalizerService
from ..timeutils import utcnow

logger = logging.getLogger(__name__)


class HealingResult(BaseModel):
    """Counts from one healing pass."""
    ran_at: datetime = Field(default_factory=utcnow)
    finalizer_retried: int = Field(default=0, description="Finalizer calls that completed")
    finalizer_failed: int = 0
    legal_doc_fulfillment_retried: int = Field(default=0, description="Fulfillment calls that completed")
    legal_doc_fulfillment_failed: int = 0


class PaymentHealingService:
    """
    One pass of self-healing over successful payment intents.

    Every intent is handled in its own unit of work; a failure is logged and
    counted and never stops the pass.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        finalizer: FinalizerService,
        legal_documents: LegalDocumentFulfillment,
        settings: Optional[HealingSettings] = None,
    ):
        self.session_factory = session_factory
        self.finalizer = finalizer
        self.legal_documents = legal_documents
        self.settings = settings or HealingSettings()

    async def run(self) -> HealingResult:
        """Run one healing pass.

        Returns:
            HealingResult with retried and failed counts per category.
        """
        result = HealingResult()
        cutoff = utcnow() - self.settings.min_age
        batch_size = max(1, self.settings.batch_size)

        async with self.session_factory() as session:
            intents = PaymentIntentRepository(session)
            to_finalize = await intents.list_unfinalized_successes(cutoff, batch_size)

        for intent_id in to_finalize:
            try:
                await self.finalizer.finalize_if_needed(intent_id)
                result.finalizer_retried += 1
            except Exception:
                result.finalizer_failed += 1
                logger.exception(f"Finalizer retry failed for payment intent {intent_id}")

        async with self.session_factory() as session:
            intents = PaymentIntentRepository(session)
            to_fulfill = await intents.list_unfulfilled_legal_document_purchases(cutoff, batch_size)

        for intent_id in to_fulfill:
            try:
                if await self._fulfill(intent_id):
                    result.legal_doc_fulfillment_retried += 1
            except Exception:
                result.legal_doc_fulfillment_failed += 1
                logger.exception(f"Legal document fulfillment retry failed for payment intent {intent_id}")

        result.ran_at = utcnow()
        logger.info(
            f"Healing pass complete: finalizer {result.finalizer_retried} retried, "
            f"{result.finalizer_failed} failed; legal documents "
            f"{result.legal_doc_fulfillment_retried} retried, "
            f"{result.legal_doc_fulfillment_failed} failed"
        )
        return result

    async def _fulfill(self, intent_id: str) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                await begin_locked(session)
                intent = await PaymentIntentRepository(session).get_by_id(intent_id, for_update=True)
                if intent is None:
                    return False
                await self.legal_documents.fulfill(session, intent)
        return True
