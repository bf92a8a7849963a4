"""Wiring of the payment services around one session factory."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .collaborators.base import Collaborators, LegalDocumentFulfillment
from .collaborators.legal_documents import LegalDocumentFulfillmentService
from .collaborators.simulator import SimulatedCollaborators
from .config import HealingSettings
from .finalization.finalizer import FinalizerService
from .healing.scheduler import HealingScheduler
from .healing.service import PaymentHealingService
from .invoicing.sequence import InvoiceNumberGenerator
from .reconciliation.service import ReconciliationService

logger = logging.getLogger(__name__)


@dataclass
class PaymentServices:
    """All services sharing one session factory and one set of collaborators."""
    session_factory: async_sessionmaker[AsyncSession]
    collaborators: Collaborators
    legal_documents: LegalDocumentFulfillment
    invoice_numbers: InvoiceNumberGenerator
    finalizer: FinalizerService
    reconciliation: ReconciliationService
    healing: PaymentHealingService
    scheduler: HealingScheduler

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        collaborators: Optional[Collaborators] = None,
        legal_documents: Optional[LegalDocumentFulfillment] = None,
        settings: Optional[HealingSettings] = None,
    ) -> "PaymentServices":
        """Build the services.

        Args:
            session_factory: Factory every service opens its sessions from.
            collaborators: Business actions for finalization. Defaults to the
                simulated collaborators.
            legal_documents: Legal document fulfillment. Defaults to the
                database-backed service.
            settings: Healing settings. Defaults to environment configuration.

        Returns:
            PaymentServices instance.
        """
        if collaborators is None:
            logger.warning("No collaborators configured; using SimulatedCollaborators")
            collaborators = SimulatedCollaborators()
        legal_documents = legal_documents or LegalDocumentFulfillmentService()
        settings = settings or HealingSettings()

        invoice_numbers = InvoiceNumberGenerator(session_factory)
        finalizer = FinalizerService(session_factory, collaborators)
        reconciliation = ReconciliationService(
            session_factory,
            finalizer=finalizer,
            invoice_numbers=invoice_numbers,
            legal_documents=legal_documents,
        )
        healing = PaymentHealingService(session_factory, finalizer, legal_documents, settings)

        return cls(
            session_factory=session_factory,
            collaborators=collaborators,
            legal_documents=legal_documents,
            invoice_numbers=invoice_numbers,
            finalizer=finalizer,
            reconciliation=reconciliation,
            healing=healing,
            scheduler=HealingScheduler(healing, settings),
        )


def get_services(request: Request) -> PaymentServices:
    """FastAPI dependency returning the services attached to the application."""
    return request.app.state.services
