"""Business actions that finalization and manual reconciliation delegate to."""

from .base import (
    Collaborators,
    RegistrationGateway,
    PurchaseGateway,
    InstitutionSubscriptionGateway,
    LegalDocumentFulfillment,
)
from .simulator import (
    SimulatedCollaborators,
    SimulatorConfig,
    SimulatedEffectError,
    SimulatedCall,
)
from .legal_documents import LegalDocumentFulfillmentService

__all__ = [
    "Collaborators",
    "RegistrationGateway",
    "PurchaseGateway",
    "InstitutionSubscriptionGateway",
    "LegalDocumentFulfillment",
    "SimulatedCollaborators",
    "SimulatorConfig",
    "SimulatedEffectError",
    "SimulatedCall",
    "LegalDocumentFulfillmentService",
]
