from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PaymentIntent, RegistrationIntent


class RegistrationGateway(ABC):
    """
    Creates the user account for a paid registration. Writes go through the
    session it receives so they commit or roll back with the finalization.
    """

    @abstractmethod
    async def create_user_from_registration_intent(
        self, session: AsyncSession, registration: RegistrationIntent
    ) -> None:
        raise NotImplementedError


class PurchaseGateway(ABC):

    @abstractmethod
    async def complete_public_purchase(
        self, session: AsyncSession, user_id: str, content_product_id: str, reference: str
    ) -> None:
        """
        Grant a one-off product purchase. ``reference`` is the strongest payment
        reference available on the intent.
        """
        raise NotImplementedError


class InstitutionSubscriptionGateway(ABC):

    @abstractmethod
    async def create_or_extend_subscription(
        self, session: AsyncSession, institution_id: str, content_product_id: str, months: int
    ) -> None:
        raise NotImplementedError


class LegalDocumentFulfillment(ABC):
    """
    Grants ownership of a purchased legal document. Implementations must be
    safe to call more than once for the same intent.
    """

    @abstractmethod
    async def fulfill(self, session: AsyncSession, intent: PaymentIntent) -> None:
        raise NotImplementedError


@dataclass
class Collaborators:
    """The business actions finalization delegates to."""
    registrations: RegistrationGateway
    purchases: PurchaseGateway
    institution_subscriptions: InstitutionSubscriptionGateway
