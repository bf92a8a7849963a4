"""Simulated collaborators for exercising finalization without the real account and catalog services."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import RegistrationIntent
from ..timeutils import utcnow
from .base import (
    Collaborators,
    InstitutionSubscriptionGateway,
    PurchaseGateway,
    RegistrationGateway,
)

logger = logging.getLogger(__name__)


class SimulatedEffectError(RuntimeError):
    """Raised by a simulated gateway configured to fail for an id."""


@dataclass
class SimulatedCall:
    """One recorded gateway invocation."""
    action: str
    args: Tuple[Any, ...]
    called_at: datetime = field(default_factory=utcnow)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    # Any registration, user, institution or product id listed here makes the call raise.
    failing_ids: FrozenSet[str] = frozenset()


class _SimulatedGateway:
    def __init__(self, config: SimulatorConfig, calls: List[SimulatedCall]):
        self.config = config
        self.calls = calls

    def _record(self, action: str, *args: Any) -> None:
        failing = [a for a in args if isinstance(a, str) and a in self.config.failing_ids]
        if failing:
            logger.warning(f"Simulated {action} failure for {failing[0]}")
            raise SimulatedEffectError(f"Simulated {action} failure for {failing[0]}")
        self.calls.append(SimulatedCall(action=action, args=args))
        logger.info(f"Simulated {action}{args}")


class SimulatedRegistrationGateway(_SimulatedGateway, RegistrationGateway):
    async def create_user_from_registration_intent(
        self, session: AsyncSession, registration: RegistrationIntent
    ) -> None:
        self._record("create_user", registration.id)


class SimulatedPurchaseGateway(_SimulatedGateway, PurchaseGateway):
    async def complete_public_purchase(
        self, session: AsyncSession, user_id: str, content_product_id: str, reference: str
    ) -> None:
        self._record("complete_purchase", user_id, content_product_id, reference)


class SimulatedInstitutionSubscriptionGateway(_SimulatedGateway, InstitutionSubscriptionGateway):
    async def create_or_extend_subscription(
        self, session: AsyncSession, institution_id: str, content_product_id: str, months: int
    ) -> None:
        self._record("extend_institution_subscription", institution_id, content_product_id, months)


class SimulatedCollaborators(Collaborators):
    """
    In-memory collaborators that record every call.

    Features:
    - Shared call log across all gateways
    - Configurable failure by id, to exercise rollback of finalization
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self.calls: List[SimulatedCall] = []
        super().__init__(
            registrations=SimulatedRegistrationGateway(self.config, self.calls),
            purchases=SimulatedPurchaseGateway(self.config, self.calls),
            institution_subscriptions=SimulatedInstitutionSubscriptionGateway(self.config, self.calls),
        )
        logger.info("SimulatedCollaborators initialized")

    def calls_for(self, action: str) -> List[SimulatedCall]:
        return [call for call in self.calls if call.action == action]

    def summary(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for call in self.calls:
            counts[call.action] = counts.get(call.action, 0) + 1
        return counts
