"""Self-healing of stuck finalizations and legal document fulfillments."""

from .service import HealingResult, PaymentHealingService
from .scheduler import HealingScheduler

__all__ = [
    "HealingResult",
    "PaymentHealingService",
    "HealingScheduler",
]
