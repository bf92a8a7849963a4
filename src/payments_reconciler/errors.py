"""Typed errors raised to synchronous callers (finalize, manual reconcile, reports).

Discrepancies found by the reconciliation engine are never raised; they are
persisted as reconciliation items instead.
"""

from typing import Optional


class ReconcilerError(Exception):
    """Base class for all payment reconciliation errors."""


class ValidationFailure(ReconcilerError, ValueError):
    """A required field is missing or inconsistent for the requested operation."""


class NotFound(ReconcilerError, LookupError):
    """An intent, pricing plan or correlated record does not exist."""

    def __init__(self, entity: str, entity_id: Optional[object] = None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            message = f"{entity} not found."
        else:
            message = f"{entity} not found: {entity_id}"
        super().__init__(message)


class DomainEffectFailure(ReconcilerError):
    """The domain effect of a successful payment raised; the finalization was rolled back."""

    def __init__(self, intent_id: str, message: str):
        self.intent_id = intent_id
        super().__init__(f"Finalization of payment intent {intent_id} failed: {message}")
