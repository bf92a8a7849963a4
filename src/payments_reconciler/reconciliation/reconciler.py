"""Reconciliation logic for comparing payment intents with provider transactions."""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from ..database.models import (
    PaymentStatus,
    ProviderTransactionStatus,
    ReconciliationReason,
    ReconciliationStatus,
)
from .models import IntentSnapshot, ItemDraft, ProviderTransactionSnapshot

logger = logging.getLogger(__name__)


def index_key(provider: str, value: Optional[str]) -> Optional[str]:
    """Lookup key for a (provider, id-or-reference) pair; blank values are never indexed.

    >>> index_key("mpesa", " ABC ")
    'mpesa|abc'
    >>> index_key("mpesa", "  ") is None
    True
    """
    if value is None or not value.strip():
        return None
    return f"{provider}|{value.strip()}".lower()


def _index(entries: Iterable, key_of) -> Dict[str, list]:
    index: Dict[str, list] = defaultdict(list)
    for entry in entries:
        key = key_of(entry)
        if key is not None:
            index[key].append(entry)
    return index


class Reconciler:
    """Classifies intents against provider transactions over one window.

    Pure: takes snapshots, returns item drafts, touches no storage.
    """

    def __init__(self, amount_tolerance: Decimal = Decimal("0.0001")):
        """Initialize the reconciler.

        Args:
            amount_tolerance: Largest absolute amount difference still treated
                as equal.
        """
        self.amount_tolerance = amount_tolerance

    def _amounts_match(self, intent_amount: Decimal, provider_amount: Decimal) -> bool:
        return abs(Decimal(intent_amount) - Decimal(provider_amount)) <= self.amount_tolerance

    def _compare(self, intent: IntentSnapshot, txn: ProviderTransactionSnapshot) -> ItemDraft:
        status = ReconciliationStatus.MATCHED
        reason = ReconciliationReason.NONE
        details = "Matched provider transaction to payment intent."

        if intent.currency.lower() != txn.currency.lower():
            status = ReconciliationStatus.MISMATCH
            reason = ReconciliationReason.CURRENCY_MISMATCH
            details = f"Currency mismatch. Intent={intent.currency}, Provider={txn.currency}"
        elif not self._amounts_match(intent.amount, txn.amount):
            status = ReconciliationStatus.MISMATCH
            reason = ReconciliationReason.AMOUNT_MISMATCH
            details = f"Amount mismatch. Intent={intent.amount}, Provider={txn.amount}"
        elif (
            txn.status == ProviderTransactionStatus.SUCCESS.value
            and intent.status != PaymentStatus.SUCCESS.value
        ):
            status = ReconciliationStatus.NEEDS_REVIEW
            reason = ReconciliationReason.STATUS_MISMATCH
            details = f"Provider says success but intent status is {intent.status}."
        elif intent.status == PaymentStatus.SUCCESS.value and not intent.is_finalized:
            status = ReconciliationStatus.FINALIZER_FAILED
            reason = ReconciliationReason.FINALIZATION_ERROR
            details = "Intent is success but not finalized. Check admin notes and finalizer logs."

        return ItemDraft(
            provider=txn.provider,
            reference=txn.reference,
            payment_intent_id=intent.id,
            provider_transaction_ref_id=txn.id,
            invoice_id=intent.invoice_id,
            status=status,
            reason=reason,
            details=details,
        )

    def classify(
        self,
        intents: Sequence[IntentSnapshot],
        transactions: Sequence[ProviderTransactionSnapshot],
    ) -> List[ItemDraft]:
        """Produce one or more items for every transaction and every successful intent.

        The process:
        1. Index transactions and intents by (provider, id) and (provider, reference)
        2. Provider-first: match each transaction to candidate intents
        3. Intent-first: flag successful intents with no transaction, and
           references shared by several intents

        Args:
            intents: Intents in the window.
            transactions: Provider transactions in the window.

        Returns:
            Item drafts in discovery order.
        """
        txn_by_id = _index(transactions, lambda t: index_key(t.provider, t.provider_transaction_id))
        txn_by_ref = _index(transactions, lambda t: index_key(t.provider, t.reference))
        intents_by_id = _index(intents, lambda i: index_key(i.provider, i.provider_transaction_id))
        intents_by_ref = _index(intents, lambda i: index_key(i.provider, i.reference))

        logger.info(
            f"Starting reconciliation: {len(intents)} intents, "
            f"{len(transactions)} provider transactions"
        )

        items: List[ItemDraft] = []

        for txn in transactions:
            candidates: Dict[str, IntentSnapshot] = {}
            for key, index in (
                (index_key(txn.provider, txn.provider_transaction_id), intents_by_id),
                (index_key(txn.provider, txn.reference), intents_by_ref),
            ):
                if key is None:
                    continue
                for intent in index.get(key, []):
                    candidates.setdefault(intent.id, intent)

            if not candidates:
                items.append(ItemDraft(
                    provider=txn.provider,
                    reference=txn.reference,
                    provider_transaction_ref_id=txn.id,
                    status=ReconciliationStatus.MISSING_INTERNAL_INTENT,
                    reason=ReconciliationReason.NO_PAYMENT_INTENT_FOR_REFERENCE,
                    details=(
                        "Provider transaction exists but no payment intent matched. "
                        f"TxId={txn.provider_transaction_id}"
                    ),
                ))
            elif len(candidates) > 1:
                items.append(ItemDraft(
                    provider=txn.provider,
                    reference=txn.reference,
                    provider_transaction_ref_id=txn.id,
                    status=ReconciliationStatus.DUPLICATE,
                    reason=ReconciliationReason.DUPLICATE_REFERENCE,
                    details=(
                        "Multiple payment intents match provider transaction. "
                        f"IntentIds={','.join(candidates)}"
                    ),
                ))
            else:
                (intent,) = candidates.values()
                items.append(self._compare(intent, txn))

        for intent in intents:
            if intent.status != PaymentStatus.SUCCESS.value:
                continue

            id_key = index_key(intent.provider, intent.provider_transaction_id)
            ref_key = index_key(intent.provider, intent.reference)
            found = (id_key is not None and bool(txn_by_id.get(id_key))) or (
                ref_key is not None and bool(txn_by_ref.get(ref_key))
            )

            if not found:
                items.append(ItemDraft(
                    provider=intent.provider,
                    reference=intent.reference,
                    payment_intent_id=intent.id,
                    invoice_id=intent.invoice_id,
                    status=ReconciliationStatus.MISSING_PROVIDER_TRANSACTION,
                    reason=ReconciliationReason.NO_PROVIDER_TRANSACTION_FOR_INTENT,
                    details=(
                        "Intent is success but no provider transaction exists "
                        "(the verification pipeline may have failed)."
                    ),
                ))

            sharing = intents_by_ref.get(ref_key, []) if ref_key is not None else []
            if len(sharing) > 1:
                items.append(ItemDraft(
                    provider=intent.provider,
                    reference=intent.reference,
                    payment_intent_id=intent.id,
                    invoice_id=intent.invoice_id,
                    status=ReconciliationStatus.DUPLICATE,
                    reason=ReconciliationReason.DUPLICATE_REFERENCE,
                    details=(
                        "Multiple intents share the same provider reference. "
                        f"IntentIds={','.join(i.id for i in sharing)}"
                    ),
                ))

        logger.info(f"Reconciliation complete: {len(items)} items")
        return items
