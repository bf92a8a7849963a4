"""Service layer for reconciliation operations."""

import logging
from collections import Counter
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from ..collaborators.base import LegalDocumentFulfillment
from ..database.models import (
    PaymentIntent,
    PaymentProvider,
    PaymentStatus,
    ProviderTransactionStatus,
    ReconciliationItem,
    ReconciliationMode,
    ReconciliationReason,
    ReconciliationStatus,
)
from ..database.repository import (
    PaymentIntentRepository,
    ProviderTransactionRepository,
    ReconciliationRepository,
)
from ..database.session import begin_locked
from ..errors import NotFound, ValidationFailure
from ..finalization.finalizer import FinalizerService
from ..finalization.purposes import requires_legal_document_fulfillment
from ..invoicing.invoices import ensure_invoice_for_intent
from ..invoicing.sequence import InvoiceNumberGenerator
from ..timeutils import utcnow
from .models import (
    IntentSnapshot,
    ItemDraft,
    ManualReconcileRequest,
    ProviderTransactionSnapshot,
    ReconciliationReportPage,
    ReconciliationRequest,
    ReconciliationRunSummary,
    ReportFilters,
    ReportRow,
)
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

MANUAL_WINDOW = timedelta(minutes=5)
DEFAULT_REPORT_TAKE = 50
MAX_REPORT_TAKE = 200
MANUAL_NOTE_DEFAULT = "Manual reconcile applied."


class ReconciliationService:
    """Runs reconciliation, applies manual overrides, and serves the report."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        finalizer: FinalizerService,
        invoice_numbers: InvoiceNumberGenerator,
        legal_documents: LegalDocumentFulfillment,
        reconciler: Optional[Reconciler] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session_factory: Factory for the sessions each operation opens.
            finalizer: Finalizer invoked after a manual override.
            invoice_numbers: Sequence generator for invoices created here.
            legal_documents: Fulfillment for legal document purchases.
            reconciler: Optional classifier. Will create default if not provided.
        """
        self.session_factory = session_factory
        self.finalizer = finalizer
        self.invoice_numbers = invoice_numbers
        self.legal_documents = legal_documents
        self.reconciler = reconciler or Reconciler()

    async def run_reconciliation(
        self,
        request: ReconciliationRequest,
        performed_by_user_id: Optional[str] = None,
    ) -> ReconciliationRunSummary:
        """Execute a reconciliation run over ``[from_utc, to_utc)``.

        Discrepancies are persisted as items, never raised.

        Args:
            request: Window and optional provider filter.
            performed_by_user_id: Operator who triggered the run, if any.

        Returns:
            ReconciliationRunSummary with per-status counts.

        Raises:
            ValidationFailure: The window is empty or inverted.
        """
        if request.to_utc <= request.from_utc:
            raise ValidationFailure("to_utc must be after from_utc.")

        provider = request.provider.value if request.provider else None

        async with self.session_factory() as session:
            async with session.begin():
                intents = await PaymentIntentRepository(session).list_in_window(
                    request.from_utc, request.to_utc, provider
                )
                transactions = await ProviderTransactionRepository(session).list_in_window(
                    request.from_utc, request.to_utc, provider
                )

                drafts = self.reconciler.classify(
                    [IntentSnapshot.model_validate(i) for i in intents],
                    [ProviderTransactionSnapshot.model_validate(t) for t in transactions],
                )

                repo = ReconciliationRepository(session)
                run = await repo.create_run(
                    from_utc=request.from_utc,
                    to_utc=request.to_utc,
                    provider=provider,
                    performed_by_user_id=performed_by_user_id,
                    mode=ReconciliationMode.AUTO.value,
                )
                now = utcnow()
                await repo.add_items(run, [self._to_item(d, now) for d in drafts])

        counts = Counter(d.status.value for d in drafts)
        summary = ReconciliationRunSummary(
            run_id=run.id,
            provider=provider,
            from_utc=run.from_utc,
            to_utc=run.to_utc,
            mode=run.mode,
            created_at=run.created_at,
            total_intents=len(intents),
            total_provider_transactions=len(transactions),
            total_items=len(drafts),
            items=drafts,
            **{status.value: counts.get(status.value, 0) for status in ReconciliationStatus},
        )

        logger.info(
            f"Reconciliation run {run.id} completed: {summary.total_items} items, "
            f"{summary.matched} matched, {summary.issues} issues"
        )
        return summary

    async def manual_reconcile(
        self,
        request: ManualReconcileRequest,
        performed_by_user_id: Optional[str] = None,
    ) -> str:
        """Force an intent and its provider transaction into agreement.

        An invoice number is reserved first when the intent has no invoice.
        The override, the provider transaction and the invoice then commit together.
        Fulfillment and finalization then run in their own units of work, and a
        ``manually_resolved`` item records the outcome.

        Args:
            request: Operator-supplied payment facts.
            performed_by_user_id: Operator applying the override.

        Returns:
            ID of the manual reconciliation run.

        Raises:
            ValidationFailure: The request is incomplete.
            NotFound: The intent does not exist.
            DomainEffectFailure: Finalization failed after the override committed.
        """
        self._validate_manual(request)
        provider = request.provider.value
        provider_txn_id = (request.provider_transaction_id or request.reference or "").strip()

        async with self.session_factory() as session:
            intent = await PaymentIntentRepository(session).get_by_id(request.payment_intent_id)
            if intent is None:
                raise NotFound("Payment intent", request.payment_intent_id)
            needs_invoice = intent.invoice_id is None

        invoice_number = None
        if needs_invoice:
            invoice_number = await self.invoice_numbers.next_invoice_number()

        async with self.session_factory() as session:
            async with session.begin():
                await begin_locked(session)
                intent = await PaymentIntentRepository(session).get_by_id(
                    request.payment_intent_id, for_update=True
                )

                run = await ReconciliationRepository(session).create_run(
                    from_utc=request.paid_at_utc - MANUAL_WINDOW,
                    to_utc=request.paid_at_utc + MANUAL_WINDOW,
                    provider=provider,
                    performed_by_user_id=performed_by_user_id,
                    mode=ReconciliationMode.MANUAL.value,
                )

                reference = (
                    request.reference
                    or intent.provider_reference
                    or intent.checkout_request_id
                    or ""
                ).strip()
                txn = await ProviderTransactionRepository(session).upsert(
                    provider=provider,
                    provider_transaction_id=provider_txn_id,
                    reference=reference,
                    amount=request.amount,
                    currency=request.currency,
                    paid_at=request.paid_at_utc,
                    channel=request.channel,
                    status=ProviderTransactionStatus.SUCCESS.value,
                )

                self._apply_override(intent, request)
                await session.flush()
                await ensure_invoice_for_intent(session, intent, invoice_number)

                run_id = run.id
                txn_id = txn.id
                intent_id = intent.id
                needs_fulfillment = requires_legal_document_fulfillment(intent)

        logger.info(f"Manual override applied to payment intent {intent_id} in run {run_id}")

        if needs_fulfillment:
            async with self.session_factory() as session:
                async with session.begin():
                    intent = await PaymentIntentRepository(session).get_by_id(intent_id)
                    await self.legal_documents.fulfill(session, intent)

        await self.finalizer.finalize_if_needed(intent_id)

        async with self.session_factory() as session:
            async with session.begin():
                intent = await PaymentIntentRepository(session).get_by_id(intent_id)
                run = await ReconciliationRepository(session).get_run(run_id)
                await ReconciliationRepository(session).add_items(run, [
                    ReconciliationItem(
                        provider=provider,
                        reference=reference,
                        payment_intent_id=intent_id,
                        provider_transaction_ref_id=txn_id,
                        invoice_id=intent.invoice_id,
                        status=ReconciliationStatus.MANUALLY_RESOLVED.value,
                        reason=ReconciliationReason.MANUAL_OVERRIDE.value,
                        details=request.notes if request.notes and request.notes.strip() else MANUAL_NOTE_DEFAULT,
                        created_at=utcnow(),
                    )
                ])

        return run_id

    async def get_report(self, filters: ReportFilters) -> ReconciliationReportPage:
        """Read a page of reconciliation items, newest first, with status counts.

        Args:
            filters: Window, optional provider/status/reason, and paging.

        Returns:
            ReconciliationReportPage with totals over the whole filtered set.

        Raises:
            ValidationFailure: The window is empty or inverted.
        """
        if filters.to_utc <= filters.from_utc:
            raise ValidationFailure("to_utc must be after from_utc.")

        skip = max(0, filters.skip)
        take = DEFAULT_REPORT_TAKE if filters.take <= 0 else min(filters.take, MAX_REPORT_TAKE)

        conditions: List[ColumnElement] = [
            ReconciliationItem.created_at >= filters.from_utc,
            ReconciliationItem.created_at < filters.to_utc,
        ]
        if filters.provider is not None:
            conditions.append(ReconciliationItem.provider == filters.provider.value)
        if filters.status is not None:
            conditions.append(ReconciliationItem.status == filters.status.value)
        if filters.reason is not None:
            conditions.append(ReconciliationItem.reason == filters.reason.value)

        async with self.session_factory() as session:
            repo = ReconciliationRepository(session)
            total = await repo.count_items(conditions)
            counts = await repo.count_items_by_status(conditions)
            results = await repo.list_items_with_intents(conditions, skip, take)

        return ReconciliationReportPage(
            from_utc=filters.from_utc,
            to_utc=filters.to_utc,
            total=total,
            skip=skip,
            take=take,
            rows=[self._to_row(item, intent) for item, intent in results],
            **{status.value: counts.get(status.value, 0) for status in ReconciliationStatus},
        )

    @staticmethod
    def _validate_manual(request: ManualReconcileRequest) -> None:
        if not request.payment_intent_id or not request.payment_intent_id.strip():
            raise ValidationFailure("payment_intent_id is required.")
        if request.amount <= 0:
            raise ValidationFailure("amount must be greater than zero.")
        if not request.currency or not request.currency.strip():
            raise ValidationFailure("currency is required.")
        has_reference = bool(request.reference and request.reference.strip())
        has_txn_id = bool(request.provider_transaction_id and request.provider_transaction_id.strip())
        if not has_reference and not has_txn_id:
            raise ValidationFailure("reference or provider_transaction_id is required.")

    @staticmethod
    def _apply_override(intent: PaymentIntent, request: ManualReconcileRequest) -> None:
        now = utcnow()
        intent.provider = request.provider.value
        intent.status = PaymentStatus.SUCCESS.value
        intent.amount = request.amount
        intent.currency = request.currency
        intent.provider_paid_at = request.paid_at_utc
        intent.provider_channel = request.channel or intent.provider_channel
        intent.provider_transaction_id = request.provider_transaction_id or intent.provider_transaction_id

        if request.reference and request.reference.strip():
            if request.provider == PaymentProvider.PAYSTACK:
                intent.provider_reference = request.reference
            elif request.provider == PaymentProvider.MPESA:
                intent.checkout_request_id = request.reference
            else:
                intent.manual_reference = request.reference

        if request.notes and request.notes.strip():
            intent.admin_notes = f"{(intent.admin_notes or '').strip()} | Manual reconcile: {request.notes}".strip()
        elif not intent.admin_notes:
            intent.admin_notes = MANUAL_NOTE_DEFAULT

        intent.updated_at = now

    @staticmethod
    def _to_item(draft: ItemDraft, now) -> ReconciliationItem:
        return ReconciliationItem(
            provider=draft.provider,
            reference=draft.reference,
            payment_intent_id=draft.payment_intent_id,
            provider_transaction_ref_id=draft.provider_transaction_ref_id,
            invoice_id=draft.invoice_id,
            status=draft.status.value,
            reason=draft.reason.value,
            details=draft.details,
            created_at=now,
        )

    @staticmethod
    def _to_row(item: ReconciliationItem, intent: Optional[PaymentIntent]) -> ReportRow:
        return ReportRow(
            item_id=item.id,
            run_id=item.run_id,
            created_at=item.created_at,
            provider=item.provider,
            reference=item.reference,
            status=item.status,
            reason=item.reason,
            details=item.details,
            payment_intent_id=item.payment_intent_id,
            provider_transaction_ref_id=item.provider_transaction_ref_id,
            invoice_id=item.invoice_id,
            intent_amount=intent.amount if intent else None,
            intent_currency=intent.currency if intent else None,
            intent_status=intent.status if intent else None,
            intent_is_finalized=intent.is_finalized if intent else None,
            intent_purpose=intent.purpose if intent else None,
            user_id=intent.user_id if intent else None,
            institution_id=intent.institution_id if intent else None,
        )
