"""Invoice creation for successful payment intents."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import (
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    PaymentIntent,
    PaymentStatus,
)
from ..timeutils import utcnow

logger = logging.getLogger(__name__)

PAYMENT_ITEM_CODE = "PAYMENT"


def _describe(intent: PaymentIntent) -> str:
    return f"Payment for {intent.purpose.replace('_', ' ')}"


async def ensure_invoice_for_intent(
    session: AsyncSession,
    intent: PaymentIntent,
    invoice_number: Optional[str],
) -> Optional[Invoice]:
    """Create and link a paid invoice for a successful intent that has none.

    The number is allocated by the caller beforehand, because the sequence
    generator runs in a unit of work of its own.

    Args:
        session: Session of the caller's unit of work.
        intent: The payment intent, already loaded in ``session``.
        invoice_number: Number reserved from the sequence generator, or None
            when the caller found the intent already invoiced.

    Returns:
        The new Invoice, or None when the intent already has an invoice or is
        not successful.
    """
    if intent.invoice_id is not None:
        if invoice_number is not None:
            logger.warning(
                f"Payment intent {intent.id} was invoiced concurrently; "
                f"invoice number {invoice_number} left unused"
            )
        return None
    if intent.status != PaymentStatus.SUCCESS.value:
        return None
    if invoice_number is None:
        raise ValueError(f"No invoice number reserved for payment intent {intent.id}")

    now = utcnow()
    amount = Decimal(intent.amount)

    invoice = Invoice(
        invoice_number=invoice_number,
        status=InvoiceStatus.PAID.value,
        purpose=intent.purpose,
        currency=intent.currency,
        subtotal=amount,
        tax_total=Decimal("0"),
        discount_total=Decimal("0"),
        total=amount,
        amount_paid=amount,
        paid_at=intent.provider_paid_at or now,
        user_id=intent.user_id,
        institution_id=intent.institution_id,
        issued_at=now,
        created_at=now,
        lines=[
            InvoiceLine(
                description=_describe(intent),
                item_code=PAYMENT_ITEM_CODE,
                quantity=Decimal("1"),
                unit_price=amount,
                line_subtotal=amount,
                tax_amount=Decimal("0"),
                discount_amount=Decimal("0"),
                line_total=amount,
                content_product_id=intent.content_product_id,
                legal_document_id=intent.legal_document_id,
            )
        ],
    )
    session.add(invoice)
    await session.flush()

    intent.invoice_id = invoice.id
    intent.updated_at = now
    await session.flush()

    logger.info(f"Issued invoice {invoice_number} for payment intent {intent.id}")
    return invoice
