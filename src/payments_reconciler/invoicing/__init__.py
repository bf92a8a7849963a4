"""Invoice numbering and invoice creation."""

from .sequence import (
    InvoiceNumberGenerator,
    format_invoice_number,
    is_serialization_conflict,
)
from .invoices import ensure_invoice_for_intent

__all__ = [
    "InvoiceNumberGenerator",
    "format_invoice_number",
    "is_serialization_conflict",
    "ensure_invoice_for_intent",
]
