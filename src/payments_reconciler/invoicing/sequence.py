"""Gap-free invoice numbers, one sequence per calendar year."""

import logging
from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..database.models import InvoiceSequence
from ..database.session import begin_locked
from ..timeutils import utcnow

logger = logging.getLogger(__name__)

# SQLSTATEs for serialization failure and deadlock
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})

MAX_ATTEMPTS = 5


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_serialization_conflict(error: BaseException) -> bool:
    """True for errors a concurrent invoice-number allocation can cause.

    Covers serialization failures and deadlocks, a locked SQLite database, and
    two callers inserting the first row of a year at the same time.
    """
    if isinstance(error, IntegrityError):
        return True
    if isinstance(error, DBAPIError):
        if _sqlstate(error) in RETRYABLE_SQLSTATES:
            return True
        if isinstance(error, OperationalError) and "database is locked" in str(error.orig):
            return True
    return False


def _log_retry(retry_state) -> None:
    logger.warning(
        f"Invoice sequence conflict, retrying "
        f"(attempt {retry_state.attempt_number}/{MAX_ATTEMPTS}): "
        f"{retry_state.outcome.exception()}"
    )


def format_invoice_number(year: int, number: int) -> str:
    """
    >>> format_invoice_number(2025, 42)
    'INV-2025-000042'
    """
    return f"INV-{year}-{number:06d}"


class InvoiceNumberGenerator:
    """
    Issues invoice numbers from the ``invoice_sequences`` table.

    Each allocation runs in its own session at SERIALIZABLE isolation with the
    year row locked, so concurrent callers receive distinct consecutive
    numbers. Conflicts are retried with exponential backoff and re-raised once
    the attempts are exhausted.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @retry(
        retry=retry_if_exception(is_serialization_conflict),
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def next_invoice_number(self) -> str:
        """Allocate the next invoice number for the current UTC year.

        Returns:
            Invoice number formatted ``INV-YYYY-NNNNNN``.
        """
        now = utcnow()
        year = now.year

        async with self.session_factory() as session:
            async with session.begin():
                await begin_locked(session, isolation_level="SERIALIZABLE")
                sequence = await session.get(InvoiceSequence, year, with_for_update=True)
                if sequence is None:
                    sequence = InvoiceSequence(year=year, last_number=0)
                    session.add(sequence)

                sequence.last_number += 1
                sequence.updated_at = now
                number = sequence.last_number

        invoice_number = format_invoice_number(year, number)
        logger.info(f"Allocated invoice number {invoice_number}")
        return invoice_number
