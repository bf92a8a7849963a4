#!/usr/bin/env python3
"""Command-line interface for reconciliation tools.

This CLI runs reconciliation, reads the reconciliation report, runs a
healing pass, and finalizes individual payment intents against the database
named by ``DATABASE_URL``.

Usage:
    python -m payments_reconciler.reconciliation.cli reconcile --start 2024-01-01 --end 2024-01-31
    python -m payments_reconciler.reconciliation.cli reconcile --start 2024-01-01T00:00:00 --end 2024-01-02T00:00:00 --format csv --output run.csv
    python -m payments_reconciler.reconciliation.cli report --start 2024-01-01 --end 2024-01-31 --status mismatch
    python -m payments_reconciler.reconciliation.cli heal
    python -m payments_reconciler.reconciliation.cli finalize 5f0c... --approver ops-1
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from ..database import (
    PaymentProvider,
    ReconciliationReason,
    ReconciliationStatus,
    DatabaseManager,
    get_database_url,
)
from ..errors import ReconcilerError
from ..services import PaymentServices
from .models import ReconciliationRequest, ReportFilters
from .report import ReportGenerator

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ["json", "csv", "text", "detailed_text"]


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed datetime object.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def parse_window(start: str, end: str) -> tuple[datetime, datetime]:
    """Parse a ``[start, end)`` window; a date-only end covers that whole day."""
    start_time = parse_datetime(start)
    end_time = parse_datetime(end)
    if "T" not in end and " " not in end:
        end_time = end_time + timedelta(days=1)
    return start_time, end_time


def render(generator: ReportGenerator, output_format: str, include_details: bool = True) -> str:
    if output_format == "json":
        return generator.to_json(include_details=include_details)
    if output_format == "csv":
        return generator.to_csv()
    if output_format == "detailed_text":
        return generator.to_detailed_text()
    return generator.to_summary_text()


def emit(output: str, output_file: Optional[str]) -> None:
    if output_file:
        with open(output_file, "w") as f:
            f.write(output)
        logger.info(f"Output written to {output_file}")
    else:
        print(output)


async def with_services(action: Callable[[PaymentServices], Awaitable[int]]) -> int:
    """Open the database, build the services, run ``action`` and clean up.

    Returns:
        The action's exit code, or 2 when it raised a typed error.
    """
    database = DatabaseManager(get_database_url())
    # Create tables if they don't exist
    services = PaymentServices.build(await database.initialize())
    try:
        return await action(services)
    except ReconcilerError as e:
        logger.error(str(e))
        return 2
    finally:
        await database.shutdown()


def run_reconcile_command(
    start_time: datetime,
    end_time: datetime,
    provider: Optional[str] = None,
    output_file: Optional[str] = None,
    output_format: str = "json",
    include_details: bool = True,
) -> int:
    """Run reconciliation (sync wrapper).

    Returns:
        0 when every item matched, 1 when issues were found, 2 on error.
    """
    async def action(services: PaymentServices) -> int:
        request = ReconciliationRequest(
            from_utc=start_time,
            to_utc=end_time,
            provider=PaymentProvider(provider) if provider else None,
        )
        logger.info(f"Starting reconciliation from {start_time} to {end_time}")
        summary = await services.reconciliation.run_reconciliation(request)
        emit(render(ReportGenerator(summary), output_format, include_details), output_file)

        if summary.issues > 0:
            logger.warning(f"Reconciliation completed with {summary.issues} issues")
            return 1
        return 0

    return asyncio.run(with_services(action))


def run_report_command(
    start_time: datetime,
    end_time: datetime,
    provider: Optional[str] = None,
    status: Optional[str] = None,
    reason: Optional[str] = None,
    skip: int = 0,
    take: int = 50,
    output_file: Optional[str] = None,
    output_format: str = "text",
) -> int:
    async def action(services: PaymentServices) -> int:
        filters = ReportFilters(
            from_utc=start_time,
            to_utc=end_time,
            provider=PaymentProvider(provider) if provider else None,
            status=ReconciliationStatus(status) if status else None,
            reason=ReconciliationReason(reason) if reason else None,
            skip=skip,
            take=take,
        )
        page = await services.reconciliation.get_report(filters)
        emit(render(ReportGenerator(page), output_format), output_file)
        return 0

    return asyncio.run(with_services(action))


def run_heal_command() -> int:
    async def action(services: PaymentServices) -> int:
        result = await services.healing.run()
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        return 1 if result.finalizer_failed or result.legal_doc_fulfillment_failed else 0

    return asyncio.run(with_services(action))


def run_finalize_command(intent_id: str, approver: Optional[str] = None) -> int:
    async def action(services: PaymentServices) -> int:
        finalized = await services.finalizer.finalize_payment_intent(intent_id, approver_id=approver)
        print(json.dumps({"payment_intent_id": intent_id, "finalized": finalized}))
        return 0

    return asyncio.run(with_services(action))


def _add_window_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--start", "-s",
        required=True,
        help="Start date/time, inclusive (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)",
    )
    parser.add_argument(
        "--end", "-e",
        required=True,
        help="End date/time, exclusive; a date alone covers that whole day",
    )
    parser.add_argument(
        "--provider", "-p",
        choices=[p.value for p in PaymentProvider],
        default=None,
        help="Provider filter (default: all)",
    )
    parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="payments-reconciler",
        description="Payment reconciliation, healing and finalization tools.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run a reconciliation over a time window",
    )
    _add_window_arguments(reconcile_parser)
    reconcile_parser.add_argument(
        "--format", "-f",
        choices=OUTPUT_FORMATS,
        default="json",
        help="Output format (default: json)",
    )
    reconcile_parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Only include counts, not the individual items",
    )

    report_parser = subparsers.add_parser(
        "report",
        help="Show reconciliation items created in a time window",
    )
    _add_window_arguments(report_parser)
    report_parser.add_argument(
        "--status",
        choices=[s.value for s in ReconciliationStatus],
        help="Only items with this status",
    )
    report_parser.add_argument(
        "--reason",
        choices=[r.value for r in ReconciliationReason],
        help="Only items with this reason",
    )
    report_parser.add_argument("--skip", type=int, default=0)
    report_parser.add_argument("--take", type=int, default=50)
    report_parser.add_argument(
        "--format", "-f",
        choices=OUTPUT_FORMATS,
        default="text",
        help="Output format (default: text)",
    )

    subparsers.add_parser("heal", help="Run one healing pass")

    finalize_parser = subparsers.add_parser("finalize", help="Finalize one payment intent")
    finalize_parser.add_argument("intent_id", help="Payment intent ID")
    finalize_parser.add_argument("--approver", help="Operator approving the finalization")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command in ("reconcile", "report"):
        try:
            start_time, end_time = parse_window(parsed_args.start, parsed_args.end)
        except ValueError as e:
            logger.error(str(e))
            return 1

        if parsed_args.command == "reconcile":
            return run_reconcile_command(
                start_time=start_time,
                end_time=end_time,
                provider=parsed_args.provider,
                output_file=parsed_args.output,
                output_format=parsed_args.format,
                include_details=not parsed_args.summary_only,
            )
        return run_report_command(
            start_time=start_time,
            end_time=end_time,
            provider=parsed_args.provider,
            status=parsed_args.status,
            reason=parsed_args.reason,
            skip=parsed_args.skip,
            take=parsed_args.take,
            output_file=parsed_args.output,
            output_format=parsed_args.format,
        )

    if parsed_args.command == "heal":
        return run_heal_command()

    if parsed_args.command == "finalize":
        return run_finalize_command(parsed_args.intent_id, approver=parsed_args.approver)

    return 0


if __name__ == "__main__":
    sys.exit(main())
