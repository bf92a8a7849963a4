"""Report generation for reconciliation results."""

import json
import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Union

from ..database.models import ReconciliationStatus
from .models import ReconciliationReportPage, ReconciliationRunSummary, status_counts_dict

ITEM_COLUMNS = [
    "status", "reason", "provider", "reference", "payment_intent_id",
    "provider_transaction_ref_id", "invoice_id", "details",
]

ROW_COLUMNS = [
    "created_at", "run_id", "status", "reason", "provider", "reference",
    "payment_intent_id", "intent_amount", "intent_currency", "intent_status",
    "intent_is_finalized", "intent_purpose", "invoice_id", "details",
]


def _json_serializer(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


class ReportGenerator:
    """Generator for reconciliation output in various formats.

    Accepts either the summary of a single run or a page of the
    reconciliation report.
    """

    def __init__(self, source: Union[ReconciliationRunSummary, ReconciliationReportPage]):
        """Initialize the report generator.

        Args:
            source: Run summary or report page to generate output from.
        """
        self.source = source

    @property
    def is_run(self) -> bool:
        return isinstance(self.source, ReconciliationRunSummary)

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation.

        Args:
            include_details: If True, include items or rows. If False, only counts.
            indent: JSON indentation level.

        Returns:
            JSON string.
        """
        if self.is_run:
            data = self.source.to_full_dict() if include_details else self.source.to_summary_dict()
        else:
            data = self.source.model_dump()
            if not include_details:
                data.pop("rows")

        return json.dumps(data, indent=indent, default=_json_serializer)

    def to_csv(self) -> str:
        """Generate CSV with one line per item (run) or row (report page)."""
        output = io.StringIO()
        writer = csv.writer(output)

        if self.is_run:
            writer.writerow(ITEM_COLUMNS)
            for item in self.source.items:
                writer.writerow([
                    item.status.value,
                    item.reason.value,
                    item.provider,
                    item.reference or "",
                    item.payment_intent_id or "",
                    item.provider_transaction_ref_id or "",
                    item.invoice_id or "",
                    item.details,
                ])
        else:
            writer.writerow(ROW_COLUMNS)
            for row in self.source.rows:
                writer.writerow([
                    row.created_at.isoformat(),
                    row.run_id,
                    row.status,
                    row.reason,
                    row.provider,
                    row.reference or "",
                    row.payment_intent_id or "",
                    "" if row.intent_amount is None else str(row.intent_amount),
                    row.intent_currency or "",
                    row.intent_status or "",
                    "" if row.intent_is_finalized is None else str(row.intent_is_finalized).lower(),
                    row.intent_purpose or "",
                    row.invoice_id or "",
                    row.details or "",
                ])

        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary.

        Returns:
            Formatted text summary.
        """
        counts = status_counts_dict(self.source)

        if self.is_run:
            summary = self.source.to_summary_dict()
            stats = summary["statistics"]
            lines = [
                "=" * 60,
                "RECONCILIATION RUN SUMMARY",
                "=" * 60,
                f"Run ID: {summary['run_id']}",
                f"Mode: {summary['mode']}",
                f"Provider: {summary['provider'] or 'all'}",
                "",
                "Time Range:",
                f"  From: {summary['from_utc']}",
                f"  To: {summary['to_utc']}",
                "",
                "Statistics:",
                f"  Payment Intents: {stats['total_intents']}",
                f"  Provider Transactions: {stats['total_provider_transactions']}",
                f"  Items: {stats['total_items']}",
                f"  Issues: {stats['issues']}",
            ]
        else:
            page = self.source
            lines = [
                "=" * 60,
                "RECONCILIATION REPORT",
                "=" * 60,
                "Time Range:",
                f"  From: {page.from_utc.isoformat()}",
                f"  To: {page.to_utc.isoformat()}",
                "",
                f"Total Items: {page.total}",
                f"Showing: {len(page.rows)} (skip {page.skip}, take {page.take})",
            ]

        lines.extend(["", "Counts:"])
        for status, count in counts.items():
            lines.append(f"  {status}: {count}")
        lines.append("=" * 60)

        return "\n".join(lines)

    def to_detailed_text(self) -> str:
        """Generate the summary followed by every finding that needs attention."""
        lines = [self.to_summary_text(), ""]

        if self.is_run:
            findings = [
                (i.status.value, i.reason.value, i.reference, i.payment_intent_id, i.details)
                for i in self.source.items
            ]
        else:
            findings = [
                (r.status, r.reason, r.reference, r.payment_intent_id, r.details)
                for r in self.source.rows
            ]

        ok = {ReconciliationStatus.MATCHED.value, ReconciliationStatus.MANUALLY_RESOLVED.value}
        issues = [f for f in findings if f[0] not in ok]
        if issues:
            lines.extend(["ISSUES", "-" * 40])
            for status, reason, reference, intent_id, details in issues:
                lines.extend([
                    f"\n{status} ({reason})",
                    f"  Reference: {reference or '-'}",
                    f"  Intent: {intent_id or '-'}",
                    f"  Details: {details or ''}",
                ])
            lines.append("")

        return "\n".join(lines)
