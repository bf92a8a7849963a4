"""Tests for reconciliation report output."""

import csv
import io
import json
import pytest
from datetime import datetime
from decimal import Decimal

from payments_reconciler.database import ReconciliationReason, ReconciliationStatus
from payments_reconciler.reconciliation import (
    ItemDraft,
    ReconciliationReportPage,
    ReconciliationRunSummary,
    ReportGenerator,
    ReportRow,
)


@pytest.fixture
def run_summary():
    items = [
        ItemDraft(
            provider="mpesa",
            reference="R1",
            payment_intent_id="pi-1",
            provider_transaction_ref_id="ptx-1",
            status=ReconciliationStatus.MATCHED,
            details="Matched provider transaction to payment intent.",
        ),
        ItemDraft(
            provider="mpesa",
            reference="R2",
            payment_intent_id="pi-2",
            provider_transaction_ref_id="ptx-2",
            status=ReconciliationStatus.MISMATCH,
            reason=ReconciliationReason.AMOUNT_MISMATCH,
            details="Amount mismatch. Intent=1000, Provider=999",
        ),
        ItemDraft(
            provider="mpesa",
            reference="R3",
            provider_transaction_ref_id="ptx-3",
            status=ReconciliationStatus.MISSING_INTERNAL_INTENT,
            reason=ReconciliationReason.NO_PAYMENT_INTENT_FOR_REFERENCE,
            details="Provider transaction exists but no payment intent matched. TxId=T3",
        ),
    ]
    return ReconciliationRunSummary(
        run_id="run-1",
        provider="mpesa",
        from_utc=datetime(2025, 3, 1),
        to_utc=datetime(2025, 3, 2),
        mode="auto",
        created_at=datetime(2025, 3, 2, 0, 5),
        total_intents=2,
        total_provider_transactions=3,
        total_items=3,
        matched=1,
        mismatch=1,
        missing_internal_intent=1,
        items=items,
    )


@pytest.fixture
def report_page():
    return ReconciliationReportPage(
        from_utc=datetime(2025, 3, 1),
        to_utc=datetime(2025, 3, 2),
        total=2,
        skip=0,
        take=50,
        matched=1,
        finalizer_failed=1,
        rows=[
            ReportRow(
                item_id="item-1",
                run_id="run-1",
                created_at=datetime(2025, 3, 1, 10, 0),
                provider="mpesa",
                reference="R1",
                status="finalizer_failed",
                reason="finalization_error",
                details="Intent is success but not finalized.",
                payment_intent_id="pi-1",
                intent_amount=Decimal("500"),
                intent_currency="KES",
                intent_status="success",
                intent_is_finalized=False,
                intent_purpose="public_product_purchase",
            ),
            ReportRow(
                item_id="item-2",
                run_id="run-1",
                created_at=datetime(2025, 3, 1, 9, 0),
                provider="mpesa",
                reference="R9",
                status="matched",
                reason="none",
            ),
        ],
    )


class TestRunSummary:
    """Tests for ReconciliationRunSummary."""

    def test_issues_exclude_matched_and_manual(self, run_summary):
        assert run_summary.issues == 2

    def test_summary_dict(self, run_summary):
        data = run_summary.to_summary_dict()

        assert data["run_id"] == "run-1"
        assert data["statistics"]["issues"] == 2
        assert data["counts"]["matched"] == 1
        assert data["counts"]["duplicate"] == 0
        assert "items" not in data

    def test_full_dict(self, run_summary):
        data = run_summary.to_full_dict()

        assert len(data["items"]) == 3
        assert data["items"][1]["status"] == "mismatch"
        assert data["items"][1]["reason"] == "amount_mismatch"


class TestReportGenerator:
    """Tests for ReportGenerator."""

    def test_to_json_summary(self, run_summary):
        """Test JSON output without items."""
        data = json.loads(ReportGenerator(run_summary).to_json(include_details=False))

        assert data["statistics"]["total_items"] == 3
        assert data["counts"]["mismatch"] == 1
        assert "items" not in data

    def test_to_json_with_details(self, run_summary):
        data = json.loads(ReportGenerator(run_summary).to_json())

        assert [i["reference"] for i in data["items"]] == ["R1", "R2", "R3"]

    def test_report_page_json(self, report_page):
        """Test a report page serialises decimals and datetimes."""
        data = json.loads(ReportGenerator(report_page).to_json())

        assert data["total"] == 2
        assert data["rows"][0]["intent_amount"] == "500"
        assert data["rows"][0]["created_at"] == "2025-03-01T10:00:00"

        counts_only = json.loads(ReportGenerator(report_page).to_json(include_details=False))
        assert "rows" not in counts_only

    def test_run_to_csv(self, run_summary):
        """Test CSV has a header and one line per item."""
        rows = list(csv.reader(io.StringIO(ReportGenerator(run_summary).to_csv())))

        assert rows[0][:3] == ["status", "reason", "provider"]
        assert len(rows) == 4
        assert rows[3][0] == "missing_internal_intent"
        assert rows[3][4] == ""

    def test_page_to_csv(self, report_page):
        rows = list(csv.reader(io.StringIO(ReportGenerator(report_page).to_csv())))

        header = rows[0]
        first = dict(zip(header, rows[1]))
        second = dict(zip(header, rows[2]))
        assert first["intent_amount"] == "500"
        assert first["intent_is_finalized"] == "false"
        assert second["intent_amount"] == ""
        assert second["intent_is_finalized"] == ""

    def test_to_summary_text(self, run_summary):
        text = ReportGenerator(run_summary).to_summary_text()

        assert "RECONCILIATION RUN SUMMARY" in text
        assert "Run ID: run-1" in text
        assert "Issues: 2" in text
        assert "mismatch: 1" in text

    def test_page_summary_text(self, report_page):
        text = ReportGenerator(report_page).to_summary_text()

        assert "RECONCILIATION REPORT" in text
        assert "Total Items: 2" in text
        assert "finalizer_failed: 1" in text

    def test_detailed_text_lists_only_issues(self, run_summary):
        text = ReportGenerator(run_summary).to_detailed_text()

        assert "ISSUES" in text
        assert "Reference: R2" in text
        assert "Reference: R3" in text
        assert "Reference: R1" not in text
