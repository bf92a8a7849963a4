"""API endpoints for reconciliation operations."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from ..auth import verify_api_key, get_operator_id, limiter, MANUAL_RECONCILE_RATE
from ..database.models import PaymentProvider, ReconciliationReason, ReconciliationStatus
from ..services import PaymentServices, get_services
from .models import (
    ManualReconcileRequest,
    ReconciliationReportPage,
    ReconciliationRequest,
    ReconciliationRunSummary,
    ReportFilters,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/reconciliation", tags=["reconciliation"])


class ManualReconcileResponse(BaseModel):
    message: str
    run_id: str = Field(..., description="ID of the manual reconciliation run")


@router.post("/run", response_model=ReconciliationRunSummary)
async def run_reconciliation(
    body: ReconciliationRequest,
    services: PaymentServices = Depends(get_services),
    operator_id: Optional[str] = Depends(get_operator_id),
    api_key: str = Depends(verify_api_key),
):
    """
    Run reconciliation over ``[from_utc, to_utc)``.

    Every provider transaction and every successful intent in the window
    produces at least one item; the response carries per-status counts.
    """
    logger.info(
        f"Starting reconciliation for {body.provider.value if body.provider else 'all providers'} "
        f"from {body.from_utc} to {body.to_utc}"
    )
    return await services.reconciliation.run_reconciliation(body, performed_by_user_id=operator_id)


@router.post("/manual", response_model=ManualReconcileResponse)
@limiter.limit(MANUAL_RECONCILE_RATE)
async def manual_reconcile(
    request: Request,
    body: ManualReconcileRequest,
    services: PaymentServices = Depends(get_services),
    operator_id: Optional[str] = Depends(get_operator_id),
    api_key: str = Depends(verify_api_key),
):
    """Force a payment intent into agreement with operator-supplied provider facts."""
    run_id = await services.reconciliation.manual_reconcile(body, performed_by_user_id=operator_id)
    return ManualReconcileResponse(message="Manual reconciliation applied.", run_id=run_id)


@router.get("/report", response_model=ReconciliationReportPage)
async def get_report(
    from_utc: datetime = Query(..., description="Start of item creation window (inclusive)"),
    to_utc: datetime = Query(..., description="End of item creation window (exclusive)"),
    provider: Optional[PaymentProvider] = Query(default=None),
    status: Optional[ReconciliationStatus] = Query(default=None),
    reason: Optional[ReconciliationReason] = Query(default=None),
    skip: int = Query(default=0),
    take: int = Query(default=50),
    services: PaymentServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
):
    """Paginated reconciliation items, newest first, with status counts."""
    filters = ReportFilters(
        from_utc=from_utc,
        to_utc=to_utc,
        provider=provider,
        status=status,
        reason=reason,
        skip=skip,
        take=take,
    )
    return await services.reconciliation.get_report(filters)
