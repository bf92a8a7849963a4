"""Admin endpoints for finalization and healing."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..auth import verify_api_key, get_operator_id
from ..services import PaymentServices, get_services
from .service import HealingResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/payments", tags=["payments"])


class FinalizeResponse(BaseModel):
    payment_intent_id: str
    finalized: bool


@router.post("/heal/run", response_model=HealingResult)
async def run_healing(
    services: PaymentServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
):
    """Run one healing pass now. Returns 409 while another pass is in progress."""
    result = await services.scheduler.tick()
    if result is None:
        raise HTTPException(status_code=409, detail="A healing pass is already running.")
    return result


@router.post("/{intent_id}/finalize", response_model=FinalizeResponse)
async def finalize_payment(
    intent_id: str,
    services: PaymentServices = Depends(get_services),
    operator_id: Optional[str] = Depends(get_operator_id),
    api_key: str = Depends(verify_api_key),
):
    """Finalize a successful payment intent, recording the operator as approver."""
    finalized = await services.finalizer.finalize_payment_intent(intent_id, approver_id=operator_id)
    logger.info(f"Admin finalize of payment intent {intent_id}: finalized={finalized}")
    return FinalizeResponse(payment_intent_id=intent_id, finalized=finalized)
