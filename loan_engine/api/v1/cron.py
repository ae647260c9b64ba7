"""Endpoints invoked by the external scheduler"""

import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from loan_engine.api.dependencies import get_payment_gateway_client, get_request_id, verify_cron_secret
from loan_engine.api.v1.schemas import DeductionRunResponse, ReconcileResponse
from loan_engine.infrastructure.clients.payment_gateway import PaymentGatewayClient
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.deductions import DeductionProcessor

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.post("/cron/process-deductions", response_model=DeductionRunResponse)
async def process_deductions(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway_client),
):
    """
    Charge every deduction due today or earlier.

    Per-deduction failures are counted and reported, they never abort the run.
    """
    request_id = get_request_id(request)
    results = await DeductionProcessor(db, gateway).run()
    logging.info(
        "Deduction run finished",
        extra={"request_id": request_id, "total": results["total"], "success": results["success"]},
    )
    return results


@router.post("/cron/reconcile-deductions", response_model=ReconcileResponse)
def reconcile_deductions(db: Session = Depends(get_db)):
    """Return deductions stuck in processing to the retry cycle"""
    return DeductionProcessor(db).reconcile_stuck_deductions()
