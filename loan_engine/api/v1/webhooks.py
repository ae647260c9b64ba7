"""POST /v1/webhooks/payments - payment gateway callbacks"""

import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_engine.api.dependencies import get_client_ip, get_request_id
from loan_engine.api.errors import to_http_exception
from loan_engine.api.v1.schemas import WebhookResponse
from loan_engine.domain.exceptions import DomainException
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.webhooks import PaymentWebhookService

router = APIRouter()

SIGNATURE_HEADER = "X-Gateway-Signature"


@router.post("/webhooks/payments", response_model=WebhookResponse)
async def receive_payment_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Verify and apply a gateway event.

    The signature is computed over the exact request bytes, so the body is
    read raw and parsed here rather than through a request model.
    """
    request_id = get_request_id(request)
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    service = PaymentWebhookService(db)
    try:
        result = service.process(raw_body, payload, request.headers.get(SIGNATURE_HEADER), get_client_ip(request))
    except DomainException as e:
        db.rollback()
        logging.warning(f"Webhook rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(f"Webhook processing failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    message = "Duplicate event ignored" if result.get("duplicate") else "Webhook processed"
    return WebhookResponse(success=True, message=message, transaction_id=result.get("transaction_id"))
