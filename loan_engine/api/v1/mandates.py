"""Payment mandates and their scheduled deductions"""

import uuid
from typing import List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from loan_engine.api.dependencies import get_request_id
from loan_engine.api.errors import to_http_exception
from loan_engine.api.v1.schemas import DeductionSchema, MandateCreateRequest, MandateResponse
from loan_engine.domain.exceptions import DomainException, MandateNotFoundError
from loan_engine.infrastructure.database.repositories import DeductionRepository, MandateRepository
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.deductions import MandateService

router = APIRouter()


@router.post("/mandates", response_model=MandateResponse, status_code=201)
def create_mandate(body: MandateCreateRequest, request: Request, db: Session = Depends(get_db)):
    """Authorize recurring card deductions on an active loan; the first one is scheduled on start_date"""
    try:
        mandate, first = MandateService(db).create_mandate(**body.model_dump())
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))

    response = MandateResponse.model_validate(mandate)
    response.first_deduction_id = first.id
    return response


@router.post("/mandates/{mandate_id}/cancel", response_model=MandateResponse)
def cancel_mandate(mandate_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    try:
        mandate = MandateService(db).cancel_mandate(mandate_id)
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))
    return MandateResponse.model_validate(mandate)


@router.get("/mandates/{mandate_id}/deductions", response_model=List[DeductionSchema])
def list_deductions(mandate_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    if MandateRepository(db).get_mandate(mandate_id) is None:
        raise to_http_exception(MandateNotFoundError(f"Mandate not found: {mandate_id}"), get_request_id(request))
    return DeductionRepository(db).get_deductions_for_mandate(mandate_id)
