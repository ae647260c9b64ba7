"""Loan quotes, origination, lifecycle transitions, schedules and repayments"""

import logging
import uuid
from typing import Literal
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from loan_engine.api.dependencies import get_request_id
from loan_engine.api.errors import to_http_exception
from loan_engine.api.v1.schemas import (
    LoanCreateRequest,
    LoanQuoteRequest,
    LoanResponse,
    LoanTransitionRequest,
    RepaymentRequest,
    RepaymentResponse,
    ScheduleEntrySchema,
    ScheduleResponse,
)
from loan_engine.domain.amortization import compute_schedule
from loan_engine.domain.exceptions import DomainException
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.loans import LoanService

router = APIRouter()


def _loan_response(loan, warnings) -> LoanResponse:
    response = LoanResponse.model_validate(loan)
    response.warnings = list(warnings)
    return response


@router.post("/loans/quote", response_model=ScheduleResponse)
def quote_loan(body: LoanQuoteRequest, request: Request):
    """
    Price a loan without storing anything.

    Returns the level monthly payment and the full amortization table.
    """
    try:
        schedule = compute_schedule(body.principal_minor, body.apr_bps, body.term_months, body.start_date)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    return ScheduleResponse(
        monthly_payment_minor=schedule.monthly_payment_minor,
        total_amount_minor=schedule.total_amount_minor,
        entries=[ScheduleEntrySchema.model_validate(entry) for entry in schedule.entries],
    )


@router.post("/loans", response_model=LoanResponse, status_code=201)
def create_loan(body: LoanCreateRequest, request: Request, db: Session = Depends(get_db)):
    """
    Create a loan offer (lender) or loan request (borrower).

    A lender offer starts pending, a borrower request starts requested.
    """
    request_id = get_request_id(request)
    try:
        loan, warnings = LoanService(db).create_loan(**body.model_dump())
    except DomainException as e:
        db.rollback()
        logging.warning(f"Loan creation rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)

    return _loan_response(loan, warnings)


@router.get("/loans/{loan_id}", response_model=LoanResponse)
def get_loan(loan_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    try:
        loan = LoanService(db).get_loan(loan_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))
    return _loan_response(loan, [])


@router.get("/loans/{loan_id}/schedule", response_model=ScheduleResponse)
def get_schedule(loan_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    """Stored schedule, ordered by payment number"""
    try:
        loan = LoanService(db).get_loan(loan_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))

    return ScheduleResponse(
        loan_id=loan.id,
        monthly_payment_minor=loan.monthly_payment_minor,
        total_amount_minor=loan.total_amount_minor,
        entries=[ScheduleEntrySchema.model_validate(row) for row in loan.schedule],
    )


@router.post("/loans/{loan_id}/schedule", response_model=ScheduleResponse)
def regenerate_schedule(loan_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    """Rebuild the schedule from the loan's current terms (not allowed once active)"""
    service = LoanService(db)
    try:
        rows = service.regenerate_schedule(loan_id)
        loan = service.get_loan(loan_id)
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))

    return ScheduleResponse(
        loan_id=loan.id,
        monthly_payment_minor=loan.monthly_payment_minor,
        total_amount_minor=loan.total_amount_minor,
        entries=[ScheduleEntrySchema.model_validate(row) for row in rows],
    )


@router.post("/loans/{loan_id}/transition", response_model=LoanResponse)
def transition_loan(
    loan_id: uuid.UUID,
    body: LoanTransitionRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    request_id = get_request_id(request)
    try:
        loan, warnings = LoanService(db).transition_loan(loan_id, body.action, body.actor_role)
    except DomainException as e:
        db.rollback()
        logging.warning(f"Loan transition rejected: {e}", extra={"request_id": request_id})
        raise to_http_exception(e, request_id)

    return _loan_response(loan, warnings)


@router.post("/loans/{loan_id}/repayments", response_model=RepaymentResponse, status_code=201)
def record_repayment(
    loan_id: uuid.UUID,
    body: RepaymentRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Record money received outside the card deduction flow"""
    try:
        event, fully_repaid = LoanService(db).record_repayment(
            loan_id,
            body.schedule_id,
            body.amount_minor,
            method=body.method,
            paid_at=body.paid_at,
            reference=body.reference,
        )
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))

    return RepaymentResponse(
        event_id=event.id,
        loan_id=loan_id,
        amount_minor=event.amount_minor,
        fully_repaid=fully_repaid,
    )


@router.get("/loans/{loan_id}/agreement", response_class=HTMLResponse)
def download_agreement(
    loan_id: uuid.UUID,
    request: Request,
    role: Literal["lender", "borrower"] = "borrower",
    db: Session = Depends(get_db),
):
    try:
        agreement = LoanService(db).download_agreement(loan_id, role)
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))

    return HTMLResponse(
        content=agreement.agreement_html,
        headers={"Content-Disposition": f'attachment; filename="loan-agreement-{loan_id}.html"'},
    )
