"""Borrower and lender registration, onboarding and credit scores"""

import uuid
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from loan_engine.api.dependencies import get_request_id
from loan_engine.api.errors import to_http_exception
from loan_engine.api.v1.schemas import (
    BorrowerCreateRequest,
    BorrowerResponse,
    CreditScoreResponse,
    LenderCreateRequest,
    LenderResponse,
    OnboardingRequest,
    PaymentMethodCreateRequest,
    PaymentMethodResponse,
)
from loan_engine.domain.exceptions import BorrowerNotFoundError, DomainException
from loan_engine.infrastructure.database.repositories import BorrowerRepository
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.credit import CreditScoreService
from loan_engine.services.deductions import MandateService
from loan_engine.services.onboarding import OnboardingService

router = APIRouter()


@router.post("/borrowers", response_model=BorrowerResponse, status_code=201)
def register_borrower(body: BorrowerCreateRequest, db: Session = Depends(get_db)):
    """Register a borrower ahead of KYC"""
    service = OnboardingService(db)
    return service.register_borrower(**body.model_dump())


@router.post("/lenders", response_model=LenderResponse, status_code=201)
def register_lender(body: LenderCreateRequest, db: Session = Depends(get_db)):
    service = OnboardingService(db)
    return service.register_lender(body.business_name, user_id=body.user_id)


@router.post("/borrowers/{borrower_id}/onboarding", response_model=BorrowerResponse)
def complete_onboarding(
    borrower_id: uuid.UUID,
    body: OnboardingRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Mark KYC as verified and seed the borrower's starting score"""
    try:
        return OnboardingService(db).complete_onboarding(
            borrower_id, risk_level=body.risk_level, requires_manual_review=body.requires_manual_review
        )
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))


@router.post("/borrowers/{borrower_id}/credit-score", response_model=CreditScoreResponse)
def calculate_credit_score(borrower_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    """
    Recompute the borrower's score from their full loan history.

    Returns:
        Score in [300, 850], the fixed factor weights and the points each factor earned
    """
    try:
        credit_score = CreditScoreService(db).recompute(borrower_id, trigger="api")
    except DomainException as e:
        db.rollback()
        raise to_http_exception(e, get_request_id(request))

    components = credit_score.components
    return CreditScoreResponse(
        borrower_id=borrower_id,
        score=credit_score.score,
        factors=credit_score.factors,
        components={
            "payment_history": components.payment_history,
            "credit_utilization": components.credit_utilization,
            "credit_age": components.credit_age,
            "credit_mix": components.credit_mix,
            "new_inquiries": components.new_inquiries,
        },
    )


@router.get("/borrowers/{borrower_id}/credit-score", response_model=CreditScoreResponse)
def get_credit_score(borrower_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    """Stored score, or the 650 baseline when the borrower has never been scored"""
    try:
        score, factors = CreditScoreService(db).get_current(borrower_id)
    except DomainException as e:
        raise to_http_exception(e, get_request_id(request))
    return CreditScoreResponse(borrower_id=borrower_id, score=score, factors=factors)


@router.post("/borrowers/{borrower_id}/payment-methods", response_model=PaymentMethodResponse, status_code=201)
def add_payment_method(
    borrower_id: uuid.UUID,
    body: PaymentMethodCreateRequest,
    db: Session = Depends(get_db),
):
    if BorrowerRepository(db).get_borrower(borrower_id) is None:
        raise to_http_exception(BorrowerNotFoundError(f"Borrower not found: {borrower_id}"))
    return MandateService(db).register_payment_method(borrower_id, body.card_token, body.card_last4)
