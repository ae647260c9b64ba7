"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

Role = Literal["lender", "borrower"]
LoanAction = Literal["approve", "accept", "reject", "cancel"]
FrequencyName = Literal["weekly", "biweekly", "monthly"]


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class BorrowerCreateRequest(BaseModel):
    """Request body for POST /v1/borrowers"""

    full_name: str = Field(..., min_length=2, pattern=r"^[a-zA-Z\s'-]+$")
    national_id: str = Field(..., min_length=5, max_length=30)
    phone_number: str = Field(..., pattern=r"^\+?[1-9]\d{7,14}$")
    country_code: str = Field(..., min_length=2, max_length=2)
    currency: str = Field("USD", min_length=3, max_length=3)
    credit_limit_minor: Optional[int] = Field(None, gt=0)
    user_id: Optional[str] = None


class LenderCreateRequest(BaseModel):
    """Request body for POST /v1/lenders"""

    business_name: str = Field(..., min_length=2)
    user_id: Optional[str] = None


class OnboardingRequest(BaseModel):
    """Request body for POST /v1/borrowers/{id}/onboarding"""

    risk_level: Literal["low", "medium", "high"] = "low"
    requires_manual_review: bool = False


class BorrowerResponse(OrmModel):
    id: UUID
    full_name: str
    country_code: str
    currency: str
    credit_limit_minor: Optional[int] = None
    kyc_verified: bool
    risk_level: Optional[str] = None
    created_at: datetime


class LenderResponse(OrmModel):
    id: UUID
    business_name: str
    created_at: datetime


class CreditScoreResponse(BaseModel):
    """Stored or freshly computed credit score"""

    borrower_id: UUID
    score: int
    factors: Dict[str, int]
    components: Optional[Dict[str, float]] = None


class PaymentMethodCreateRequest(BaseModel):
    card_token: str = Field(..., min_length=1)
    card_last4: Optional[str] = Field(None, min_length=4, max_length=4)


class PaymentMethodResponse(OrmModel):
    id: UUID
    borrower_id: UUID
    card_last4: Optional[str] = None


class LoanQuoteRequest(BaseModel):
    """Request body for POST /v1/loans/quote"""

    principal_minor: int = Field(..., gt=0, description="Principal in minor units")
    apr_bps: int = Field(..., ge=0, le=36_000, description="APR in basis points (1500 = 15%)")
    term_months: int = Field(..., ge=1, le=60)
    start_date: date


class LoanCreateRequest(BaseModel):
    """Request body for POST /v1/loans"""

    lender_id: UUID
    borrower_id: UUID
    principal_minor: int = Field(..., gt=0, description="Principal in minor units")
    apr_bps: int = Field(..., ge=0, le=36_000, description="APR in basis points (1500 = 15%)")
    term_months: int = Field(..., ge=1, le=60)
    actor_role: Role = "lender"
    purpose: str = ""
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    start_date: Optional[date] = None


class ScheduleEntrySchema(OrmModel):
    """Single installment in a repayment schedule"""

    id: Optional[UUID] = None
    payment_number: int
    due_date: date
    principal_component: int
    interest_component: int
    paid: bool = False


class ScheduleResponse(BaseModel):
    loan_id: Optional[UUID] = None
    monthly_payment_minor: int
    total_amount_minor: int
    entries: List[ScheduleEntrySchema]


class LoanResponse(OrmModel):
    id: UUID
    lender_id: UUID
    borrower_id: UUID
    currency: str
    principal_minor: int
    apr_bps: int
    term_months: int
    start_date: date
    purpose: str
    status: str
    monthly_payment_minor: int
    total_amount_minor: int
    total_repaid_minor: int
    activated_at: Optional[datetime] = None
    created_at: datetime
    warnings: List[str] = []


class LoanTransitionRequest(BaseModel):
    """Request body for POST /v1/loans/{id}/transition"""

    action: LoanAction
    actor_role: Role


class RepaymentRequest(BaseModel):
    """Request body for POST /v1/loans/{id}/repayments"""

    schedule_id: UUID
    amount_minor: int = Field(..., gt=0)
    method: Literal["manual", "cash", "bank_transfer", "mobile_money", "other"] = "manual"
    paid_at: Optional[datetime] = None
    reference: Optional[str] = None


class RepaymentResponse(BaseModel):
    event_id: UUID
    loan_id: UUID
    amount_minor: int
    fully_repaid: bool


class MandateCreateRequest(BaseModel):
    """Request body for POST /v1/mandates"""

    loan_id: UUID
    payment_method_id: UUID
    amount_minor: int = Field(..., gt=0)
    frequency: FrequencyName = "monthly"
    deduction_day: int = Field(1, ge=0, le=28)
    start_date: date


class MandateResponse(OrmModel):
    id: UUID
    loan_id: UUID
    mandate_reference: str
    amount_minor: int
    currency: str
    frequency: str
    deduction_day: int
    status: str
    first_deduction_id: Optional[UUID] = None


class DeductionSchema(OrmModel):
    id: UUID
    scheduled_date: date
    amount: int
    currency: str
    status: str
    attempt_count: int
    max_attempts: int
    next_retry_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class DeductionRunResponse(BaseModel):
    """Summary of one driver run"""

    total: int
    success: int
    failed: int
    skipped: int
    cancelled: int
    errors: List[str]


class ReconcileResponse(BaseModel):
    total: int
    rescheduled: int
    failed: int


class WebhookResponse(BaseModel):
    success: bool
    message: str
    transaction_id: Optional[str] = None


class NotificationSchema(OrmModel):
    id: UUID
    type: str
    title: str
    message: str
    link: Optional[str] = None
    read: bool
    created_at: datetime
