"""SQLAlchemy ORM models for the lending marketplace records"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship

from loan_engine.utils.date_utils import utcnow

Base = declarative_base()


class Borrower(Base):
    """Borrower profile and KYC outcome"""

    __tablename__ = "borrowers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=True, index=True)
    full_name = Column(Text, nullable=False)
    national_id = Column(Text, nullable=False)
    phone_number = Column(Text, nullable=False)
    country_code = Column(String(2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    credit_limit_minor = Column(BigInteger, nullable=True)
    kyc_verified = Column(Boolean, nullable=False, default=False)
    risk_level = Column(Text, nullable=True)  # low | medium | high
    requires_manual_review = Column(Boolean, nullable=False, default=False)
    onboarded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    loans = relationship("Loan", back_populates="borrower")
    score = relationship("BorrowerScore", back_populates="borrower", uselist=False)


class Lender(Base):
    """Lending business"""

    __tablename__ = "lenders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=True, index=True)
    business_name = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    loans = relationship("Loan", back_populates="lender")


class Loan(Base):
    """Loan between one lender and one borrower"""

    __tablename__ = "loans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lender_id = Column(UUID(as_uuid=True), ForeignKey("lenders.id"), nullable=False, index=True)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrowers.id"), nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    principal_minor = Column(BigInteger, nullable=False)
    apr_bps = Column(Integer, nullable=False)
    term_months = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    purpose = Column(Text, nullable=False, default="")
    status = Column(Text, nullable=False, default="pending")
    monthly_payment_minor = Column(BigInteger, nullable=False, default=0)
    total_amount_minor = Column(BigInteger, nullable=False, default=0)
    total_repaid_minor = Column(BigInteger, nullable=False, default=0)
    activated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    borrower = relationship("Borrower", back_populates="loans")
    lender = relationship("Lender", back_populates="loans")
    schedule = relationship(
        "RepaymentSchedule",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="RepaymentSchedule.payment_number",
    )
    repayments = relationship("RepaymentEvent", back_populates="loan", order_by="RepaymentEvent.created_at")
    agreement = relationship("LoanAgreement", back_populates="loan", uselist=False)


class RepaymentSchedule(Base):
    """One installment of a loan's schedule"""

    __tablename__ = "repayment_schedules"
    __table_args__ = (UniqueConstraint("loan_id", "payment_number"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    principal_component = Column(BigInteger, nullable=False)
    interest_component = Column(BigInteger, nullable=False)
    paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)

    loan = relationship("Loan", back_populates="schedule")

    @property
    def amount(self) -> int:
        return self.principal_component + self.interest_component


class RepaymentEvent(Base):
    """Append-only record of money received against a loan"""

    __tablename__ = "repayment_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=False, index=True)
    schedule_id = Column(UUID(as_uuid=True), ForeignKey("repayment_schedules.id"), nullable=True)
    amount_minor = Column(BigInteger, nullable=False)
    method = Column(Text, nullable=False)  # manual | card_deduction | cash | bank_transfer | mobile_money
    transaction_reference = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    loan = relationship("Loan", back_populates="repayments")


class BorrowerScore(Base):
    """Current credit score, one row per borrower"""

    __tablename__ = "borrower_scores"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrowers.id"), nullable=False, unique=True)
    score = Column(Integer, nullable=False)
    factors = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    borrower = relationship("Borrower", back_populates="score")


class LoanAgreement(Base):
    """Rendered agreement with per-party download tracking"""

    __tablename__ = "loan_agreements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=False, unique=True)
    agreement_html = Column(Text, nullable=False)
    generated_at = Column(DateTime, nullable=False, default=utcnow)
    lender_downloaded_at = Column(DateTime, nullable=True)
    borrower_downloaded_at = Column(DateTime, nullable=True)

    loan = relationship("Loan", back_populates="agreement")


class PaymentMethod(Base):
    """Tokenized card held by the payment gateway"""

    __tablename__ = "payment_methods"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrowers.id"), nullable=False, index=True)
    card_token = Column(Text, nullable=False)
    card_last4 = Column(String(4), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PaymentMandate(Base):
    """Standing authorization for recurring card deductions on a loan"""

    __tablename__ = "payment_mandates"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=False, index=True)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrowers.id"), nullable=False)
    lender_id = Column(UUID(as_uuid=True), ForeignKey("lenders.id"), nullable=False)
    payment_method_id = Column(UUID(as_uuid=True), ForeignKey("payment_methods.id"), nullable=False)
    mandate_reference = Column(Text, nullable=False, unique=True)
    amount_minor = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    frequency = Column(Text, nullable=False)  # weekly | biweekly | monthly
    deduction_day = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    payment_method = relationship("PaymentMethod")
    deductions = relationship("ScheduledDeduction", back_populates="mandate")


class ScheduledDeduction(Base):
    """One materialized occurrence of a mandate's recurring charge"""

    __tablename__ = "scheduled_deductions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mandate_id = Column(UUID(as_uuid=True), ForeignKey("payment_mandates.id"), nullable=False, index=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=False)
    payment_method_id = Column(UUID(as_uuid=True), ForeignKey("payment_methods.id"), nullable=True)
    scheduled_date = Column(Date, nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(Text, nullable=False, default="scheduled", index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_attempt_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)
    failure_reason = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    mandate = relationship("PaymentMandate", back_populates="deductions")
    payment_method = relationship("PaymentMethod")
    loan = relationship("Loan")


class DeductionTransaction(Base):
    """Ledger row written per gateway outcome"""

    __tablename__ = "deduction_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    mandate_id = Column(UUID(as_uuid=True), ForeignKey("payment_mandates.id"), nullable=False, index=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id"), nullable=False)
    scheduled_deduction_id = Column(UUID(as_uuid=True), ForeignKey("scheduled_deductions.id"), nullable=False)
    payment_method_id = Column(UUID(as_uuid=True), ForeignKey("payment_methods.id"), nullable=True)
    transaction_reference = Column(Text, nullable=False)
    gateway_transaction_id = Column(Text, nullable=True, index=True)
    gross_amount = Column(BigInteger, nullable=False)
    platform_fee = Column(BigInteger, nullable=False)
    lender_amount = Column(BigInteger, nullable=False)
    platform_fee_rate = Column(Text, nullable=False, default="0.02")
    currency = Column(String(3), nullable=False)
    status = Column(Text, nullable=False)  # success | failed | refunded | disputed
    failure_code = Column(Text, nullable=True)
    failure_message = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class PaymentWebhookLog(Base):
    """Verbatim audit record of every gateway callback"""

    __tablename__ = "payment_webhook_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False)
    event_type = Column(Text, nullable=True)
    raw_payload = Column(JSON, nullable=False)
    signature_valid = Column(Boolean, nullable=False)
    ip_address = Column(Text, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)
    transaction_id = Column(Text, nullable=True)
    mandate_id = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=utcnow)


class Notification(Base):
    """In-app notification"""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(Text, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
