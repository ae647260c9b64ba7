"""Loan origination, lifecycle transitions and manual repayments"""

import logging
import uuid
from datetime import date, datetime
from typing import Callable, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_engine.domain.agreements import render_agreement
from loan_engine.domain.amortization import compute_schedule, first_due_date_after_activation, validate_loan_terms
from loan_engine.domain.exceptions import (
    BorrowerNotFoundError,
    DomainException,
    LoanNotFoundError,
    NotAuthorizedError,
    ScheduleEntryNotFoundError,
    ValidationError,
)
from loan_engine.domain.loans import (
    BORROWER,
    LENDER,
    check_borrower_eligibility,
    initial_status,
    is_fully_repaid,
    resolve_transition,
)
from loan_engine.domain.models import LoanStatus, ScheduleEntry
from loan_engine.infrastructure.database.models import Loan, LoanAgreement, RepaymentEvent, RepaymentSchedule
from loan_engine.infrastructure.database.repositories import BorrowerRepository, LoanRepository
from loan_engine.infrastructure.database.session import commit
from loan_engine.infrastructure.observability.metrics import loan_transition_counter
from loan_engine.services.credit import CreditScoreService
from loan_engine.services.notifications import NotificationService, recipient_id
from loan_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

LOCKED_STATUSES = (LoanStatus.ACTIVE, LoanStatus.COMPLETED)


class LoanService:
    """Loan lifecycle orchestration"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.loans = LoanRepository(db)
        self.borrowers = BorrowerRepository(db)
        self.credit = CreditScoreService(db, clock=clock)
        self.notifications = NotificationService(db)

    def get_loan(self, loan_id: uuid.UUID) -> Loan:
        loan = self.loans.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan not found: {loan_id}")
        return loan

    def create_loan(
        self,
        lender_id: uuid.UUID,
        borrower_id: uuid.UUID,
        principal_minor: int,
        apr_bps: int,
        term_months: int,
        actor_role: str = LENDER,
        purpose: str = "",
        currency: str | None = None,
        start_date: date | None = None,
    ) -> Tuple[Loan, List[str]]:
        """
        Create a loan and its repayment schedule.

        Validation happens before anything is written. Schedule generation
        runs after the loan is stored; if it fails the loan is kept and the
        problem is returned as a warning.

        Returns:
            (loan, warnings)
        """
        validate_loan_terms(principal_minor, apr_bps, term_months)
        status = initial_status(actor_role)

        borrower = self.borrowers.get_borrower(borrower_id)
        if borrower is None:
            raise BorrowerNotFoundError(f"Borrower not found: {borrower_id}")
        lender = self.borrowers.get_lender(lender_id)
        if lender is None:
            raise ValidationError(f"Lender not found: {lender_id}")

        check_borrower_eligibility(borrower.kyc_verified, borrower.risk_level, borrower.requires_manual_review)
        if borrower.risk_level == "medium":
            logger.warning("Creating loan for medium-risk borrower", extra={"borrower_id": str(borrower.id)})

        loan = self.loans.create_loan(
            lender_id=lender.id,
            borrower_id=borrower.id,
            currency=(currency or borrower.currency).upper(),
            principal_minor=principal_minor,
            apr_bps=apr_bps,
            term_months=term_months,
            start_date=start_date or self.clock().date(),
            purpose=purpose,
            status=status,
            total_amount_minor=principal_minor,
        )
        commit(self.db)
        loan_transition_counter.labels(status=status).inc()
        logger.info("Loan created", extra={"loan_id": str(loan.id), "status": status})

        warnings: List[str] = []
        try:
            self._write_schedule(loan)
            commit(self.db)
        except (DomainException, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Error generating repayment schedule", extra={"loan_id": str(loan.id)})
            warnings.append("Repayment schedule could not be generated")

        if actor_role == LENDER:
            self.notifications.loan_offer_received(
                recipient_id(borrower.user_id, borrower.id), lender.business_name, principal_minor, loan.currency
            )
        return loan, warnings

    def _write_schedule(self, loan: Loan) -> List[RepaymentSchedule]:
        schedule = compute_schedule(loan.principal_minor, loan.apr_bps, loan.term_months, loan.start_date)
        rows = self.loans.replace_schedule(loan, schedule.entries)
        loan.monthly_payment_minor = schedule.monthly_payment_minor
        loan.total_amount_minor = schedule.total_amount_minor
        return rows

    def regenerate_schedule(self, loan_id: uuid.UUID) -> List[RepaymentSchedule]:
        """Replace the whole schedule; terms are frozen once the loan is active"""
        loan = self.get_loan(loan_id)
        if loan.status in LOCKED_STATUSES:
            raise ValidationError("Loan terms and schedule are locked once the loan is active")

        rows = self._write_schedule(loan)
        commit(self.db)
        return rows

    def transition_loan(self, loan_id: uuid.UUID, action: str, actor_role: str) -> Tuple[Loan, List[str]]:
        """
        Apply a lifecycle action (approve, accept, reject, cancel).

        Activation patches the first due date and generates the agreement;
        both are best effort and never undo the transition.

        Returns:
            (loan, warnings)
        """
        loan = self.get_loan(loan_id)
        target = resolve_transition(loan.status, action, actor_role)

        now = self.clock()
        loan.status = target
        if target == LoanStatus.ACTIVE:
            loan.activated_at = now
        commit(self.db)
        loan_transition_counter.labels(status=target).inc()
        logger.info("Loan transitioned", extra={"loan_id": str(loan.id), "action": action, "status": target})

        warnings: List[str] = []
        if target == LoanStatus.ACTIVE:
            warnings.extend(self._on_activation(loan, now.date()))
        return loan, warnings

    def _on_activation(self, loan: Loan, activated_on: date) -> List[str]:
        warnings = []
        try:
            self.loans.set_first_due_date(loan.id, first_due_date_after_activation(activated_on))
            commit(self.db)
        except (DomainException, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Failed to update first due date", extra={"loan_id": str(loan.id)})
            warnings.append("First due date could not be updated")

        try:
            self.generate_agreement(loan)
        except (DomainException, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Failed to generate loan agreement", extra={"loan_id": str(loan.id)})
            warnings.append("Loan agreement could not be generated")

        self.notifications.loan_accepted(
            recipient_id(loan.lender.user_id, loan.lender.id),
            loan.borrower.full_name,
            loan.principal_minor,
            loan.currency,
        )
        return warnings

    def generate_agreement(self, loan: Loan) -> LoanAgreement:
        """Render and store the agreement, or return the one that already exists"""
        existing = self.loans.get_agreement(loan.id)
        if existing is not None:
            return existing

        entries = [
            ScheduleEntry(
                payment_number=row.payment_number,
                due_date=row.due_date,
                principal_component=row.principal_component,
                interest_component=row.interest_component,
            )
            for row in self.loans.get_schedule(loan.id)
        ]
        html = render_agreement(
            loan_id=str(loan.id),
            lender_name=loan.lender.business_name,
            borrower_name=loan.borrower.full_name,
            principal_minor=loan.principal_minor,
            apr_bps=loan.apr_bps,
            term_months=loan.term_months,
            currency=loan.currency,
            start_date=loan.start_date,
            entries=entries,
        )
        agreement = self.loans.create_agreement(loan.id, html)
        commit(self.db)
        logger.info("Loan agreement generated", extra={"loan_id": str(loan.id)})
        return agreement

    def download_agreement(self, loan_id: uuid.UUID, viewer_role: str) -> LoanAgreement:
        """Fetch (generating on demand) and stamp who downloaded it"""
        if viewer_role not in (LENDER, BORROWER):
            raise NotAuthorizedError(f"Unknown role: {viewer_role}")

        loan = self.get_loan(loan_id)
        agreement = self.generate_agreement(loan)

        if viewer_role == LENDER:
            agreement.lender_downloaded_at = self.clock()
        else:
            agreement.borrower_downloaded_at = self.clock()
        commit(self.db)
        return agreement

    def apply_repayment(
        self,
        loan: Loan,
        entry: RepaymentSchedule | None,
        amount_minor: int,
        method: str,
        paid_at: datetime,
        reference: str | None = None,
    ) -> Tuple[RepaymentEvent, bool]:
        """
        Record money received against a loan without committing.

        Returns:
            (event, fully_repaid)
        """
        event = self.loans.add_repayment_event(
            loan_id=loan.id,
            amount_minor=amount_minor,
            method=method,
            schedule_id=entry.id if entry is not None else None,
            transaction_reference=reference,
            created_at=paid_at,
        )
        if entry is not None:
            entry.paid = True
            entry.paid_at = paid_at

        loan.total_repaid_minor = loan.total_repaid_minor + amount_minor
        fully_repaid = is_fully_repaid(loan.total_repaid_minor, loan.total_amount_minor)
        if fully_repaid and loan.status == LoanStatus.ACTIVE:
            loan.status = LoanStatus.COMPLETED
            loan_transition_counter.labels(status=LoanStatus.COMPLETED).inc()
        return event, fully_repaid

    def record_repayment(
        self,
        loan_id: uuid.UUID,
        schedule_id: uuid.UUID,
        amount_minor: int,
        method: str = "manual",
        paid_at: datetime | None = None,
        reference: str | None = None,
    ) -> Tuple[RepaymentEvent, bool]:
        """
        Record a manual repayment against a schedule entry and refresh the score.

        Returns:
            (event, fully_repaid)
        """
        if amount_minor <= 0:
            raise ValidationError("Repayment amount must be positive")

        loan = self.get_loan(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise ValidationError(f"Repayments can only be recorded on active loans (status: {loan.status})")

        entry = self.loans.get_schedule_entry(loan.id, schedule_id)
        if entry is None:
            raise ScheduleEntryNotFoundError(f"Payment schedule not found: {schedule_id}")

        event, fully_repaid = self.apply_repayment(
            loan, entry, amount_minor, method, paid_at or self.clock(), reference or f"PAY-{uuid.uuid4().hex[:12]}"
        )
        commit(self.db)
        logger.info(
            "Repayment recorded",
            extra={"loan_id": str(loan.id), "amount_minor": amount_minor, "fully_repaid": fully_repaid},
        )

        self.credit.refresh_after_event(loan.borrower_id, trigger="repayment")
        return event, fully_repaid
