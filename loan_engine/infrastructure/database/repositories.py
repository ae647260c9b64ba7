"""Data access layer for lending entities"""

import uuid
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from loan_engine.domain.exceptions import ConcurrentUpdateError
from loan_engine.domain.models import DeductionStatus, ScheduleEntry, TransactionStatus
from loan_engine.infrastructure.database.models import (
    Borrower,
    BorrowerScore,
    DeductionTransaction,
    Lender,
    Loan,
    LoanAgreement,
    Notification,
    PaymentMandate,
    PaymentMethod,
    PaymentWebhookLog,
    RepaymentEvent,
    RepaymentSchedule,
    ScheduledDeduction,
)


def _flush(db: Session) -> None:
    try:
        db.flush()
    except StaleDataError as e:
        raise ConcurrentUpdateError(str(e)) from e


class BorrowerRepository:
    """Repository for borrowers and lenders"""

    def __init__(self, db: Session):
        self.db = db

    def create_borrower(self, **fields) -> Borrower:
        borrower = Borrower(**fields)
        self.db.add(borrower)
        self.db.flush()
        return borrower

    def create_lender(self, business_name: str, user_id: str | None = None) -> Lender:
        lender = Lender(business_name=business_name, user_id=user_id)
        self.db.add(lender)
        self.db.flush()
        return lender

    def get_borrower(self, borrower_id: uuid.UUID) -> Optional[Borrower]:
        return self.db.query(Borrower).filter(Borrower.id == borrower_id).first()

    def get_lender(self, lender_id: uuid.UUID) -> Optional[Lender]:
        return self.db.query(Lender).filter(Lender.id == lender_id).first()

    def get_borrower_with_history(self, borrower_id: uuid.UUID) -> Optional[Borrower]:
        """Borrower with every loan, schedule entry and repayment loaded"""
        return (
            self.db.query(Borrower)
            .options(
                selectinload(Borrower.loans).selectinload(Loan.schedule),
                selectinload(Borrower.loans).selectinload(Loan.repayments),
            )
            .filter(Borrower.id == borrower_id)
            .first()
        )


class LoanRepository:
    """Repository for loans, schedules and repayment events"""

    def __init__(self, db: Session):
        self.db = db

    def create_loan(self, **fields) -> Loan:
        loan = Loan(**fields)
        self.db.add(loan)
        self.db.flush()
        return loan

    def get_loan(self, loan_id: uuid.UUID) -> Optional[Loan]:
        return self.db.query(Loan).filter(Loan.id == loan_id).first()

    def replace_schedule(self, loan: Loan, entries: List[ScheduleEntry]) -> List[RepaymentSchedule]:
        """Swap the whole schedule for a new set; partial regeneration is not supported"""
        self.db.query(RepaymentSchedule).filter(RepaymentSchedule.loan_id == loan.id).delete(
            synchronize_session=False
        )
        self.db.expire(loan, ["schedule"])

        rows = [
            RepaymentSchedule(
                loan_id=loan.id,
                payment_number=entry.payment_number,
                due_date=entry.due_date,
                principal_component=entry.principal_component,
                interest_component=entry.interest_component,
            )
            for entry in entries
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows

    def get_schedule(self, loan_id: uuid.UUID) -> List[RepaymentSchedule]:
        return (
            self.db.query(RepaymentSchedule)
            .filter(RepaymentSchedule.loan_id == loan_id)
            .order_by(RepaymentSchedule.payment_number)
            .all()
        )

    def set_first_due_date(self, loan_id: uuid.UUID, due_date: date) -> int:
        """Patch the due date of installment 1 only; returns rows updated"""
        updated = (
            self.db.query(RepaymentSchedule)
            .filter(RepaymentSchedule.loan_id == loan_id, RepaymentSchedule.payment_number == 1)
            .update({RepaymentSchedule.due_date: due_date}, synchronize_session="fetch")
        )
        self.db.flush()
        return updated

    def get_schedule_entry(self, loan_id: uuid.UUID, schedule_id: uuid.UUID) -> Optional[RepaymentSchedule]:
        return (
            self.db.query(RepaymentSchedule)
            .filter(RepaymentSchedule.id == schedule_id, RepaymentSchedule.loan_id == loan_id)
            .first()
        )

    def get_earliest_unpaid_entry(self, loan_id: uuid.UUID) -> Optional[RepaymentSchedule]:
        return (
            self.db.query(RepaymentSchedule)
            .filter(RepaymentSchedule.loan_id == loan_id, RepaymentSchedule.paid.is_(False))
            .order_by(RepaymentSchedule.payment_number)
            .first()
        )

    def add_repayment_event(
        self,
        loan_id: uuid.UUID,
        amount_minor: int,
        method: str,
        schedule_id: uuid.UUID | None = None,
        transaction_reference: str | None = None,
        created_at: datetime | None = None,
    ) -> RepaymentEvent:
        event = RepaymentEvent(
            loan_id=loan_id,
            schedule_id=schedule_id,
            amount_minor=amount_minor,
            method=method,
            transaction_reference=transaction_reference,
        )
        if created_at is not None:
            event.created_at = created_at
        self.db.add(event)
        _flush(self.db)
        return event

    def get_agreement(self, loan_id: uuid.UUID) -> Optional[LoanAgreement]:
        return self.db.query(LoanAgreement).filter(LoanAgreement.loan_id == loan_id).first()

    def create_agreement(self, loan_id: uuid.UUID, agreement_html: str) -> LoanAgreement:
        agreement = LoanAgreement(loan_id=loan_id, agreement_html=agreement_html)
        self.db.add(agreement)
        self.db.flush()
        return agreement


class ScoreRepository:
    """Repository for borrower credit scores"""

    def __init__(self, db: Session):
        self.db = db

    def get_score(self, borrower_id: uuid.UUID) -> Optional[BorrowerScore]:
        return self.db.query(BorrowerScore).filter(BorrowerScore.borrower_id == borrower_id).first()

    def upsert(self, borrower_id: uuid.UUID, score: int, factors: Dict[str, int]) -> BorrowerScore:
        """
        Update the borrower's score row, or insert it if there is none.

        Raises:
            ConcurrentUpdateError: another writer updated or inserted the row first
        """
        existing = self.get_score(borrower_id)
        if existing is not None:
            existing.score = score
            existing.factors = dict(factors)
            _flush(self.db)
            return existing

        row = BorrowerScore(borrower_id=borrower_id, score=score, factors=dict(factors))
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise ConcurrentUpdateError(f"Score for borrower {borrower_id} was created concurrently") from e
        return row


class MandateRepository:
    """Repository for payment methods and mandates"""

    def __init__(self, db: Session):
        self.db = db

    def create_payment_method(self, borrower_id: uuid.UUID, card_token: str, card_last4: str | None = None) -> PaymentMethod:
        method = PaymentMethod(borrower_id=borrower_id, card_token=card_token, card_last4=card_last4)
        self.db.add(method)
        self.db.flush()
        return method

    def get_payment_method(self, payment_method_id: uuid.UUID) -> Optional[PaymentMethod]:
        return self.db.query(PaymentMethod).filter(PaymentMethod.id == payment_method_id).first()

    def create_mandate(self, **fields) -> PaymentMandate:
        mandate = PaymentMandate(**fields)
        self.db.add(mandate)
        self.db.flush()
        return mandate

    def get_mandate(self, mandate_id: uuid.UUID) -> Optional[PaymentMandate]:
        return self.db.query(PaymentMandate).filter(PaymentMandate.id == mandate_id).first()


class DeductionRepository:
    """Repository for scheduled deductions"""

    def __init__(self, db: Session):
        self.db = db

    def create_deduction(self, **fields) -> ScheduledDeduction:
        deduction = ScheduledDeduction(**fields)
        self.db.add(deduction)
        self.db.flush()
        return deduction

    def get_deduction(self, deduction_id: uuid.UUID) -> Optional[ScheduledDeduction]:
        return self.db.query(ScheduledDeduction).filter(ScheduledDeduction.id == deduction_id).first()

    def get_due_deductions(self, today: date) -> List[ScheduledDeduction]:
        """Every scheduled deduction due on or before `today`, oldest first"""
        return (
            self.db.query(ScheduledDeduction)
            .options(
                selectinload(ScheduledDeduction.mandate),
                selectinload(ScheduledDeduction.payment_method),
            )
            .filter(
                ScheduledDeduction.status == DeductionStatus.SCHEDULED,
                ScheduledDeduction.scheduled_date <= today,
            )
            .order_by(ScheduledDeduction.scheduled_date.asc(), ScheduledDeduction.created_at.asc())
            .all()
        )

    def get_stuck_deductions(self, attempted_before: datetime) -> List[ScheduledDeduction]:
        """Deductions left in processing since before the cutoff"""
        return (
            self.db.query(ScheduledDeduction)
            .filter(
                ScheduledDeduction.status == DeductionStatus.PROCESSING,
                ScheduledDeduction.last_attempt_at < attempted_before,
            )
            .order_by(ScheduledDeduction.scheduled_date.asc())
            .all()
        )

    def get_deductions_for_mandate(self, mandate_id: uuid.UUID) -> List[ScheduledDeduction]:
        return (
            self.db.query(ScheduledDeduction)
            .filter(ScheduledDeduction.mandate_id == mandate_id)
            .order_by(ScheduledDeduction.scheduled_date.asc())
            .all()
        )

    def save(self, deduction: ScheduledDeduction) -> ScheduledDeduction:
        """Flush pending changes on a deduction"""
        self.db.add(deduction)
        _flush(self.db)
        return deduction


class TransactionRepository:
    """Repository for the deduction ledger and webhook audit log"""

    def __init__(self, db: Session):
        self.db = db

    def create_transaction(self, **fields) -> DeductionTransaction:
        transaction = DeductionTransaction(**fields)
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get_by_gateway_id(self, gateway_transaction_id: str) -> Optional[DeductionTransaction]:
        return (
            self.db.query(DeductionTransaction)
            .filter(DeductionTransaction.gateway_transaction_id == gateway_transaction_id)
            .order_by(DeductionTransaction.created_at.desc())
            .first()
        )

    def get_settled_for_deduction(self, deduction_id: uuid.UUID) -> Optional[DeductionTransaction]:
        """First ledger row where money moved for this deduction (later refunded or disputed included)"""
        return (
            self.db.query(DeductionTransaction)
            .filter(
                DeductionTransaction.scheduled_deduction_id == deduction_id,
                DeductionTransaction.status != TransactionStatus.FAILED,
            )
            .order_by(DeductionTransaction.created_at.asc())
            .first()
        )

    def get_for_deduction(self, deduction_id: uuid.UUID) -> List[DeductionTransaction]:
        return (
            self.db.query(DeductionTransaction)
            .filter(DeductionTransaction.scheduled_deduction_id == deduction_id)
            .order_by(DeductionTransaction.created_at.asc())
            .all()
        )

    def create_webhook_log(
        self,
        provider: str,
        event_type: str | None,
        raw_payload: dict,
        signature_valid: bool,
        ip_address: str,
    ) -> PaymentWebhookLog:
        log = PaymentWebhookLog(
            provider=provider,
            event_type=event_type,
            raw_payload=raw_payload,
            signature_valid=signature_valid,
            ip_address=ip_address,
            processed=False,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def get_webhook_log(self, log_id: uuid.UUID) -> Optional[PaymentWebhookLog]:
        return self.db.query(PaymentWebhookLog).filter(PaymentWebhookLog.id == log_id).first()


class NotificationRepository:
    """Repository for in-app notifications"""

    def __init__(self, db: Session):
        self.db = db

    def create_notification(
        self, user_id: str, type: str, title: str, message: str, link: str | None = None
    ) -> Notification:
        notification = Notification(user_id=user_id, type=type, title=title, message=message, link=link)
        self.db.add(notification)
        self.db.flush()
        return notification

    def get_for_user(self, user_id: str, limit: int = 50) -> List[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .all()
        )
