"""Recurring card deductions: mandates, the periodic driver and retry handling"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_engine.config import settings
from loan_engine.domain.deductions import (
    apply_failure,
    ensure_transition,
    mandate_allows_chaining,
    mandate_allows_charge,
    next_deduction_date,
    validate_mandate_schedule,
)
from loan_engine.domain.exceptions import (
    DomainException,
    LoanNotFoundError,
    MandateNotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from loan_engine.domain.models import (
    ChargeResult,
    DeductionStatus,
    FailureOutcome,
    LoanStatus,
    MandateStatus,
    TransactionStatus,
)
from loan_engine.infrastructure.clients.payment_gateway import PaymentGatewayClient
from loan_engine.infrastructure.database.models import (
    DeductionTransaction,
    PaymentMandate,
    ScheduledDeduction,
)
from loan_engine.infrastructure.database.repositories import (
    DeductionRepository,
    LoanRepository,
    MandateRepository,
    TransactionRepository,
)
from loan_engine.infrastructure.database.session import commit
from loan_engine.infrastructure.observability.logging import log_deduction_outcome
from loan_engine.infrastructure.observability.metrics import record_deduction_outcome
from loan_engine.services.notifications import NotificationService, recipient_id
from loan_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class DeductionLifecycle:
    """
    Status changes shared by the driver, the webhook handler and the
    reconciliation sweep. Nothing here commits; callers decide the
    transaction boundaries.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.deductions = DeductionRepository(db)
        self.transactions = TransactionRepository(db)

    def cancel(self, deduction: ScheduledDeduction) -> None:
        ensure_transition(deduction.status, DeductionStatus.CANCELLED)
        deduction.status = DeductionStatus.CANCELLED
        self.deductions.save(deduction)

    def begin_attempt(self, deduction: ScheduledDeduction) -> None:
        ensure_transition(deduction.status, DeductionStatus.PROCESSING)
        deduction.status = DeductionStatus.PROCESSING
        deduction.attempt_count = (deduction.attempt_count or 0) + 1
        deduction.last_attempt_at = self.clock()
        self.deductions.save(deduction)

    def complete(self, deduction: ScheduledDeduction) -> None:
        ensure_transition(deduction.status, DeductionStatus.COMPLETED)
        deduction.status = DeductionStatus.COMPLETED
        deduction.next_retry_at = None
        deduction.processed_at = self.clock()
        self.deductions.save(deduction)

    def record_failure(self, deduction: ScheduledDeduction, reason: str) -> FailureOutcome:
        """Feed a failed attempt into the bounded-retry state machine"""
        outcome = apply_failure(
            attempt_count=deduction.attempt_count or 0,
            max_attempts=deduction.max_attempts,
            reason=reason,
            now=self.clock(),
            retry_delay=timedelta(hours=settings.deduction_retry_delay_hours),
        )
        ensure_transition(deduction.status, outcome.status)
        deduction.status = outcome.status
        deduction.next_retry_at = outcome.next_retry_at
        deduction.failure_reason = outcome.failure_reason
        self.deductions.save(deduction)
        return outcome

    def write_failed_transaction(
        self,
        deduction: ScheduledDeduction,
        failure_message: str,
        failure_code: str | None = None,
        gateway_transaction_id: str | None = None,
    ) -> DeductionTransaction:
        """Ledger row for a failed charge; no money moved so fee and lender share are zero"""
        return self.transactions.create_transaction(
            mandate_id=deduction.mandate_id,
            loan_id=deduction.loan_id,
            scheduled_deduction_id=deduction.id,
            payment_method_id=deduction.payment_method_id,
            transaction_reference=f"FAILED-{deduction.id.hex[:12]}-{deduction.attempt_count}",
            gateway_transaction_id=gateway_transaction_id,
            gross_amount=deduction.amount,
            platform_fee=0,
            lender_amount=0,
            currency=deduction.currency,
            status=TransactionStatus.FAILED,
            failure_code=failure_code,
            failure_message=failure_message,
            failed_at=self.clock(),
        )

    def chain_next(self, deduction: ScheduledDeduction) -> ScheduledDeduction | None:
        """
        Materialize the next occurrence after a confirmed success.

        The mandate is re-checked here so a mandate cancelled since this
        deduction was created stops producing new rows. A loan that is no
        longer active (e.g. just repaid in full) stops the chain too.
        """
        mandate = deduction.mandate
        if not mandate_allows_chaining(mandate.status):
            logger.info(
                "Mandate no longer active, not scheduling next deduction",
                extra={"mandate_id": str(mandate.id), "mandate_status": mandate.status},
            )
            return None

        if deduction.loan is not None and deduction.loan.status != LoanStatus.ACTIVE:
            logger.info(
                "Loan no longer active, not scheduling next deduction",
                extra={"loan_id": str(deduction.loan_id), "loan_status": deduction.loan.status},
            )
            return None

        next_date = next_deduction_date(deduction.scheduled_date, mandate.frequency, mandate.deduction_day)
        return self.deductions.create_deduction(
            mandate_id=deduction.mandate_id,
            loan_id=deduction.loan_id,
            payment_method_id=deduction.payment_method_id,
            scheduled_date=next_date,
            amount=deduction.amount,
            currency=deduction.currency,
            status=DeductionStatus.SCHEDULED,
            max_attempts=deduction.max_attempts,
        )


class MandateService:
    """Creates and cancels payment mandates"""

    def __init__(self, db: Session):
        self.db = db
        self.mandates = MandateRepository(db)
        self.deductions = DeductionRepository(db)
        self.loans = LoanRepository(db)

    def register_payment_method(self, borrower_id: uuid.UUID, card_token: str, card_last4: str | None = None):
        method = self.mandates.create_payment_method(borrower_id, card_token, card_last4)
        commit(self.db)
        return method

    def create_mandate(
        self,
        loan_id: uuid.UUID,
        payment_method_id: uuid.UUID,
        amount_minor: int,
        frequency: str,
        deduction_day: int,
        start_date: date,
    ) -> Tuple[PaymentMandate, ScheduledDeduction]:
        """
        Authorize recurring deductions for a loan and schedule the first one.

        Raises:
            ValidationError: bad amount, frequency, day or payment method
            LoanNotFoundError: unknown loan
        """
        if amount_minor <= 0:
            raise ValidationError("Deduction amount must be positive")
        validate_mandate_schedule(frequency, deduction_day)

        loan = self.loans.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan not found: {loan_id}")
        if loan.status != LoanStatus.ACTIVE:
            raise ValidationError("Mandates can only be set up on active loans")

        outstanding = loan.total_amount_minor - loan.total_repaid_minor
        if amount_minor > outstanding:
            raise ValidationError("Deduction amount cannot exceed outstanding balance")

        method = self.mandates.get_payment_method(payment_method_id)
        if method is None or method.borrower_id != loan.borrower_id:
            raise ValidationError("Payment method not found for this borrower")

        mandate = self.mandates.create_mandate(
            loan_id=loan.id,
            borrower_id=loan.borrower_id,
            lender_id=loan.lender_id,
            payment_method_id=method.id,
            mandate_reference=f"MND-{uuid.uuid4().hex[:10].upper()}",
            amount_minor=amount_minor,
            currency=loan.currency,
            frequency=frequency,
            deduction_day=deduction_day,
            start_date=start_date,
            status=MandateStatus.ACTIVE,
        )
        first = self.deductions.create_deduction(
            mandate_id=mandate.id,
            loan_id=loan.id,
            payment_method_id=method.id,
            scheduled_date=start_date,
            amount=amount_minor,
            currency=loan.currency,
            status=DeductionStatus.SCHEDULED,
        )
        commit(self.db)
        logger.info(
            "Payment mandate created",
            extra={"mandate_id": str(mandate.id), "loan_id": str(loan.id), "frequency": frequency},
        )
        return mandate, first

    def cancel_mandate(self, mandate_id: uuid.UUID) -> PaymentMandate:
        """In-flight deductions are left alone; they are cancelled when next selected"""
        mandate = self.mandates.get_mandate(mandate_id)
        if mandate is None:
            raise MandateNotFoundError(f"Mandate not found: {mandate_id}")

        mandate.status = MandateStatus.CANCELLED
        commit(self.db)
        logger.info("Payment mandate cancelled", extra={"mandate_id": str(mandate.id)})
        return mandate


class DeductionProcessor:
    """
    Periodic driver: charges every due deduction once.

    Each deduction is handled in three sequential commits (mark processing,
    charge, record outcome). Overlapping runs are not coordinated here; the
    gateway idempotency key is the guard against double charges.

    The stuck-processing sweep never calls the gateway, so it can run on a
    processor built without one.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGatewayClient | None = None,
        clock: Callable[[], datetime] = utcnow,
        delay_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.delay_seconds = settings.deduction_call_delay_seconds if delay_seconds is None else delay_seconds
        self.sleep = sleep
        self.lifecycle = DeductionLifecycle(db, clock=clock)
        self.deductions = DeductionRepository(db)
        self.notifications = NotificationService(db)

    async def run(self, today: date | None = None) -> Dict[str, object]:
        """Process all deductions due on or before `today`"""
        if self.gateway is None:
            raise PaymentGatewayError("A payment gateway client is required to charge deductions")
        today = today or self.clock().date()
        due = self.deductions.get_due_deductions(today)
        logger.info("Starting deduction processing", extra={"due_count": len(due), "run_date": today.isoformat()})

        results: Dict[str, object] = {
            "total": len(due),
            "success": 0,
            "failed": 0,
            "skipped": 0,
            "cancelled": 0,
            "errors": [],
        }
        errors: List[str] = results["errors"]

        for index, deduction in enumerate(due):
            deduction_id = deduction.id
            try:
                outcome, charged = await self.process_deduction(deduction)
            except (DomainException, SQLAlchemyError) as e:
                self.db.rollback()
                logger.exception("Error processing deduction", extra={"deduction_id": str(deduction_id)})
                record_deduction_outcome("error")
                results["failed"] += 1
                errors.append(f"Deduction {deduction_id}: {e}")
                continue

            if outcome == "success":
                results["success"] += 1
            elif outcome in ("retry", "failed"):
                results["failed"] += 1
                errors.append(f"Deduction {deduction_id}: {deduction.failure_reason}")
            else:
                results[outcome] += 1

            if charged and index < len(due) - 1:
                await self.sleep(self.delay_seconds)

        logger.info(
            "Deduction processing completed",
            extra={key: value for key, value in results.items() if key != "errors"},
        )
        return results

    async def process_deduction(self, deduction: ScheduledDeduction) -> Tuple[str, bool]:
        """
        Returns:
            (outcome, charged) where outcome is success | retry | failed | cancelled | skipped
        """
        mandate = deduction.mandate
        if not mandate_allows_charge(mandate.status):
            self.lifecycle.cancel(deduction)
            commit(self.db)
            logger.info(
                "Mandate not active, deduction cancelled",
                extra={"deduction_id": str(deduction.id), "mandate_reference": mandate.mandate_reference},
            )
            record_deduction_outcome("cancelled")
            return "cancelled", False

        if deduction.payment_method is None:
            logger.error("No payment method for deduction", extra={"deduction_id": str(deduction.id)})
            record_deduction_outcome("skipped")
            return "skipped", False

        self.lifecycle.begin_attempt(deduction)
        commit(self.db)

        try:
            result = await self.gateway.charge(
                amount=deduction.amount,
                currency=deduction.currency,
                card_token=deduction.payment_method.card_token,
                mandate_reference=mandate.mandate_reference,
                deduction_id=str(deduction.id),
                loan_id=str(deduction.loan_id),
            )
        except PaymentGatewayError as e:
            result = ChargeResult(success=False, error=str(e))

        if result.success:
            # Ledger row and chaining wait for the gateway's webhook
            self.lifecycle.complete(deduction)
            commit(self.db)
            record_deduction_outcome("success")
            log_deduction_outcome(str(deduction.id), str(deduction.mandate_id), "success", deduction.attempt_count)
            return "success", True

        outcome = self._fail(deduction, result.error or "Payment declined", result.transaction_id)
        return ("failed" if outcome.terminal else "retry"), True

    def _fail(
        self,
        deduction: ScheduledDeduction,
        reason: str,
        gateway_transaction_id: str | None = None,
    ) -> FailureOutcome:
        outcome = self.lifecycle.record_failure(deduction, reason)
        commit(self.db)

        try:
            self.lifecycle.write_failed_transaction(deduction, reason, gateway_transaction_id=gateway_transaction_id)
            commit(self.db)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to record failed transaction", extra={"deduction_id": str(deduction.id)})

        label = "failed" if outcome.terminal else "retry"
        record_deduction_outcome(label)
        log_deduction_outcome(str(deduction.id), str(deduction.mandate_id), label, deduction.attempt_count, reason)

        if outcome.terminal:
            borrower = deduction.loan.borrower
            self.notifications.deduction_failed(
                recipient_id(borrower.user_id, borrower.id), deduction.amount, deduction.currency, reason
            )
        return outcome

    def reconcile_stuck_deductions(self, now: datetime | None = None) -> Dict[str, int]:
        """
        Treat deductions stuck in processing (crash between the charge and
        the outcome write) as failed attempts so they re-enter the retry cycle.
        """
        now = now or self.clock()
        cutoff = now - timedelta(hours=settings.stuck_processing_hours)
        stuck = self.deductions.get_stuck_deductions(cutoff)

        results = {"total": len(stuck), "rescheduled": 0, "failed": 0}
        for deduction in stuck:
            outcome = self.lifecycle.record_failure(
                deduction, f"No outcome recorded within {settings.stuck_processing_hours}h of the attempt"
            )
            commit(self.db)
            results["failed" if outcome.terminal else "rescheduled"] += 1
            logger.warning(
                "Stuck deduction reconciled",
                extra={"deduction_id": str(deduction.id), "status": outcome.status},
            )
        return results
