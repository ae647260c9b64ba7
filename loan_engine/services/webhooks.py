"""Payment gateway webhook processing"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_engine.config import settings
from loan_engine.domain.deductions import PLATFORM_FEE_RATE, TERMINAL_STATUSES, split_platform_fee
from loan_engine.domain.exceptions import (
    DeductionNotFoundError,
    DomainException,
    TransactionNotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from loan_engine.domain.models import DeductionStatus, LoanStatus, TransactionStatus
from loan_engine.infrastructure.database.models import PaymentWebhookLog, ScheduledDeduction
from loan_engine.infrastructure.database.repositories import DeductionRepository, LoanRepository, TransactionRepository
from loan_engine.infrastructure.database.session import commit
from loan_engine.infrastructure.observability.metrics import webhook_event_counter
from loan_engine.infrastructure.security.signatures import verify_signature
from loan_engine.services.credit import CreditScoreService
from loan_engine.services.deductions import DeductionLifecycle
from loan_engine.services.loans import LoanService
from loan_engine.services.notifications import NotificationService, recipient_id
from loan_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

PROVIDER = "gateway"

EVENT_SUCCESS = "payment.success"
EVENT_FAILED = "payment.failed"
EVENT_REFUNDED = "payment.refunded"
EVENT_DISPUTED = "payment.disputed"


def _parse_uuid(value: Any, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {field}: {value!r}") from e


def _parse_amount(value: Any) -> int:
    """Webhook amounts are integer minor units"""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount: {value!r}")
    try:
        amount = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e
    if amount <= 0 or (isinstance(value, float) and value != amount):
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount


class PaymentWebhookService:
    """
    Handles payment gateway callbacks.

    Every delivery is written to the audit log before anything else happens,
    including deliveries that fail signature verification.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow, webhook_secret: str | None = None):
        self.db = db
        self.clock = clock
        self.webhook_secret = settings.webhook_secret if webhook_secret is None else webhook_secret
        self.transactions = TransactionRepository(db)
        self.deductions = DeductionRepository(db)
        self.loans = LoanRepository(db)
        self.lifecycle = DeductionLifecycle(db, clock=clock)
        self.loan_service = LoanService(db, clock=clock)
        self.credit = CreditScoreService(db, clock=clock)
        self.notifications = NotificationService(db)
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            EVENT_SUCCESS: self.handle_payment_success,
            EVENT_FAILED: self.handle_payment_failed,
            EVENT_REFUNDED: self.handle_payment_refunded,
            EVENT_DISPUTED: self.handle_payment_disputed,
        }

    def process(self, raw_body: bytes, payload: Dict[str, Any], signature: str | None, ip_address: str) -> Dict[str, Any]:
        """
        Log, verify and dispatch one delivery.

        Raises:
            WebhookSignatureError: signature check failed (nothing processed)
            ValidationError: unknown event type or malformed payload
            NotFoundError: referenced deduction or transaction does not exist
        """
        event_type = payload.get("event_type")
        signature_valid = verify_signature(raw_body, signature, self.webhook_secret)

        log = self.transactions.create_webhook_log(PROVIDER, event_type, payload, signature_valid, ip_address)
        commit(self.db)
        logger.info(
            "Webhook received",
            extra={"event_type": event_type, "transaction_id": payload.get("transaction_id"), "webhook_log_id": str(log.id)},
        )

        if not signature_valid:
            self._finish_log(log, False, "Invalid signature")
            webhook_event_counter.labels(event_type=str(event_type), outcome="rejected").inc()
            raise WebhookSignatureError("Invalid signature")

        handler = self.handlers.get(event_type)
        if handler is None:
            self._finish_log(log, False, f"Unknown event type: {event_type}")
            webhook_event_counter.labels(event_type=str(event_type), outcome="rejected").inc()
            raise ValidationError(f"Unknown event type: {event_type}")

        try:
            result = handler(payload)
        except (DomainException, SQLAlchemyError) as e:
            self.db.rollback()
            self._finish_log(log, False, str(e))
            webhook_event_counter.labels(event_type=event_type, outcome="error").inc()
            raise

        self._finish_log(log, True, None, result.get("transaction_id"), result.get("mandate_id"))
        webhook_event_counter.labels(event_type=event_type, outcome="processed").inc()
        return result

    def _finish_log(
        self,
        log: PaymentWebhookLog,
        processed: bool,
        error: str | None,
        transaction_id: str | None = None,
        mandate_id: str | None = None,
    ) -> None:
        """Stamp the processing result next to the raw delivery; the payload itself is never changed"""
        try:
            log.processed = processed
            log.processed_at = self.clock()
            log.processing_error = error
            log.transaction_id = transaction_id
            log.mandate_id = mandate_id
            commit(self.db)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to update webhook log", extra={"webhook_log_id": str(log.id)})

    def _get_deduction(self, payload: Dict[str, Any]) -> ScheduledDeduction:
        deduction_id = _parse_uuid(payload.get("scheduled_deduction_id"), "scheduled_deduction_id")
        deduction = self.deductions.get_deduction(deduction_id)
        if deduction is None:
            raise DeductionNotFoundError(f"Scheduled deduction not found: {deduction_id}")
        return deduction

    def handle_payment_success(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Authoritative success: write the ledger row with the fee split,
        confirm the deduction, apply the repayment and chain the next
        occurrence, all in one commit.
        """
        gateway_id = payload.get("transaction_id")
        if not gateway_id:
            raise ValidationError("transaction_id is required for payment.success")
        deduction = self._get_deduction(payload)

        # One settled ledger row per deduction, whatever id the gateway resends it under
        existing = self.transactions.get_by_gateway_id(str(gateway_id))
        if existing is None or existing.status == TransactionStatus.FAILED:
            existing = self.transactions.get_settled_for_deduction(deduction.id)
        if existing is not None:
            logger.info(
                "Duplicate payment success ignored",
                extra={"transaction_id": gateway_id, "deduction_id": str(deduction.id)},
            )
            return {"transaction_id": str(existing.id), "mandate_id": str(existing.mandate_id), "duplicate": True}

        now = self.clock()
        gross = _parse_amount(payload.get("amount", deduction.amount))
        split = split_platform_fee(gross)

        transaction = self.transactions.create_transaction(
            mandate_id=deduction.mandate_id,
            loan_id=deduction.loan_id,
            scheduled_deduction_id=deduction.id,
            payment_method_id=deduction.payment_method_id,
            transaction_reference=payload.get("transaction_reference") or f"TXN-{uuid.uuid4().hex[:12]}",
            gateway_transaction_id=str(gateway_id),
            gross_amount=split.gross_amount,
            platform_fee=split.platform_fee,
            lender_amount=split.lender_amount,
            platform_fee_rate=str(PLATFORM_FEE_RATE),
            currency=payload.get("currency") or deduction.currency,
            status=TransactionStatus.SUCCESS,
            completed_at=now,
        )

        if deduction.status not in TERMINAL_STATUSES:
            self.lifecycle.complete(deduction)
        elif deduction.status == DeductionStatus.CANCELLED:
            logger.warning("Payment confirmed for a cancelled deduction", extra={"deduction_id": str(deduction.id)})

        loan = deduction.loan
        if loan.status == LoanStatus.ACTIVE:
            entry = self.loans.get_earliest_unpaid_entry(loan.id)
            self.loan_service.apply_repayment(
                loan, entry, gross, "card_deduction", now, reference=transaction.transaction_reference
            )
        else:
            logger.warning(
                "Payment received on a loan that is not active",
                extra={"loan_id": str(loan.id), "loan_status": loan.status},
            )

        next_deduction = None
        if deduction.status != DeductionStatus.CANCELLED:
            next_deduction = self.lifecycle.chain_next(deduction)
        commit(self.db)

        logger.info(
            "Payment success processed",
            extra={"transaction_id": str(transaction.id), "lender_amount": split.lender_amount},
        )
        self.credit.refresh_after_event(loan.borrower_id, trigger="card_deduction")
        self.notifications.payment_received(
            recipient_id(loan.lender.user_id, loan.lender_id), loan.borrower.full_name, gross, loan.currency
        )

        return {
            "transaction_id": str(transaction.id),
            "mandate_id": str(deduction.mandate_id),
            "next_deduction_id": str(next_deduction.id) if next_deduction is not None else None,
        }

    def handle_payment_failed(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Asynchronous decline. The attempt was already counted when the driver
        marked the deduction processing, so it is not counted again.
        """
        deduction = self._get_deduction(payload)
        gateway_id = payload.get("transaction_id")
        failure_code = payload.get("failure_code")
        failure_message = payload.get("failure_message") or "Payment failed"
        reason = f"{failure_code}: {failure_message}" if failure_code else failure_message

        terminal = False
        if deduction.status == DeductionStatus.PROCESSING:
            outcome = self.lifecycle.record_failure(deduction, reason)
            terminal = outcome.terminal

        existing = self.transactions.get_by_gateway_id(str(gateway_id)) if gateway_id else None
        if existing is None:
            transaction = self.lifecycle.write_failed_transaction(
                deduction, failure_message, failure_code=failure_code, gateway_transaction_id=gateway_id
            )
        else:
            transaction = existing
        commit(self.db)

        logger.info("Payment failure processed", extra={"deduction_id": str(deduction.id), "terminal": terminal})
        if terminal:
            borrower = deduction.loan.borrower
            self.notifications.deduction_failed(
                recipient_id(borrower.user_id, borrower.id), deduction.amount, deduction.currency, reason
            )

        return {"transaction_id": str(transaction.id), "mandate_id": str(deduction.mandate_id)}

    def _update_transaction_status(self, payload: Dict[str, Any], status: str) -> Dict[str, Any]:
        """Refunds and disputes update the original ledger row in place"""
        gateway_id = payload.get("transaction_id")
        transaction = self.transactions.get_by_gateway_id(str(gateway_id)) if gateway_id else None
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction not found: {gateway_id}")
        if transaction.status == TransactionStatus.FAILED:
            raise ValidationError(f"Transaction {gateway_id} failed and cannot be {status}")

        transaction.status = status
        commit(self.db)
        logger.info("Transaction status updated", extra={"transaction_id": str(transaction.id), "status": status})
        return {"transaction_id": str(transaction.id), "mandate_id": str(transaction.mandate_id)}

    def handle_payment_refunded(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._update_transaction_status(payload, TransactionStatus.REFUNDED)

    def handle_payment_disputed(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._update_transaction_status(payload, TransactionStatus.DISPUTED)
