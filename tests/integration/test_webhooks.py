"""Integration tests for payment gateway webhook handling"""

import json
import uuid
import pytest
from datetime import date
from unittest.mock import AsyncMock
from loan_engine.domain.exceptions import (
    DeductionNotFoundError,
    TransactionNotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from loan_engine.domain.models import ChargeResult, DeductionStatus, LoanStatus, TransactionStatus
from loan_engine.infrastructure.database.models import DeductionTransaction, PaymentWebhookLog
from loan_engine.infrastructure.database.repositories import DeductionRepository, LoanRepository
from loan_engine.infrastructure.security.signatures import compute_signature
from loan_engine.services.deductions import DeductionLifecycle, DeductionProcessor, MandateService
from loan_engine.services.loans import LoanService
from loan_engine.services.webhooks import PaymentWebhookService

SECRET = "whsec_test"


@pytest.fixture
def service(db, clock):
    return PaymentWebhookService(db, clock=clock, webhook_secret=SECRET)


def deliver(service, payload, secret=SECRET, signature=None):
    body = json.dumps(payload).encode()
    if signature is None:
        signature = compute_signature(body, secret)
    return service.process(body, payload, signature, "10.0.0.1")


def success_payload(deduction, gateway_id="gw_100", amount=None):
    return {
        "event_type": "payment.success",
        "transaction_id": gateway_id,
        "scheduled_deduction_id": str(deduction.id),
        "amount": amount if amount is not None else deduction.amount,
        "currency": "USD",
    }


def test_success_writes_ledger_with_fee_split(db, mandate, service):
    _, first = mandate

    result = deliver(service, success_payload(first))

    ledger = db.get(DeductionTransaction, uuid.UUID(result["transaction_id"]))
    assert ledger.status == TransactionStatus.SUCCESS
    assert ledger.gross_amount == 10_831
    assert ledger.platform_fee == 217
    assert ledger.lender_amount == 10_614
    assert ledger.platform_fee + ledger.lender_amount == ledger.gross_amount
    assert ledger.gateway_transaction_id == "gw_100"


def test_success_completes_deduction_and_applies_repayment(db, mandate, service, active_loan):
    _, first = mandate

    deliver(service, success_payload(first))

    db.refresh(first)
    assert first.status == DeductionStatus.COMPLETED
    loan = LoanService(db).get_loan(active_loan.id)
    assert loan.total_repaid_minor == 10_831
    schedule = LoanRepository(db).get_schedule(loan.id)
    assert schedule[0].paid is True
    assert schedule[1].paid is False


def test_success_chains_next_monthly_deduction(db, mandate, service):
    mandate_row, first = mandate

    result = deliver(service, success_payload(first))

    deductions = DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)
    assert len(deductions) == 2
    following = deductions[1]
    assert str(following.id) == result["next_deduction_id"]
    assert following.scheduled_date == date(2024, 2, 15)
    assert following.status == DeductionStatus.SCHEDULED
    assert following.amount == 10_831


def test_success_after_driver_completion_still_chains(db, mandate, service, clock):
    mandate_row, first = mandate
    lifecycle = DeductionLifecycle(db, clock=clock)
    lifecycle.begin_attempt(first)
    lifecycle.complete(first)
    db.commit()

    deliver(service, success_payload(first))

    assert len(DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)) == 2


def test_success_confirms_deduction_recorded_as_failed(db, mandate, service, clock):
    _, first = mandate
    first.status = DeductionStatus.FAILED
    first.attempt_count = 3
    db.commit()

    deliver(service, success_payload(first))

    db.refresh(first)
    assert first.status == DeductionStatus.COMPLETED


def test_cancelled_mandate_stops_chaining(db, mandate, service):
    mandate_row, first = mandate
    MandateService(db).cancel_mandate(mandate_row.id)

    result = deliver(service, success_payload(first))

    assert result["next_deduction_id"] is None
    assert len(DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)) == 1


def test_final_payment_completes_loan_and_stops_chaining(db, active_loan, payment_method, service):
    mandate_row, first = MandateService(db).create_mandate(
        loan_id=active_loan.id,
        payment_method_id=payment_method.id,
        amount_minor=129_972,
        frequency="monthly",
        deduction_day=15,
        start_date=date(2024, 1, 15),
    )

    result = deliver(service, success_payload(first))

    assert LoanService(db).get_loan(active_loan.id).status == LoanStatus.COMPLETED
    assert result["next_deduction_id"] is None


def test_duplicate_success_is_acknowledged_once(db, mandate, service, active_loan):
    mandate_row, first = mandate
    payload = success_payload(first)

    first_result = deliver(service, payload)
    second_result = deliver(service, payload)

    assert second_result["duplicate"] is True
    assert second_result["transaction_id"] == first_result["transaction_id"]
    assert db.query(DeductionTransaction).count() == 1
    assert LoanService(db).get_loan(active_loan.id).total_repaid_minor == 10_831
    assert len(DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)) == 2


def test_second_success_for_settled_deduction_is_duplicate(db, mandate, service, active_loan):
    """A resend under a new gateway id must not credit or chain twice"""
    mandate_row, first = mandate

    first_result = deliver(service, success_payload(first, gateway_id="gw_1"))
    second_result = deliver(service, success_payload(first, gateway_id="gw_2"))

    assert second_result["duplicate"] is True
    assert second_result["transaction_id"] == first_result["transaction_id"]
    assert db.query(DeductionTransaction).count() == 1
    assert LoanService(db).get_loan(active_loan.id).total_repaid_minor == 10_831
    deductions = DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)
    assert [(d.scheduled_date, d.status) for d in deductions] == [
        (date(2024, 1, 15), DeductionStatus.COMPLETED),
        (date(2024, 2, 15), DeductionStatus.SCHEDULED),
    ]


def test_success_after_refund_is_still_duplicate(db, mandate, service):
    mandate_row, first = mandate
    deliver(service, success_payload(first, gateway_id="gw_1"))
    deliver(service, {"event_type": "payment.refunded", "transaction_id": "gw_1"})

    result = deliver(service, success_payload(first, gateway_id="gw_3"))

    assert result["duplicate"] is True
    assert len(DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)) == 2


def test_success_after_failed_attempt_is_processed(db, mandate, service, clock):
    _, first = mandate
    lifecycle = DeductionLifecycle(db, clock=clock)
    lifecycle.begin_attempt(first)
    lifecycle.record_failure(first, "Card declined")
    lifecycle.write_failed_transaction(first, "Card declined", gateway_transaction_id="gw_f1")
    db.commit()

    result = deliver(service, success_payload(first, gateway_id="gw_ok"))

    assert "duplicate" not in result
    assert db.query(DeductionTransaction).count() == 2


@pytest.mark.parametrize("gateway_id", [None, ""])
def test_success_without_transaction_id_rejected(db, mandate, service, active_loan, gateway_id):
    mandate_row, first = mandate
    payload = success_payload(first)
    payload["transaction_id"] = gateway_id

    for _ in range(2):
        with pytest.raises(ValidationError):
            deliver(service, payload)

    assert db.query(DeductionTransaction).count() == 0
    assert LoanService(db).get_loan(active_loan.id).total_repaid_minor == 0
    assert len(DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)) == 1
    assert db.query(PaymentWebhookLog).filter(PaymentWebhookLog.processed.is_(False)).count() == 2


def test_success_on_cancelled_deduction_does_not_chain(db, mandate, service, active_loan, clock):
    mandate_row, first = mandate
    DeductionLifecycle(db, clock=clock).cancel(first)
    db.commit()

    result = deliver(service, success_payload(first))

    assert result["next_deduction_id"] is None
    db.refresh(first)
    assert first.status == DeductionStatus.CANCELLED
    assert len(DeductionRepository(db).get_deductions_for_mandate(mandate_row.id)) == 1
    assert LoanService(db).get_loan(active_loan.id).total_repaid_minor == 10_831


def test_invalid_signature_logged_and_rejected(db, mandate, service):
    _, first = mandate

    with pytest.raises(WebhookSignatureError):
        deliver(service, success_payload(first), signature="deadbeef")

    log = db.query(PaymentWebhookLog).one()
    assert log.signature_valid is False
    assert log.processed is False
    assert log.processing_error == "Invalid signature"
    assert log.raw_payload["transaction_id"] == "gw_100"
    assert db.query(DeductionTransaction).count() == 0
    db.refresh(first)
    assert first.status == DeductionStatus.SCHEDULED


def test_processed_delivery_is_logged(db, mandate, service):
    _, first = mandate

    result = deliver(service, success_payload(first))

    log = db.query(PaymentWebhookLog).one()
    assert log.signature_valid is True
    assert log.processed is True
    assert log.ip_address == "10.0.0.1"
    assert log.transaction_id == result["transaction_id"]


def test_unknown_event_type(db, service):
    with pytest.raises(ValidationError):
        deliver(service, {"event_type": "payment.teleported"})

    assert db.query(PaymentWebhookLog).one().processing_error == "Unknown event type: payment.teleported"


def test_unknown_deduction(db, service):
    payload = {
        "event_type": "payment.success",
        "transaction_id": "gw_404",
        "scheduled_deduction_id": "7d0f1b4e-3a53-4f8e-9a77-0c2b5d1f6e10",
        "amount": 100,
    }
    with pytest.raises(DeductionNotFoundError):
        deliver(service, payload)

    log = db.query(PaymentWebhookLog).one()
    assert log.processed is False
    assert "not found" in log.processing_error


def test_malformed_amount(db, mandate, service):
    _, first = mandate
    with pytest.raises(ValidationError):
        deliver(service, success_payload(first, amount="ten"))
    assert db.query(DeductionTransaction).count() == 0


def test_failed_event_on_processing_deduction(db, mandate, service, clock):
    _, first = mandate
    DeductionLifecycle(db, clock=clock).begin_attempt(first)
    db.commit()

    deliver(
        service,
        {
            "event_type": "payment.failed",
            "transaction_id": "gw_200",
            "scheduled_deduction_id": str(first.id),
            "failure_code": "card_declined",
            "failure_message": "Card declined",
        },
    )

    db.refresh(first)
    assert first.status == DeductionStatus.SCHEDULED
    assert first.attempt_count == 1
    assert first.failure_reason == "card_declined: Card declined"
    ledger = db.query(DeductionTransaction).one()
    assert ledger.status == TransactionStatus.FAILED
    assert ledger.failure_code == "card_declined"


async def test_failed_event_does_not_double_count(db, mandate, service, clock):
    """The driver already recorded this decline; the callback for the same attempt adds nothing"""
    _, first = mandate
    gateway = AsyncMock()
    gateway.charge.return_value = ChargeResult(success=False, transaction_id="gw_300", error="Card declined")
    await DeductionProcessor(db, gateway, clock=clock, delay_seconds=0).run(first.scheduled_date)

    deliver(
        service,
        {
            "event_type": "payment.failed",
            "transaction_id": "gw_300",
            "scheduled_deduction_id": str(first.id),
            "failure_message": "Card declined",
        },
    )

    db.refresh(first)
    assert first.attempt_count == 1
    assert first.status == DeductionStatus.SCHEDULED
    assert db.query(DeductionTransaction).count() == 1


def test_refund_updates_ledger_row(db, mandate, service):
    _, first = mandate
    deliver(service, success_payload(first, gateway_id="gw_500"))

    deliver(service, {"event_type": "payment.refunded", "transaction_id": "gw_500"})

    ledger = db.query(DeductionTransaction).one()
    assert ledger.status == TransactionStatus.REFUNDED


def test_dispute_updates_ledger_row(db, mandate, service):
    _, first = mandate
    deliver(service, success_payload(first, gateway_id="gw_600"))

    deliver(service, {"event_type": "payment.disputed", "transaction_id": "gw_600"})

    assert db.query(DeductionTransaction).one().status == TransactionStatus.DISPUTED


def test_refund_of_unknown_transaction(db, service):
    with pytest.raises(TransactionNotFoundError):
        deliver(service, {"event_type": "payment.refunded", "transaction_id": "gw_missing"})


def test_refund_of_failed_transaction_rejected(db, mandate, service, clock):
    _, first = mandate
    DeductionLifecycle(db, clock=clock).write_failed_transaction(first, "declined", gateway_transaction_id="gw_700")
    db.commit()

    with pytest.raises(ValidationError):
        deliver(service, {"event_type": "payment.refunded", "transaction_id": "gw_700"})
