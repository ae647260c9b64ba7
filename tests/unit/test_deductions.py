"""Unit tests for the deduction state machine, chaining dates and fee split"""

import pytest
from datetime import date, datetime, timedelta
from loan_engine.domain.deductions import (
    apply_failure,
    can_transition,
    ensure_transition,
    mandate_allows_chaining,
    mandate_allows_charge,
    next_deduction_date,
    split_platform_fee,
    validate_mandate_schedule,
)
from loan_engine.domain.exceptions import InvalidStateTransitionError, ValidationError
from loan_engine.domain.models import DeductionStatus, MandateStatus

NOW = datetime(2024, 1, 15, 9, 0)


@pytest.mark.parametrize(
    "current,target",
    [
        (DeductionStatus.SCHEDULED, DeductionStatus.PROCESSING),
        (DeductionStatus.SCHEDULED, DeductionStatus.CANCELLED),
        (DeductionStatus.PROCESSING, DeductionStatus.COMPLETED),
        (DeductionStatus.PROCESSING, DeductionStatus.SCHEDULED),
        (DeductionStatus.PROCESSING, DeductionStatus.FAILED),
        (DeductionStatus.FAILED, DeductionStatus.COMPLETED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    ensure_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (DeductionStatus.COMPLETED, DeductionStatus.SCHEDULED),
        (DeductionStatus.COMPLETED, DeductionStatus.PROCESSING),
        (DeductionStatus.CANCELLED, DeductionStatus.PROCESSING),
        (DeductionStatus.CANCELLED, DeductionStatus.COMPLETED),
        (DeductionStatus.SCHEDULED, DeductionStatus.FAILED),
        (DeductionStatus.FAILED, DeductionStatus.PROCESSING),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidStateTransitionError):
        ensure_transition(current, target)


def test_failure_below_limit_is_retried():
    outcome = apply_failure(1, 3, "Insufficient funds", NOW)

    assert outcome.status == DeductionStatus.SCHEDULED
    assert outcome.next_retry_at == NOW + timedelta(hours=24)
    assert outcome.failure_reason == "Insufficient funds"
    assert not outcome.terminal


def test_failure_at_limit_is_terminal():
    outcome = apply_failure(3, 3, "Card expired", NOW)

    assert outcome.status == DeductionStatus.FAILED
    assert outcome.next_retry_at is None
    assert outcome.terminal


def test_failure_uses_default_limit():
    assert apply_failure(2, None, "x", NOW).status == DeductionStatus.SCHEDULED
    assert apply_failure(3, None, "x", NOW).status == DeductionStatus.FAILED


def test_custom_retry_delay():
    outcome = apply_failure(1, 3, "x", NOW, retry_delay=timedelta(hours=6))
    assert outcome.next_retry_at == datetime(2024, 1, 15, 15, 0)


def test_monthly_chaining_keeps_deduction_day():
    assert next_deduction_date(date(2024, 1, 15), "monthly", 15) == date(2024, 2, 15)
    assert next_deduction_date(date(2024, 12, 15), "monthly", 15) == date(2025, 1, 15)


def test_monthly_chaining_clamps_to_month_end():
    assert next_deduction_date(date(2024, 1, 31), "monthly", 31) == date(2024, 2, 29)


def test_weekly_and_biweekly_chaining():
    assert next_deduction_date(date(2024, 1, 15), "weekly", 0) == date(2024, 1, 22)
    assert next_deduction_date(date(2024, 1, 15), "biweekly", 0) == date(2024, 1, 29)


def test_unknown_frequency():
    with pytest.raises(ValidationError):
        next_deduction_date(date(2024, 1, 15), "daily", 1)


@pytest.mark.parametrize(
    "gross,fee,lender",
    [(10_831, 217, 10_614), (100, 2, 98), (25, 1, 24), (24, 0, 24), (1, 0, 1), (1_000_000, 20_000, 980_000)],
)
def test_fee_split(gross, fee, lender):
    split = split_platform_fee(gross)

    assert split.platform_fee == fee
    assert split.lender_amount == lender
    assert split.platform_fee + split.lender_amount == split.gross_amount == gross


def test_mandate_checkpoints():
    assert mandate_allows_charge(MandateStatus.ACTIVE)
    assert mandate_allows_chaining(MandateStatus.ACTIVE)
    for status in (MandateStatus.CANCELLED, MandateStatus.PAUSED, MandateStatus.PENDING_CONSENT):
        assert not mandate_allows_charge(status)
        assert not mandate_allows_chaining(status)


@pytest.mark.parametrize(
    "frequency,day",
    [("monthly", 1), ("monthly", 28), ("weekly", 0), ("biweekly", 6)],
)
def test_valid_mandate_schedules(frequency, day):
    validate_mandate_schedule(frequency, day)


@pytest.mark.parametrize(
    "frequency,day",
    [("monthly", 0), ("monthly", 29), ("weekly", 7), ("biweekly", -1), ("daily", 1)],
)
def test_invalid_mandate_schedules(frequency, day):
    with pytest.raises(ValidationError):
        validate_mandate_schedule(frequency, day)
