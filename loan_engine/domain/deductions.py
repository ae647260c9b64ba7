"""Scheduled deduction state machine, chaining and fee split"""

from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, FrozenSet

from loan_engine.domain.exceptions import InvalidStateTransitionError, ValidationError
from loan_engine.domain.models import (
    DeductionStatus,
    FailureOutcome,
    FeeSplit,
    Frequency,
    MandateStatus,
)
from loan_engine.utils.date_utils import add_months

PLATFORM_FEE_RATE = Decimal("0.02")
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = timedelta(hours=24)

# Allowed status moves. A retryable failure returns processing -> scheduled;
# the gateway webhook may confirm a charge the driver recorded as failed.
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    DeductionStatus.SCHEDULED: frozenset(
        {DeductionStatus.PROCESSING, DeductionStatus.CANCELLED, DeductionStatus.COMPLETED}
    ),
    DeductionStatus.PROCESSING: frozenset(
        {DeductionStatus.COMPLETED, DeductionStatus.SCHEDULED, DeductionStatus.FAILED}
    ),
    DeductionStatus.FAILED: frozenset({DeductionStatus.COMPLETED}),
    DeductionStatus.COMPLETED: frozenset(),
    DeductionStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({DeductionStatus.COMPLETED, DeductionStatus.CANCELLED})


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    """
    Raises:
        InvalidStateTransitionError: when `target` is not reachable from `current`
    """
    if not can_transition(current, target):
        raise InvalidStateTransitionError(current, target)


def mandate_allows_charge(mandate_status: str) -> bool:
    """Selection checkpoint: a deduction is only charged while its mandate is active"""
    return mandate_status == MandateStatus.ACTIVE


def mandate_allows_chaining(mandate_status: str) -> bool:
    """Chain checkpoint: re-evaluated when a success is confirmed, not when the row was created"""
    return mandate_status == MandateStatus.ACTIVE


def apply_failure(
    attempt_count: int,
    max_attempts: int | None,
    reason: str,
    now: datetime,
    retry_delay: timedelta = DEFAULT_RETRY_DELAY,
) -> FailureOutcome:
    """
    Decide what a failed attempt does to a deduction.

    `attempt_count` already includes the attempt that just failed. While it is
    below `max_attempts` the deduction goes back to `scheduled` with a retry
    hint; after that it fails terminally and needs manual intervention.
    """
    limit = max_attempts or DEFAULT_MAX_ATTEMPTS
    if attempt_count < limit:
        return FailureOutcome(
            status=DeductionStatus.SCHEDULED,
            next_retry_at=now + retry_delay,
            failure_reason=reason,
        )

    return FailureOutcome(status=DeductionStatus.FAILED, next_retry_at=None, failure_reason=reason)


def next_deduction_date(current: date, frequency: str, deduction_day: int | None) -> date:
    """
    Date of the occurrence after `current`.

    Monthly mandates move one calendar month and land on `deduction_day`,
    clamped to the length of that month.
    """
    if frequency == Frequency.WEEKLY:
        return current + timedelta(days=7)
    elif frequency == Frequency.BIWEEKLY:
        return current + timedelta(days=14)
    elif frequency == Frequency.MONTHLY:
        return add_months(current, 1, day=deduction_day or current.day)

    raise ValidationError(f"Unknown mandate frequency: {frequency}")


def split_platform_fee(gross_amount: int) -> FeeSplit:
    """Platform keeps 2% (rounded half-up to a minor unit), the lender gets the rest"""
    fee = int((Decimal(gross_amount) * PLATFORM_FEE_RATE).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return FeeSplit(gross_amount=gross_amount, platform_fee=fee, lender_amount=gross_amount - fee)


def validate_mandate_schedule(frequency: str, deduction_day: int) -> None:
    """Monthly mandates use a day of month (1-28), weekly ones a weekday (0-6)"""
    if frequency not in Frequency.ALL:
        raise ValidationError(f"Unknown mandate frequency: {frequency}")

    if frequency == Frequency.MONTHLY and not 1 <= deduction_day <= 28:
        raise ValidationError("Monthly deduction day must be between 1 and 28")
    if frequency != Frequency.MONTHLY and not 0 <= deduction_day <= 6:
        raise ValidationError("Weekly deduction day must be a weekday number between 0 and 6")
