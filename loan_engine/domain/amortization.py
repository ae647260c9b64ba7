"""Amortization schedule generation for fixed-payment loans"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from loan_engine.domain.exceptions import InvalidLoanTermsError
from loan_engine.domain.models import AmortizationSchedule, ScheduleEntry
from loan_engine.utils.date_utils import add_months

MAX_TERM_MONTHS = 60
MAX_APR_BPS = 36_000  # 360%

BPS_PER_UNIT = Decimal(10_000)
MONTHS_PER_YEAR = Decimal(12)


def _to_minor(value: Decimal) -> int:
    """Round half-up to a whole minor unit"""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def validate_loan_terms(principal_minor: int, apr_bps: int, term_months: int) -> None:
    """
    Reject terms the calculator cannot or must not handle.

    Raises:
        InvalidLoanTermsError: on non-integer, non-positive principal/term or negative APR
    """
    for name, value in (
        ("principal_minor", principal_minor),
        ("apr_bps", apr_bps),
        ("term_months", term_months),
    ):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidLoanTermsError(f"{name} must be an integer, got {value!r}")

    if principal_minor <= 0:
        raise InvalidLoanTermsError("Principal must be greater than zero")
    if term_months <= 0:
        raise InvalidLoanTermsError("Term must be at least 1 month")
    if term_months > MAX_TERM_MONTHS:
        raise InvalidLoanTermsError(f"Term cannot exceed {MAX_TERM_MONTHS} months")
    if apr_bps < 0:
        raise InvalidLoanTermsError("APR cannot be negative")
    if apr_bps > MAX_APR_BPS:
        raise InvalidLoanTermsError(f"APR cannot exceed {MAX_APR_BPS} bps")


def monthly_rate(apr_bps: int) -> Decimal:
    """APR in basis points to an exact monthly rate"""
    return Decimal(apr_bps) / BPS_PER_UNIT / MONTHS_PER_YEAR


def monthly_payment(principal_minor: int, apr_bps: int, term_months: int) -> int:
    """
    Fixed monthly payment in minor units.

    Zero-interest loans are split straight-line and rounded up so the
    borrower never underpays; otherwise the annuity formula is applied:

        P * r * (1 + r)^n / ((1 + r)^n - 1)

    The result never drops below the straight-line split, which only
    matters for tiny principals where rounding would otherwise win.
    """
    straight_line = -(-principal_minor // term_months)
    rate = monthly_rate(apr_bps)
    if rate == 0:
        return straight_line

    growth = (1 + rate) ** term_months
    payment = Decimal(principal_minor) * rate * growth / (growth - 1)
    return max(_to_minor(payment), straight_line)


def compute_schedule(
    principal_minor: int,
    apr_bps: int,
    term_months: int,
    start_date: date,
) -> AmortizationSchedule:
    """
    Generate the full repayment schedule for a loan.

    Each entry's interest is the outstanding balance times the monthly rate;
    the rest of the payment reduces principal. The final entry takes exactly
    the remaining balance so principal components always sum to the principal.

    Example:
        120,000 at 1500 bps over 12 months -> 10,831 per month,
        first entry 1,500 interest + 9,331 principal.
    """
    validate_loan_terms(principal_minor, apr_bps, term_months)

    rate = monthly_rate(apr_bps)
    payment = monthly_payment(principal_minor, apr_bps, term_months)

    balance = principal_minor
    entries: List[ScheduleEntry] = []
    for number in range(1, term_months + 1):
        interest = _to_minor(Decimal(balance) * rate)
        principal = payment - interest

        if number == term_months or principal > balance:
            principal = balance

        balance -= principal
        entries.append(
            ScheduleEntry(
                payment_number=number,
                due_date=add_months(start_date, number),
                principal_component=principal,
                interest_component=interest,
            )
        )

    return AmortizationSchedule(monthly_payment_minor=payment, entries=entries)


def first_due_date_after_activation(activated_on: date) -> date:
    """First installment falls due one calendar month after the loan goes active"""
    return add_months(activated_on, 1)
