"""Unit tests for amortization schedule generation"""

import pytest
from datetime import date
from loan_engine.domain.amortization import (
    compute_schedule,
    first_due_date_after_activation,
    monthly_payment,
    validate_loan_terms,
)
from loan_engine.domain.exceptions import InvalidLoanTermsError


def test_concrete_scenario_monthly_payment():
    """120,000 at 15% APR over 12 months"""
    assert monthly_payment(120_000, 1500, 12) == 10_831


def test_concrete_scenario_first_entry():
    """First month's interest is 120,000 * 0.15 / 12"""
    schedule = compute_schedule(120_000, 1500, 12, date(2024, 1, 1))

    first = schedule.entries[0]
    assert first.payment_number == 1
    assert first.interest_component == 1_500
    assert first.principal_component == 9_331
    assert first.due_date == date(2024, 2, 1)


def test_concrete_scenario_full_table():
    schedule = compute_schedule(120_000, 1500, 12, date(2024, 1, 1))

    interest = [e.interest_component for e in schedule.entries]
    principal = [e.principal_component for e in schedule.entries]
    assert interest == [1500, 1383, 1265, 1146, 1025, 902, 778, 652, 525, 396, 266, 134]
    assert principal == [9331, 9448, 9566, 9685, 9806, 9929, 10053, 10179, 10306, 10435, 10565, 10697]
    assert schedule.total_interest_minor == 9_972
    assert schedule.total_amount_minor == 129_972


@pytest.mark.parametrize(
    "principal,apr_bps,term",
    [
        (120_000, 1500, 12),
        (1, 1500, 12),
        (99_999, 2999, 7),
        (5_000_000, 36_000, 60),
        (1_000, 1, 1),
        (250_000, 899, 36),
        (130, 1, 60),
    ],
)
def test_principal_components_sum_to_principal(principal, apr_bps, term):
    schedule = compute_schedule(principal, apr_bps, term, date(2024, 3, 10))

    assert len(schedule.entries) == term
    assert sum(e.principal_component for e in schedule.entries) == principal
    assert schedule.monthly_payment_minor * term >= principal
    assert all(e.principal_component >= 0 and e.interest_component >= 0 for e in schedule.entries)


def test_zero_apr_splits_principal_evenly():
    schedule = compute_schedule(100_000, 0, 3, date(2024, 1, 1))

    assert schedule.monthly_payment_minor == 33_334  # ceil(100000 / 3)
    assert [e.interest_component for e in schedule.entries] == [0, 0, 0]
    assert [e.principal_component for e in schedule.entries] == [33_334, 33_334, 33_332]


def test_zero_apr_exact_division():
    schedule = compute_schedule(120_000, 0, 12, date(2024, 1, 1))

    assert schedule.monthly_payment_minor == 10_000
    assert all(e.amount == 10_000 for e in schedule.entries)


def test_due_dates_clamp_to_month_end():
    schedule = compute_schedule(30_000, 1200, 3, date(2024, 1, 31))

    assert [e.due_date for e in schedule.entries] == [
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


@pytest.mark.parametrize(
    "principal,apr_bps,term",
    [
        (0, 1500, 12),
        (-100, 1500, 12),
        (120_000, -1, 12),
        (120_000, 36_001, 12),
        (120_000, 1500, 0),
        (120_000, 1500, 61),
        (1200.5, 1500, 12),
        (True, 1500, 12),
        ("120000", 1500, 12),
    ],
)
def test_invalid_terms_rejected(principal, apr_bps, term):
    with pytest.raises(InvalidLoanTermsError):
        validate_loan_terms(principal, apr_bps, term)


def test_compute_schedule_validates_first():
    with pytest.raises(InvalidLoanTermsError):
        compute_schedule(120_000, 1500, 0, date(2024, 1, 1))


def test_first_due_date_after_activation():
    assert first_due_date_after_activation(date(2024, 1, 31)) == date(2024, 2, 29)
    assert first_due_date_after_activation(date(2024, 12, 5)) == date(2025, 1, 5)


def test_payment_never_below_straight_line():
    assert monthly_payment(130, 1, 60) == 3
    assert monthly_payment(1, 1500, 12) == 1
