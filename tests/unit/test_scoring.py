"""Unit tests for the credit score engine"""

import pytest
from datetime import date, datetime, timedelta
from loan_engine.domain.models import (
    BorrowerProfile,
    LoanHistory,
    LoanStatus,
    RepaymentRecord,
    ScheduleSnapshot,
)
from loan_engine.domain.scoring import (
    FACTOR_WEIGHTS,
    MAX_SCORE,
    MIN_SCORE,
    clamp_score,
    compute_score,
    credit_age_points,
    credit_mix_points,
    is_on_time,
    new_inquiries_points,
    on_time_rate,
    payment_history_points,
    utilization_points,
    utilization_rate,
)

AS_OF = datetime(2024, 6, 1, 12, 0)


def make_loan(
    status=LoanStatus.ACTIVE,
    purpose="business",
    created_at=AS_OF,
    total=100_000,
    repaid=0,
    on_time=0,
    late=0,
) -> LoanHistory:
    """Loan with `on_time` + `late` repayments, one per schedule entry"""
    schedule = []
    repayments = []
    due = date(2024, 1, 1)
    for i in range(on_time + late):
        entry_id = f"entry-{i}"
        schedule.append(ScheduleSnapshot(id=entry_id, due_date=due))
        paid_at = datetime(2023, 12, 28) if i < on_time else datetime(2024, 1, 20)
        repayments.append(RepaymentRecord(amount_minor=1_000, paid_at=paid_at, schedule_id=entry_id))
    return LoanHistory(
        status=status,
        purpose=purpose,
        created_at=created_at,
        total_amount_minor=total,
        total_repaid_minor=repaid,
        schedule=schedule,
        repayments=repayments,
    )


def test_weights_sum_to_100():
    assert sum(FACTOR_WEIGHTS.values()) == 100


def test_is_on_time_due_day_inclusive():
    due_dates = {"a": date(2024, 1, 1)}
    assert is_on_time(RepaymentRecord(1, datetime(2024, 1, 1, 23, 59), "a"), due_dates)
    assert not is_on_time(RepaymentRecord(1, datetime(2024, 1, 2, 0, 1), "a"), due_dates)


def test_unlinked_repayment_is_not_on_time():
    assert not is_on_time(RepaymentRecord(1, datetime(2023, 1, 1), None), {"a": date(2024, 1, 1)})
    assert not is_on_time(RepaymentRecord(1, datetime(2023, 1, 1), "missing"), {"a": date(2024, 1, 1)})


def test_on_time_rate():
    assert on_time_rate([make_loan(on_time=3, late=1)]) == 0.75
    assert on_time_rate([make_loan()]) is None


def test_payment_history_without_repayments_scores_zero():
    assert payment_history_points(None) == 0.0


def test_payment_history_monotonic_in_on_time_rate():
    """More on-time payments never lowers the payment history contribution"""
    rates = [i / 20 for i in range(21)]
    points = [payment_history_points(r) for r in rates]
    assert points == sorted(points)
    assert points[-1] == 35 * 8.5


def test_payment_history_monotonic_through_profiles():
    previous = -1.0
    for on_time in range(0, 6):
        rate = on_time_rate([make_loan(on_time=on_time, late=5 - on_time)])
        current = payment_history_points(rate)
        assert current >= previous
        previous = current


def test_utilization_counts_active_loans_only():
    loans = [
        make_loan(total=60_000, repaid=10_000),
        make_loan(status=LoanStatus.COMPLETED, total=50_000, repaid=50_000),
        make_loan(status=LoanStatus.PENDING, total=90_000),
    ]
    assert utilization_rate(loans, 100_000) == 0.5


def test_utilization_defaults_credit_limit():
    assert utilization_rate([make_loan(total=50_000)], None) == 0.5


@pytest.mark.parametrize(
    "rate,expected",
    [(0.0, 255.0), (0.3, 255.0), (0.31, 180), (0.5, 180), (0.7, 120), (0.71, 60), (4.0, 60)],
)
def test_utilization_tiers(rate, expected):
    assert utilization_points(rate) == expected


@pytest.mark.parametrize("years,expected", [(0.5, 30), (1, 60), (3, 90), (5, 127.5), (12, 127.5)])
def test_credit_age_tiers(years, expected):
    assert credit_age_points(years) == expected


@pytest.mark.parametrize("purposes,expected", [(0, 30), (1, 30), (2, 60), (3, 85.0), (4, 85.0)])
def test_credit_mix_tiers(purposes, expected):
    assert credit_mix_points(purposes) == expected


@pytest.mark.parametrize("recent,expected", [(0, 85.0), (1, 85.0), (2, 50), (3, 50), (4, 20)])
def test_new_inquiries_tiers(recent, expected):
    assert new_inquiries_points(recent) == expected


def test_clamp_score():
    assert clamp_score(100) == MIN_SCORE
    assert clamp_score(2_000) == MAX_SCORE
    assert clamp_score(700.5) == 701
    assert clamp_score(700.49) == 700


def test_worst_realistic_profile():
    """All late, over-utilized, brand new, single purpose, four recent loans"""
    loans = [make_loan(late=1) for _ in range(4)]
    profile = BorrowerProfile(borrower_id="b1", created_at=AS_OF, credit_limit_minor=100_000, loans=loans)

    result = compute_score(profile, AS_OF)

    # 650 + 0 + 60 + 30 + 30 + 20
    assert result.score == 790
    assert result.components.total == 140


def test_new_borrower_clamps_to_max():
    profile = BorrowerProfile(borrower_id="b1", created_at=AS_OF, credit_limit_minor=None)

    result = compute_score(profile, AS_OF)

    assert result.score == MAX_SCORE
    assert result.factors == FACTOR_WEIGHTS


def test_inquiry_window():
    old = AS_OF - timedelta(days=120)
    loans = [make_loan(created_at=old) for _ in range(4)] + [make_loan(created_at=AS_OF)]
    profile = BorrowerProfile(borrower_id="b1", created_at=old, credit_limit_minor=10_000_000, loans=loans)

    result = compute_score(profile, AS_OF)

    assert result.components.new_inquiries == 85.0


@pytest.mark.parametrize("seed", range(12))
def test_score_always_in_range(seed):
    loans = [
        make_loan(
            status=[LoanStatus.ACTIVE, LoanStatus.COMPLETED, LoanStatus.PENDING][(seed + i) % 3],
            purpose=["business", "education", "medical", "home"][(seed * i) % 4],
            created_at=AS_OF - timedelta(days=30 * ((seed + i) % 9)),
            total=10_000 * (seed + 1),
            repaid=1_000 * i,
            on_time=(seed + i) % 4,
            late=(seed * 3 + i) % 3,
        )
        for i in range(seed % 6)
    ]
    profile = BorrowerProfile(
        borrower_id=f"b{seed}",
        created_at=AS_OF - timedelta(days=200 * seed),
        credit_limit_minor=[None, 5_000, 100_000, 1_000_000][seed % 4],
        loans=loans,
    )

    score = compute_score(profile, AS_OF).score

    assert isinstance(score, int)
    assert MIN_SCORE <= score <= MAX_SCORE
