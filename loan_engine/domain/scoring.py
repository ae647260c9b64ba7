"""Credit score engine - weighted five-factor borrower score"""

import math
from datetime import date, datetime, timedelta
from typing import Dict, List

from loan_engine.domain.models import (
    BorrowerProfile,
    CreditScore,
    LoanHistory,
    LoanStatus,
    RepaymentRecord,
    ScoreComponents,
)
from loan_engine.utils.date_utils import years_between

BASELINE_SCORE = 650  # Engine starting point before factor adjustments
ONBOARDING_SCORE = 600  # Seed written at onboarding, never produced by the engine
MIN_SCORE = 300
MAX_SCORE = 850

DEFAULT_CREDIT_LIMIT_MINOR = 100_000
INQUIRY_WINDOW_DAYS = 90

# Category weights, sum to 100
FACTOR_WEIGHTS: Dict[str, int] = {
    "payment_history": 35,
    "credit_utilization": 30,
    "credit_age": 15,
    "credit_mix": 10,
    "new_inquiries": 10,
}

# A factor at full marks contributes weight * 8.5 points
MAX_MULTIPLIER = 8.5


def is_on_time(repayment: RepaymentRecord, schedule_due_dates: Dict[str, date]) -> bool:
    """A repayment is on time when it links to a schedule entry and lands on or before its due date"""
    if repayment.schedule_id is None:
        return False
    due_date = schedule_due_dates.get(repayment.schedule_id)
    if due_date is None:
        return False
    return repayment.paid_at.date() <= due_date


def on_time_rate(loans: List[LoanHistory]) -> float | None:
    """Share of repayments made on time across all loans, None when there are none"""
    total = 0
    on_time = 0
    for loan in loans:
        due_dates = {entry.id: entry.due_date for entry in loan.schedule}
        for repayment in loan.repayments:
            total += 1
            if is_on_time(repayment, due_dates):
                on_time += 1

    if total == 0:
        return None
    return on_time / total


def payment_history_points(rate: float | None) -> float:
    weight = FACTOR_WEIGHTS["payment_history"]
    if rate is None:
        return 0.0
    return rate * weight * MAX_MULTIPLIER


def utilization_rate(loans: List[LoanHistory], credit_limit_minor: int | None) -> float:
    """Outstanding balance on active loans over the borrower's credit limit"""
    limit = credit_limit_minor or DEFAULT_CREDIT_LIMIT_MINOR
    outstanding = sum(loan.outstanding_minor for loan in loans if loan.status == LoanStatus.ACTIVE)
    return outstanding / limit


def utilization_points(rate: float) -> float:
    weight = FACTOR_WEIGHTS["credit_utilization"]
    if rate <= 0.3:
        return weight * MAX_MULTIPLIER
    elif rate <= 0.5:
        return weight * 6
    elif rate <= 0.7:
        return weight * 4
    else:
        return weight * 2


def credit_age_points(years: float) -> float:
    weight = FACTOR_WEIGHTS["credit_age"]
    if years >= 5:
        return weight * MAX_MULTIPLIER
    elif years >= 3:
        return weight * 6
    elif years >= 1:
        return weight * 4
    else:
        return weight * 2


def credit_mix_points(distinct_purposes: int) -> float:
    weight = FACTOR_WEIGHTS["credit_mix"]
    if distinct_purposes >= 3:
        return weight * MAX_MULTIPLIER
    elif distinct_purposes >= 2:
        return weight * 6
    else:
        return weight * 3


def new_inquiries_points(recent_loans: int) -> float:
    """Starts at full marks and is only ever penalized"""
    weight = FACTOR_WEIGHTS["new_inquiries"]
    if recent_loans > 3:
        return weight * 2
    elif recent_loans > 1:
        return weight * 5
    return weight * MAX_MULTIPLIER


def analyze_profile(profile: BorrowerProfile, as_of: datetime) -> ScoreComponents:
    """Compute the point contribution of each factor"""
    loans = profile.loans
    inquiry_cutoff = as_of - timedelta(days=INQUIRY_WINDOW_DAYS)

    distinct_purposes = len({loan.purpose for loan in loans})
    recent_loans = sum(1 for loan in loans if loan.created_at > inquiry_cutoff)

    return ScoreComponents(
        payment_history=payment_history_points(on_time_rate(loans)),
        credit_utilization=utilization_points(utilization_rate(loans, profile.credit_limit_minor)),
        credit_age=credit_age_points(years_between(profile.created_at, as_of)),
        credit_mix=credit_mix_points(distinct_purposes),
        new_inquiries=new_inquiries_points(recent_loans),
    )


def clamp_score(raw: float) -> int:
    """Round half-up and bound to the score range"""
    return max(MIN_SCORE, min(MAX_SCORE, math.floor(raw + 0.5)))


def compute_score(profile: BorrowerProfile, as_of: datetime) -> CreditScore:
    """
    Main entry point: score a borrower from their loan and repayment history.

    The returned factors are the fixed category weights, not the points each
    factor actually earned; the earned points are available on `components`.
    """
    components = analyze_profile(profile, as_of)
    score = clamp_score(BASELINE_SCORE + components.total)

    return CreditScore(
        score=score,
        factors=dict(FACTOR_WEIGHTS),
        components=components,
    )
