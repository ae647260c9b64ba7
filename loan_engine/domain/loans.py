"""Loan lifecycle rules"""

from typing import Dict, Tuple

from loan_engine.domain.exceptions import (
    BorrowerNotEligibleError,
    InvalidStateTransitionError,
    NotAuthorizedError,
    ValidationError,
)
from loan_engine.domain.models import LoanStatus

LENDER = "lender"
BORROWER = "borrower"
ROLES = (LENDER, BORROWER)

PRE_ACTIVE = frozenset({LoanStatus.REQUESTED, LoanStatus.PENDING})

# action -> (roles allowed, statuses it applies to, resulting status)
LOAN_ACTIONS: Dict[str, Tuple[frozenset, frozenset, str]] = {
    "approve": (frozenset({LENDER}), frozenset({LoanStatus.REQUESTED}), LoanStatus.PENDING),
    "accept": (frozenset({BORROWER}), frozenset({LoanStatus.PENDING}), LoanStatus.ACTIVE),
    "reject": (frozenset(ROLES), PRE_ACTIVE, LoanStatus.REJECTED),
    "cancel": (frozenset(ROLES), PRE_ACTIVE, LoanStatus.CANCELLED),
}


def initial_status(actor_role: str) -> str:
    """Lender offers wait for the borrower; borrower requests wait for the lender"""
    if actor_role == LENDER:
        return LoanStatus.PENDING
    elif actor_role == BORROWER:
        return LoanStatus.REQUESTED
    raise ValidationError(f"Unknown role: {actor_role}")


def resolve_transition(current_status: str, action: str, actor_role: str) -> str:
    """
    Work out the status a loan moves to.

    Raises:
        ValidationError: unknown action
        NotAuthorizedError: role may not perform the action
        InvalidStateTransitionError: action does not apply to the current status
    """
    if action not in LOAN_ACTIONS:
        raise ValidationError(f"Unknown loan action: {action}")

    roles, from_statuses, target = LOAN_ACTIONS[action]
    if actor_role not in roles:
        raise NotAuthorizedError(f"A {actor_role} cannot {action} a loan")
    if current_status not in from_statuses:
        raise InvalidStateTransitionError(current_status, target)

    return target


def is_fully_repaid(total_repaid_minor: int, total_amount_minor: int) -> bool:
    return total_repaid_minor >= total_amount_minor


def check_borrower_eligibility(kyc_verified: bool, risk_level: str | None, requires_manual_review: bool) -> None:
    """
    Anti-fraud gate applied before a loan is created.

    Raises:
        BorrowerNotEligibleError: unverified, high-risk or flagged borrowers
    """
    if not kyc_verified:
        raise BorrowerNotEligibleError(
            "DOCUMENT_VERIFICATION_REQUIRED",
            "Borrower must complete document verification before loans can be created",
        )

    if risk_level == "high" or requires_manual_review:
        raise BorrowerNotEligibleError(
            "HIGH_RISK_BORROWER",
            "This borrower has high-risk documents and requires manual review before loan approval",
        )
