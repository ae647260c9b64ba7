"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional


class LoanStatus:
    REQUESTED = "requested"
    PENDING = "pending"  # Offered, waiting on the borrower
    ACTIVE = "active"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class DeductionStatus:
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionStatus:
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class MandateStatus:
    PENDING_CONSENT = "pending_consent"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Frequency:
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

    ALL = (WEEKLY, BIWEEKLY, MONTHLY)


@dataclass
class ScheduleEntry:
    """Single installment of an amortization schedule"""

    payment_number: int
    due_date: date
    principal_component: int
    interest_component: int

    @property
    def amount(self) -> int:
        return self.principal_component + self.interest_component


@dataclass
class AmortizationSchedule:
    """Output of the amortization calculator"""

    monthly_payment_minor: int
    entries: List[ScheduleEntry]

    @property
    def total_interest_minor(self) -> int:
        return sum(e.interest_component for e in self.entries)

    @property
    def total_amount_minor(self) -> int:
        return sum(e.amount for e in self.entries)


@dataclass
class ScheduleSnapshot:
    """Schedule entry as seen by the credit score engine"""

    id: str
    due_date: date


@dataclass
class RepaymentRecord:
    """Repayment event as seen by the credit score engine"""

    amount_minor: int
    paid_at: datetime
    schedule_id: Optional[str] = None


@dataclass
class LoanHistory:
    """One loan with its schedule and repayments"""

    status: str
    purpose: str
    created_at: datetime
    total_amount_minor: int
    total_repaid_minor: int
    schedule: List[ScheduleSnapshot] = field(default_factory=list)
    repayments: List[RepaymentRecord] = field(default_factory=list)

    @property
    def outstanding_minor(self) -> int:
        return self.total_amount_minor - self.total_repaid_minor


@dataclass
class BorrowerProfile:
    """Everything the credit score engine needs about a borrower"""

    borrower_id: str
    created_at: datetime
    credit_limit_minor: Optional[int]
    loans: List[LoanHistory] = field(default_factory=list)


@dataclass
class ScoreComponents:
    """Points contributed by each scoring factor"""

    payment_history: float
    credit_utilization: float
    credit_age: float
    credit_mix: float
    new_inquiries: float

    @property
    def total(self) -> float:
        return (
            self.payment_history
            + self.credit_utilization
            + self.credit_age
            + self.credit_mix
            + self.new_inquiries
        )


@dataclass
class CreditScore:
    """Output of the credit score engine"""

    score: int
    factors: Dict[str, int]
    components: ScoreComponents


@dataclass
class FeeSplit:
    """Gross charge divided between the platform and the lender"""

    gross_amount: int
    platform_fee: int
    lender_amount: int


@dataclass
class ChargeResult:
    """Outcome of a single gateway charge attempt"""

    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FailureOutcome:
    """Deduction state after a failed attempt"""

    status: str
    next_retry_at: Optional[datetime]
    failure_reason: str

    @property
    def terminal(self) -> bool:
        return self.status == DeductionStatus.FAILED
