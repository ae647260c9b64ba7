"""Credit score recomputation and persistence"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_engine.config import settings
from loan_engine.domain.exceptions import BorrowerNotFoundError, ConcurrentUpdateError, DomainException
from loan_engine.domain.models import (
    BorrowerProfile,
    CreditScore,
    LoanHistory,
    RepaymentRecord,
    ScheduleSnapshot,
)
from loan_engine.domain.scoring import BASELINE_SCORE, FACTOR_WEIGHTS, compute_score
from loan_engine.infrastructure.database.models import Borrower
from loan_engine.infrastructure.database.repositories import BorrowerRepository, ScoreRepository
from loan_engine.infrastructure.database.session import commit
from loan_engine.infrastructure.observability.logging import log_score_update
from loan_engine.infrastructure.observability.metrics import record_score, score_recompute_counter
from loan_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def build_profile(borrower: Borrower) -> BorrowerProfile:
    """Map stored borrower history onto the scoring engine's input"""
    loans = [
        LoanHistory(
            status=loan.status,
            purpose=loan.purpose or "",
            created_at=loan.created_at,
            total_amount_minor=loan.total_amount_minor,
            total_repaid_minor=loan.total_repaid_minor,
            schedule=[ScheduleSnapshot(id=str(entry.id), due_date=entry.due_date) for entry in loan.schedule],
            repayments=[
                RepaymentRecord(
                    amount_minor=event.amount_minor,
                    paid_at=event.created_at,
                    schedule_id=str(event.schedule_id) if event.schedule_id else None,
                )
                for event in loan.repayments
            ],
        )
        for loan in borrower.loans
    ]

    return BorrowerProfile(
        borrower_id=str(borrower.id),
        created_at=borrower.created_at,
        credit_limit_minor=borrower.credit_limit_minor or settings.default_credit_limit_minor,
        loans=loans,
    )


class CreditScoreService:
    """Recomputes and stores borrower scores"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.borrowers = BorrowerRepository(db)
        self.scores = ScoreRepository(db)

    def recompute(self, borrower_id: uuid.UUID, trigger: str = "manual") -> CreditScore:
        """
        Score the borrower from their full history and upsert the result.

        Raises:
            BorrowerNotFoundError: unknown borrower
            ConcurrentUpdateError: another writer stored a score at the same time
        """
        borrower = self.borrowers.get_borrower_with_history(borrower_id)
        if borrower is None:
            raise BorrowerNotFoundError(f"Borrower not found: {borrower_id}")

        credit_score = compute_score(build_profile(borrower), as_of=self.clock())

        try:
            self.scores.upsert(borrower.id, credit_score.score, credit_score.factors)
            commit(self.db)
        except ConcurrentUpdateError:
            self.db.rollback()
            score_recompute_counter.labels(outcome="conflict").inc()
            raise

        record_score(credit_score.score)
        log_score_update(str(borrower.id), credit_score.score, trigger)
        return credit_score

    def refresh_after_event(self, borrower_id: uuid.UUID, trigger: str) -> CreditScore | None:
        """Recompute after a repayment; a failure here never fails the repayment itself"""
        try:
            return self.recompute(borrower_id, trigger=trigger)
        except (DomainException, SQLAlchemyError):
            self.db.rollback()
            logger.exception("Credit score refresh failed", extra={"borrower_id": str(borrower_id), "trigger": trigger})
            return None

    def get_current(self, borrower_id: uuid.UUID) -> Tuple[int, Dict[str, int]]:
        """Stored score, or the engine baseline when none has been stored yet"""
        if self.borrowers.get_borrower(borrower_id) is None:
            raise BorrowerNotFoundError(f"Borrower not found: {borrower_id}")

        stored = self.scores.get_score(borrower_id)
        if stored is None:
            return BASELINE_SCORE, dict(FACTOR_WEIGHTS)
        return stored.score, dict(stored.factors)
