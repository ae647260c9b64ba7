"""Borrower registration and KYC onboarding"""

import logging
import uuid

from sqlalchemy.orm import Session

from loan_engine.domain.exceptions import BorrowerNotFoundError, ValidationError
from loan_engine.domain.scoring import FACTOR_WEIGHTS, ONBOARDING_SCORE
from loan_engine.infrastructure.database.models import Borrower, Lender
from loan_engine.infrastructure.database.repositories import BorrowerRepository, ScoreRepository
from loan_engine.infrastructure.database.session import commit
from loan_engine.services.notifications import NotificationService, recipient_id
from loan_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

RISK_LEVELS = ("low", "medium", "high")


class OnboardingService:
    """Registers borrowers and lenders and completes borrower KYC"""

    def __init__(self, db: Session):
        self.db = db
        self.borrowers = BorrowerRepository(db)
        self.scores = ScoreRepository(db)
        self.notifications = NotificationService(db)

    def register_borrower(
        self,
        full_name: str,
        national_id: str,
        phone_number: str,
        country_code: str,
        currency: str = "USD",
        credit_limit_minor: int | None = None,
        user_id: str | None = None,
    ) -> Borrower:
        borrower = self.borrowers.create_borrower(
            full_name=full_name,
            national_id=national_id,
            phone_number=phone_number,
            country_code=country_code.upper(),
            currency=currency.upper(),
            credit_limit_minor=credit_limit_minor,
            user_id=user_id,
        )
        commit(self.db)
        logger.info("Borrower registered", extra={"borrower_id": str(borrower.id)})
        return borrower

    def register_lender(self, business_name: str, user_id: str | None = None) -> Lender:
        lender = self.borrowers.create_lender(business_name, user_id=user_id)
        commit(self.db)
        logger.info("Lender registered", extra={"lender_id": str(lender.id)})
        return lender

    def complete_onboarding(
        self,
        borrower_id: uuid.UUID,
        risk_level: str = "low",
        requires_manual_review: bool = False,
    ) -> Borrower:
        """
        Mark KYC as verified and seed the starting score.

        The seed (600) is only written when the borrower has no score yet; it is
        an onboarding default and is replaced by the first engine recomputation.
        """
        if risk_level not in RISK_LEVELS:
            raise ValidationError(f"Unknown risk level: {risk_level}")

        borrower = self.borrowers.get_borrower(borrower_id)
        if borrower is None:
            raise BorrowerNotFoundError(f"Borrower not found: {borrower_id}")

        borrower.kyc_verified = True
        borrower.risk_level = risk_level
        borrower.requires_manual_review = requires_manual_review
        borrower.onboarded_at = utcnow()

        if self.scores.get_score(borrower.id) is None:
            self.scores.upsert(borrower.id, ONBOARDING_SCORE, FACTOR_WEIGHTS)

        commit(self.db)
        logger.info(
            "Borrower onboarding completed",
            extra={"borrower_id": str(borrower.id), "risk_level": risk_level},
        )

        self.notifications.kyc_approved(recipient_id(borrower.user_id, borrower.id))
        return borrower
