"""In-app notifications"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loan_engine.domain.agreements import format_minor
from loan_engine.infrastructure.database.repositories import NotificationRepository

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Creates notifications after the primary operation has committed.

    Delivery is best effort: errors are logged and swallowed so a failed
    notification never undoes or blocks a loan or payment state change.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = NotificationRepository(db)

    def notify(self, user_id: str, type: str, title: str, message: str, link: str | None = None) -> Optional[str]:
        """Returns the notification id, or None if it could not be stored"""
        try:
            notification = self.repo.create_notification(user_id, type, title, message, link)
            self.db.commit()
            return str(notification.id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to create notification", extra={"user_id": user_id, "type": type})
            return None

    def loan_offer_received(self, user_id: str, lender_name: str, amount_minor: int, currency: str) -> Optional[str]:
        return self.notify(
            user_id,
            "loan_offer",
            "New Loan Offer Received",
            f"{lender_name} has made you an offer for {format_minor(amount_minor, currency)}",
            "/b/requests",
        )

    def loan_accepted(self, user_id: str, borrower_name: str, amount_minor: int, currency: str) -> Optional[str]:
        return self.notify(
            user_id,
            "loan_accepted",
            "Loan Offer Accepted",
            f"{borrower_name} has accepted your loan offer of {format_minor(amount_minor, currency)}",
            "/l/loans",
        )

    def payment_received(self, user_id: str, borrower_name: str, amount_minor: int, currency: str) -> Optional[str]:
        return self.notify(
            user_id,
            "payment_received",
            "Payment Received",
            f"{borrower_name} has made a payment of {format_minor(amount_minor, currency)}",
            "/l/repayments",
        )

    def deduction_failed(self, user_id: str, amount_minor: int, currency: str, reason: str) -> Optional[str]:
        return self.notify(
            user_id,
            "payment_failed",
            "Automatic Payment Failed",
            f"We could not collect {format_minor(amount_minor, currency)} after several attempts: {reason}",
            "/b/repayments",
        )

    def kyc_approved(self, user_id: str) -> Optional[str]:
        return self.notify(
            user_id,
            "kyc_approved",
            "KYC Verification Approved",
            "Your identity has been verified. You can now request loans.",
            "/b/overview",
        )

    def list_for_user(self, user_id: str, limit: int = 50):
        return self.repo.get_for_user(user_id, limit=limit)


def recipient_id(user_id: str | None, fallback_id) -> str:
    """Notifications go to the auth user when linked, else to the record id"""
    return user_id or str(fallback_id)
