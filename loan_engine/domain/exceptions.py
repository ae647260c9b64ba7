"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidLoanTermsError(DomainException):
    """Principal, APR or term failed validation"""

    pass


class ValidationError(DomainException):
    """Request data is incomplete or inconsistent with stored records"""

    pass


class NotFoundError(DomainException):
    """Referenced record does not exist"""

    pass


class LoanNotFoundError(NotFoundError):
    pass


class BorrowerNotFoundError(NotFoundError):
    pass


class ScheduleEntryNotFoundError(NotFoundError):
    pass


class DeductionNotFoundError(NotFoundError):
    pass


class MandateNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class NotAuthorizedError(DomainException):
    """Actor may not perform the requested action"""

    pass


class InvalidStateTransitionError(DomainException):
    """Requested status change is not allowed from the current status"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move from '{current}' to '{target}'")


class BorrowerNotEligibleError(DomainException):
    """Borrower failed verification or risk checks for a new loan"""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class ConcurrentUpdateError(DomainException):
    """Row was modified by another writer since it was read"""

    pass


class PaymentGatewayError(DomainException):
    """Payment gateway returned an error or is unavailable"""

    pass


class WebhookSignatureError(DomainException):
    """Webhook signature is missing or does not match"""

    pass
