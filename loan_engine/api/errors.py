"""Translation of domain exceptions to HTTP errors"""

import logging

from fastapi import HTTPException

from loan_engine.domain.exceptions import (
    BorrowerNotEligibleError,
    ConcurrentUpdateError,
    DomainException,
    InvalidLoanTermsError,
    InvalidStateTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)


def to_http_exception(error: DomainException, request_id: str = "unknown") -> HTTPException:
    """Map a domain error onto the status code the caller should see"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, NotAuthorizedError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, BorrowerNotEligibleError):
        return HTTPException(status_code=400, detail={"error": error.code, "message": error.message})
    if isinstance(error, (InvalidLoanTermsError, ValidationError)):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, (InvalidStateTransitionError, ConcurrentUpdateError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, WebhookSignatureError):
        return HTTPException(status_code=401, detail=str(error))

    logger.error(f"Unhandled domain error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
