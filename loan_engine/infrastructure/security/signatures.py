"""Webhook signature verification"""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """
    Check a gateway callback signature.

    Without a configured secret every callback is accepted (local
    development); with one, a missing or mismatched signature is rejected.
    """
    if not secret:
        logger.warning("No webhook secret configured - skipping signature verification")
        return True

    if not signature:
        logger.warning("Webhook received without signature")
        return False

    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
