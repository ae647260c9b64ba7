"""Dependency injection for FastAPI endpoints"""

from fastapi import Header, HTTPException, Request
from loan_engine.config import settings
from loan_engine.infrastructure.clients.payment_gateway import PaymentGatewayClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_client_ip(request: Request) -> str:
    """Caller address as reported by the proxy, else the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def get_payment_gateway_client() -> PaymentGatewayClient:
    """Provide payment gateway client instance"""
    return PaymentGatewayClient()


def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    """Periodic job endpoints require the scheduler's bearer secret when one is configured"""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
