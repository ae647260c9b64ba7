"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from loan_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from loan_engine.api.v1 import borrowers, cron, loans, mandates, notifications, webhooks
from loan_engine.infrastructure.observability.logging import setup_logging
from loan_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Lending Marketplace Loan Engine",
        description="Loan amortization, credit scoring and recurring card deductions",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(borrowers.router, prefix="/v1", tags=["borrowers"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(mandates.router, prefix="/v1", tags=["mandates"])
    app.include_router(cron.router, prefix="/v1", tags=["cron"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(notifications.router, prefix="/v1", tags=["notifications"])

    return app


app = create_app()
