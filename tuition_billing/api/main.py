"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from tuition_billing.api.middleware import RequestIDMiddleware, MetricsMiddleware
from tuition_billing.api.v1 import installments, payments, settings as settings_routes
from tuition_billing.infrastructure.observability.logging import setup_logging
from tuition_billing.config import settings

setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Tuition Billing",
        description="Installment billing, payment settlement and delinquency service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Last added runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(installments.router, prefix="/v1", tags=["installments"])
    app.include_router(settings_routes.router, prefix="/v1", tags=["settings"])

    return app


app = create_app()
