"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from fee_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from fee_ledger.api.v1 import defaulters, fees, reports, students
from fee_ledger.infrastructure.observability.logging import setup_logging
from fee_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="School Fee Ledger",
        description="Fee ledger, collection, defaulter tracking and reporting service",
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

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(students.router, prefix="/v1", tags=["students"])
    app.include_router(fees.router, prefix="/v1", tags=["fees"])
    app.include_router(defaulters.router, prefix="/v1", tags=["defaulters"])
    app.include_router(reports.router, prefix="/v1", tags=["reports"])

    return app


app = create_app()
