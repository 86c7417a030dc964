# ==== PARCEL BILLING MAIN APPLICATION MODULE ==== #

"""
Main FastAPI application for the parcel billing engine.

This module assembles the thin HTTP surface over ``BillingService``:
fee quotes, rate tables, invoices, payments and currencies, plus the
health probes, Prometheus scrape endpoint, and the mapping from billing
errors to JSON error bodies.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from parcel_billing.business.errors import BillingError
from parcel_billing.settings import settings
from parcel_billing.storage.db import init_database, close_database, check_database
from parcel_billing.observability.tracing import init_tracing
from parcel_billing.observability.metrics import init_metrics, metrics_router
from parcel_billing.observability.logging import init_logging, get_logger
from parcel_billing.middleware.correlation import CorrelationMiddleware, get_correlation_id
from parcel_billing.routes import billing, currencies, invoices


logger = get_logger(__name__)


# ==== APPLICATION LIFECYCLE MANAGEMENT ==== #


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown operations.

    Args:
        app (FastAPI): FastAPI application instance

    Yields:
        None: Control back to FastAPI during application runtime
    """
    # --► STARTUP SEQUENCE
    init_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    init_tracing(settings.SERVICE_NAME)
    init_database()

    yield

    # --► SHUTDOWN SEQUENCE
    await close_database()


# ==== APPLICATION FACTORY ==== #


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Application with middleware, routers and error handlers
    """
    app = FastAPI(
        title="Parcel Billing",
        description="Shipping, storage and customs fees with invoice ledgers",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.APP_ENV == "dev" else None,
        redoc_url="/redoc" if settings.APP_ENV == "dev" else None
    )

    # --► OBSERVABILITY INITIALIZATION
    init_metrics(app)

    # --► MIDDLEWARE STACK CONFIGURATION
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-Id"],
    )
    app.add_middleware(CorrelationMiddleware)

    _register_health_endpoints(app)
    _register_routers(app)
    _register_exception_handlers(app)

    # --► OPENTELEMETRY INSTRUMENTATION
    FastAPIInstrumentor.instrument_app(app)

    return app


# ==== ENDPOINT REGISTRATION HELPERS ==== #


def _register_health_endpoints(app: FastAPI) -> None:
    """
    Register liveness and readiness probes.

    Args:
        app (FastAPI): FastAPI application instance
    """
    @app.get("/healthz", tags=["health"])
    async def health_check() -> dict:
        """Liveness probe; does not touch the database."""
        return {
            "status": "ok",
            "service": settings.SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/readyz", tags=["health"])
    async def readiness_check() -> JSONResponse:
        """Readiness probe; 503 when the database is unreachable."""
        try:
            await check_database()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Readiness check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unavailable",
                    "service": settings.SERVICE_NAME,
                    "database": "disconnected",
                }
            )

        return JSONResponse(
            content={
                "status": "ready",
                "service": settings.SERVICE_NAME,
                "environment": settings.APP_ENV,
                "database": "connected",
            }
        )


def _register_routers(app: FastAPI) -> None:
    """
    Register all application routers with their prefixes and tags.

    Args:
        app (FastAPI): FastAPI application instance
    """
    app.include_router(metrics_router, prefix="", tags=["monitoring"])
    app.include_router(billing.router, prefix="/billing", tags=["billing"])
    app.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
    app.include_router(currencies.router, prefix="/currencies", tags=["currencies"])


# ==== EXCEPTION HANDLERS ==== #


def _register_exception_handlers(app: FastAPI) -> None:
    """
    Map billing errors and unexpected failures to JSON error bodies.

    Args:
        app (FastAPI): FastAPI application instance
    """
    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        """Billing errors keep their code, status and retryability."""
        correlation_id = get_correlation_id(request)

        logger.warning(
            f"Billing request rejected: {exc.message}",
            error_code=exc.code,
            status_code=exc.status_code,
            path=request.url.path,
            correlation_id=correlation_id,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={**exc.to_dict(), "correlation_id": correlation_id}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Unhandled errors become a 500 with the correlation id."""
        correlation_id = get_correlation_id(request)
        logger.exception(
            "Unhandled error",
            path=request.url.path,
            correlation_id=correlation_id,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "retryable": False,
                "details": {},
                "correlation_id": correlation_id,
            }
        )


# ==== APPLICATION INSTANCE ==== #


# Create application instance for deployment
app = create_app()
