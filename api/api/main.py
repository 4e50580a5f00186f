"""FastAPI application entry-point for the salon metering API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from meter_engine.metering.errors import QuotaExceededError, StoreUnavailableError
from meter_engine.state.sqlite_adapter import create_local_tables
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.config import APISettings, load_api_settings
from api.dependencies import dispose_engine, init_engine
from api.middleware.instrumentation import InstrumentationMiddleware
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.prometheus import PrometheusMiddleware
from api.middleware.tenant import TENANT_HEADER, TenantContextMiddleware
from api.routers import health, observability, usage
from api.routers import metrics as metrics_router

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Switch to JSON logging when configured.
    - Initialise the async database engine.
    - Create tables in local SQLite mode or when explicitly enabled
      (production uses migrations).

    On shutdown:
    - Dispose the database engine connection pool.
    """
    settings: APISettings = load_api_settings()

    if settings.structured_logging:
        from api.middleware.json_formatter import configure_json_logging

        configure_json_logging()
        logger.info("Structured JSON logging enabled")

    engine = init_engine(settings)
    logger.info(
        "Database engine initialised (%s)",
        "local" if settings.is_local else "postgres",
    )

    if settings.is_local or settings.auto_create_tables:
        await create_local_tables(engine)
        logger.info("Database tables ensured")

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="Salon Metering API",
        description="Usage metering, quota enforcement and observability for salon tenants.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (last added runs outermost) -------------------------------

    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(InstrumentationMiddleware, enabled=settings.instrumentation_enabled)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            TENANT_HEADER,
            "Accept",
        ],
    )
    app.add_middleware(PrometheusMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(usage.router, prefix="/api/v1")
    app.include_router(observability.router, prefix="/api/v1")

    # Metrics endpoint, outside /api/v1 versioning (Prometheus scrape).
    app.include_router(metrics_router.router)

    # Readiness probe at the root.
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(QuotaExceededError)
    async def quota_exceeded_handler(request: Request, exc: QuotaExceededError) -> JSONResponse:
        return JSONResponse(status_code=429, content=exc.to_dict())

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error("Usage store unavailable on %s: %s", request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Usage store unavailable", "code": "store_unavailable"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        # Log the full error for debugging; return a safe message to the client.
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": "Invalid request"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal database error"},
        )

    return app


# Module-level application instance used by ``uvicorn api.main:app``.
app = create_app()
