"""FastAPI application entry-point for the Clubhouse onboarding API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clubhouse_api import __version__
from clubhouse_api.config import APISettings, load_api_settings
from clubhouse_api.dependencies import (
    dispose_email_client,
    dispose_engine,
    init_email_client,
    init_engine,
)
from clubhouse_api.errors import AdmissionError
from clubhouse_api.middleware.auth import AuthenticationMiddleware
from clubhouse_api.middleware.logging import CORRELATION_HEADER, RequestLoggingMiddleware
from clubhouse_api.middleware.rate_limit import RateLimitConfig, RateLimitMiddleware
from clubhouse_api.middleware.trace_context import TraceContextMiddleware, TraceLoggingFilter
from clubhouse_api.routers import (
    audit,
    billing,
    health,
    invites,
    join,
    onboarding,
    tenants,
    webhooks,
)
from clubhouse_api.security import SessionTokenManager

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_structured_logging() -> None:
    """Route all records through a single JSON handler on the root logger."""
    from clubhouse_api.middleware.json_formatter import JSONFormatter

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    handler.addFilter(TraceLoggingFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Initialise the async database engine.
    - Create tables when running on local SQLite (production uses
      migrations).
    - Initialise the outbound email client.

    On shutdown:
    - Close the email client.
    - Dispose the database engine connection pool.
    """
    settings: APISettings = app.state.settings

    if settings.structured_logging:
        configure_structured_logging()
        logger.info("Structured JSON logging enabled")

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local SQLite" if is_local else "postgres")

    if is_local:
        from clubhouse_core.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)

    email_client = init_email_client(settings)
    if not email_client.enabled:
        logger.warning("No email API key configured; outbound email will be logged and dropped")
    if not settings.stripe_secret_key.get_secret_value():
        logger.warning("No Stripe secret key configured; onboarding will fail with billing_unavailable")

    yield

    await dispose_email_client()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()

    app = FastAPI(
        title="Clubhouse API",
        description="Multi-tenant onboarding: tenants, invitations, joining, consent and billing.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # -- Middleware (the last one added runs first) --------------------------

    app.add_middleware(
        RateLimitMiddleware,
        config=RateLimitConfig(
            enabled=settings.rate_limit_enabled,
            window_seconds=settings.rate_limit_window_seconds,
            default_requests_per_window=settings.rate_limit_requests_per_minute,
            burst_multiplier=settings.rate_limit_burst_multiplier,
            admission_requests_per_window=settings.rate_limit_admission_requests_per_window,
        ),
    )
    app.add_middleware(
        AuthenticationMiddleware,
        token_manager=SessionTokenManager(settings.session_secret, ttl_seconds=settings.session_ttl_seconds),
    )
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", CORRELATION_HEADER, "Accept"],
    )

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(onboarding.router, prefix="/api/v1")
    app.include_router(invites.router, prefix="/api/v1")
    app.include_router(join.router, prefix="/api/v1")
    app.include_router(tenants.router, prefix="/api/v1")
    app.include_router(tenants.tenant_router, prefix="/api/v1")
    app.include_router(billing.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(audit.router, prefix="/api/v1")

    # Readiness check sits outside API versioning.
    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(AdmissionError)
    async def admission_error_handler(request: Request, exc: AdmissionError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log("%s on %s: %s", exc.code, request.url.path, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": exc.code, "detail": exc.detail},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        # Log the full error; return a safe message to the client.
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "invalid_request", "detail": "Invalid request"},
        )

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
        logger.warning("PermissionError on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": "Permission denied"})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal database error"})

    return app


# Module-level application instance used by ``uvicorn clubhouse_api.main:app``.
app = create_app()
