"""FastAPI dependency injection for database sessions, collaborators, and settings."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from typing import Annotated

from clubhouse_core.state.database import get_engine
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from clubhouse_api.config import APISettings, load_api_settings
from clubhouse_api.security import SessionTokenManager
from clubhouse_api.services.email_service import EmailClient
from clubhouse_api.services.identity import DatabaseIdentityProvider, IdentityProvider

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory."""
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` for endpoints without an active tenant.

    Used by the public admission endpoints (``get-started``, ``join/*``,
    ``verify``, lookups), the Stripe webhook and the health checks.  The
    tenant these endpoints act on is resolved from a token, a join-code or
    signed event metadata, never from the request itself.

    The session commits on clean exit and rolls back on exception, so a
    failed admission leaves no partial state behind.
    """
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_tenant_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` for an authenticated, tenant-scoped request.

    Rejects the request with 401 before opening a session when the
    authentication middleware did not establish an active tenant.
    """
    tenant_id = getattr(request.state, "tenant_id", None)
    if tenant_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionDep = Annotated[AsyncSession, Depends(get_tenant_session)]

# Session without an active tenant.  Only for public admission endpoints,
# the webhook receiver and health checks.
PublicSessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def get_token_manager(settings: SettingsDep) -> SessionTokenManager:
    """Return a :class:`SessionTokenManager` bound to the configured secret."""
    return SessionTokenManager(settings.session_secret, ttl_seconds=settings.session_ttl_seconds)


TokenManagerDep = Annotated[SessionTokenManager, Depends(get_token_manager)]

# ---------------------------------------------------------------------------
# Identity collaborator
# ---------------------------------------------------------------------------

IdentityFactory = Callable[[AsyncSession], IdentityProvider]


def get_identity_factory() -> IdentityFactory:
    """Return the callable that binds an identity provider to a session.

    The provider must share the request's session so that user creation
    commits or rolls back together with the admission it belongs to.
    """
    return DatabaseIdentityProvider


IdentityFactoryDep = Annotated[IdentityFactory, Depends(get_identity_factory)]

# ---------------------------------------------------------------------------
# Email client
# ---------------------------------------------------------------------------

_email_client: EmailClient | None = None


def init_email_client(settings: APISettings) -> EmailClient:
    """Create and cache the global :class:`EmailClient`."""
    global _email_client  # noqa: PLW0603
    _email_client = EmailClient(
        api_url=settings.email_api_url,
        api_key=settings.email_api_key.get_secret_value(),
        sender=settings.email_from,
        timeout=settings.external_call_timeout,
    )
    return _email_client


async def dispose_email_client() -> None:
    """Close the email client's underlying HTTP pool."""
    global _email_client  # noqa: PLW0603
    if _email_client is not None:
        await _email_client.close()
        _email_client = None


def get_email_client() -> EmailClient:
    """Return the cached :class:`EmailClient` singleton."""
    if _email_client is None:
        raise RuntimeError(
            "Email client has not been initialised. Ensure init_email_client() is called during application startup."
        )
    return _email_client


EmailDep = Annotated[EmailClient, Depends(get_email_client)]

# ---------------------------------------------------------------------------
# Tenant / user identity (populated by AuthenticationMiddleware)
# ---------------------------------------------------------------------------


def get_tenant_id(request: Request) -> str:
    """Extract the active tenant from authenticated request state."""
    tenant_id = getattr(request.state, "tenant_id", None)
    if tenant_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return tenant_id


TenantDep = Annotated[str, Depends(get_tenant_id)]


def get_user_identity(request: Request) -> str:
    """Extract the authenticated user id; 401 when absent."""
    sub = getattr(request.state, "sub", None)
    if sub is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return sub


UserDep = Annotated[str, Depends(get_user_identity)]


def get_optional_user(request: Request) -> str | None:
    """Return the signed-in user on a public endpoint, if any."""
    return getattr(request.state, "sub", None)


OptionalUserDep = Annotated[str | None, Depends(get_optional_user)]
