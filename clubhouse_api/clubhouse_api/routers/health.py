"""Liveness and readiness checks.

``/api/v1/health`` always answers 200 and reports dependency state in the
body.  ``/ready`` sits outside the versioned prefix and answers 503 while
the database is unreachable, so orchestrators stop routing traffic here.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api import __version__
from clubhouse_api.dependencies import SettingsDep, get_db_session

logger = logging.getLogger(__name__)

HealthSessionDep = Annotated[AsyncSession, Depends(get_db_session)]

router = APIRouter(tags=["health"])


async def _db_ok(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        return False
    return True


def _integrations(settings: Any) -> dict[str, str]:
    """Report which outbound integrations are configured (never their secrets)."""
    return {
        "stripe": "configured" if settings.stripe_secret_key.get_secret_value() else "unconfigured",
        "email": "configured" if settings.email_api_key.get_secret_value() else "unconfigured",
    }


@router.get("/health")
async def health(session: HealthSessionDep, settings: SettingsDep) -> dict[str, Any]:
    """Return service health; always HTTP 200."""
    return {
        "status": "healthy",
        "version": __version__,
        "db": "ok" if await _db_ok(session) else "degraded",
        **_integrations(settings),
    }


readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_check(session: HealthSessionDep) -> JSONResponse:
    """Readiness check gated on database connectivity."""
    if await _db_ok(session):
        return JSONResponse(status_code=200, content={"status": "ready", "version": __version__})
    return JSONResponse(
        status_code=503,
        content={"status": "not_ready", "version": __version__, "checks": {"db": "unavailable"}},
    )
