"""Authentication middleware that validates session tokens.

Extracts ``Authorization: Bearer <token>`` from every request, validates it
via :class:`~clubhouse_api.security.SessionTokenManager`, and populates
``request.state`` with ``sub`` (user id), ``tenant_id`` (active tenant) and
``role``.

Public admission endpoints are reachable without a token.  When a valid
token is presented on one of them anyway, ``request.state`` is still
populated so the handler can act on behalf of the signed-in user; an
invalid token on a public path is ignored rather than rejected.
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from clubhouse_api.security import SessionTokenManager, TokenClaims

logger = logging.getLogger(__name__)

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/api/v1/get-started",
        "/api/v1/verify",
        "/api/v1/join/by-token",
        "/api/v1/join/by-code",
        "/api/v1/webhooks/stripe",
    }
)

# Prefixes that skip auth (docs assets and token/code lookups).
_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
    "/api/v1/invites/validate/",
    "/api/v1/tenants/by-code/",
)


def is_public_path(path: str) -> bool:
    """Return ``True`` if *path* is reachable without a session token."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


def _bearer_token(request: Request) -> str | None:
    """Return the bearer token, or ``None`` if the header is absent/malformed."""
    auth_header = request.headers.get("authorization")
    if not auth_header:
        return None
    parts = auth_header.split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip()


def _populate_state(request: Request, claims: TokenClaims) -> None:
    request.state.sub = claims.sub
    request.state.tenant_id = claims.tenant_id
    request.state.role = claims.role
    request.state.token_jti = claims.jti


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    Returns 401 for a missing or invalid token and 403 for an expired one.
    """

    def __init__(self, app: Any, token_manager: SessionTokenManager) -> None:
        super().__init__(app)
        self._token_manager = token_manager
        logger.info("AuthenticationMiddleware initialised")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        token = _bearer_token(request)

        if is_public_path(path):
            if token:
                try:
                    _populate_state(request, self._token_manager.validate(token))
                except PermissionError as exc:
                    logger.debug("Ignoring invalid token on public path %s: %s", path, exc)
            return await call_next(request)

        if not request.headers.get("authorization"):
            return JSONResponse(status_code=401, content={"detail": "Missing Authorization header"})
        if token is None:
            return JSONResponse(
                status_code=401,
                content={"detail": "Authorization header must use Bearer scheme"},
            )

        try:
            claims = self._token_manager.validate(token)
        except PermissionError as exc:
            if "expired" in str(exc).lower():
                return JSONResponse(status_code=403, content={"detail": "Token has expired"})
            return JSONResponse(status_code=401, content={"detail": f"Invalid token: {exc}"})

        _populate_state(request, claims)
        return await call_next(request)
