"""Middleware components for the Clubhouse API."""

from __future__ import annotations

from clubhouse_api.middleware.auth import AuthenticationMiddleware
from clubhouse_api.middleware.logging import RequestLoggingMiddleware
from clubhouse_api.middleware.rate_limit import RateLimitConfig, RateLimitMiddleware
from clubhouse_api.middleware.rbac import (
    ROLE_PERMISSIONS,
    Permission,
    get_user_role,
    require_permission,
)
from clubhouse_api.middleware.trace_context import TraceContextMiddleware, TraceLoggingFilter

__all__ = [
    "AuthenticationMiddleware",
    "Permission",
    "ROLE_PERMISSIONS",
    "RateLimitConfig",
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "TraceContextMiddleware",
    "TraceLoggingFilter",
    "get_user_role",
    "require_permission",
]
