"""API router modules for the Clubhouse onboarding service."""

from __future__ import annotations

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

__all__ = [
    "audit",
    "billing",
    "health",
    "invites",
    "join",
    "onboarding",
    "tenants",
    "webhooks",
]
