"""Role-Based Access Control dependencies.

Roles are the closed :class:`~clubhouse_core.roles.Role` enum.  Permissions
are granted per role explicitly rather than through a hierarchy: a coach
may manage invites but not billing, and ``OTHER`` holds nothing.

Usage in routers::

    from clubhouse_api.middleware.rbac import Permission, require_permission

    @router.post("/invites")
    async def create_invite(
        ...,
        _role: Role = Depends(require_permission(Permission.MANAGE_INVITES)),
    ) -> ...:
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from clubhouse_core.roles import Role, parse_role
from fastapi import Depends, HTTPException, Request

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    """Fine-grained permission tokens checked by endpoint guards."""

    READ_TENANT = "read:tenant"
    MANAGE_TENANT = "manage:tenant"
    MANAGE_INVITES = "manage:invites"
    READ_BILLING = "read:billing"
    MANAGE_BILLING = "manage:billing"
    READ_AUDIT = "read:audit"


_MEMBER_PERMS: frozenset[Permission] = frozenset({Permission.READ_TENANT})

_STAFF_PERMS: frozenset[Permission] = _MEMBER_PERMS | frozenset(
    {
        Permission.MANAGE_INVITES,
        Permission.READ_BILLING,
    }
)

_OWNER_PERMS: frozenset[Permission] = _STAFF_PERMS | frozenset(
    {
        Permission.MANAGE_TENANT,
        Permission.MANAGE_BILLING,
        Permission.READ_AUDIT,
    }
)

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.OWNER: _OWNER_PERMS,
    Role.COACH: _STAFF_PERMS,
    Role.ASSISTANT: _MEMBER_PERMS,
    Role.PARENT: _MEMBER_PERMS,
    Role.PLAYER: _MEMBER_PERMS,
    Role.OTHER: frozenset(),
}


def role_has_permission(role: Role, permission: Permission) -> bool:
    """Return ``True`` if *role* grants *permission*."""
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def get_user_role(request: Request) -> Role:
    """Resolve the caller's role from ``request.state.role``.

    :class:`AuthenticationMiddleware` copies the ``role`` claim from the
    verified session token.  An authenticated request without a role is a
    malformed token and is rejected with 401; an unauthenticated request
    resolves to :attr:`Role.OTHER`, which holds no permissions.
    """
    raw_role: str | None = getattr(request.state, "role", None)
    if raw_role is None:
        if getattr(request.state, "sub", None) is not None:
            logger.warning(
                "Authenticated request (sub=%s) missing role claim; rejecting",
                getattr(request.state, "sub", "unknown"),
            )
            raise HTTPException(status_code=401, detail="Missing role claim in authenticated token")
        return Role.OTHER
    return parse_role(raw_role)


def require_permission(permission: Permission) -> Callable[..., Role]:
    """Return a FastAPI dependency that enforces *permission*.

    The guard runs before the handler body, so a denied request never
    touches the store.  Returns the resolved :class:`Role`.
    """

    def _guard(role: Role = Depends(get_user_role)) -> Role:
        if not role_has_permission(role, permission):
            logger.info("Permission denied: role=%s requires %s", role.value, permission.value)
            raise HTTPException(
                status_code=403,
                detail=f"Permission denied: role '{role.value}' does not have '{permission.value}' permission",
            )
        return role

    return _guard
