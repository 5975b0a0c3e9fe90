"""Membership roles held by a user within a tenant."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Closed set of tenant roles.

    ``OTHER`` absorbs role strings this version does not know about so that
    stored rows written by newer code still load; it grants no permissions.
    """

    OWNER = "owner"
    COACH = "coach"
    ASSISTANT = "assistant"
    PARENT = "parent"
    PLAYER = "player"
    OTHER = "other"


_ROLE_LOOKUP: dict[str, Role] = {r.value: r for r in Role}

# Legacy spellings still found in stored tokens and rows.
_ROLE_ALIASES: dict[str, Role] = {
    "tenant_owner": Role.OWNER,
    "admin": Role.OWNER,
}

# Roles whose holders are minors and need a consenting parent on file.
MINOR_ROLES: frozenset[Role] = frozenset({Role.PLAYER})

# Roles a member may be invited or self-join as.  OWNER is granted only at
# onboarding and OTHER is never assignable.
ASSIGNABLE_ROLES: frozenset[Role] = frozenset({Role.COACH, Role.ASSISTANT, Role.PARENT, Role.PLAYER})

# Roles obtainable with nothing but the tenant's shared join-code.
SELF_JOIN_ROLES: frozenset[Role] = frozenset({Role.PARENT, Role.PLAYER})


def parse_role(raw: str | None) -> Role:
    """Map a stored or claimed role string onto :class:`Role`.

    Unknown strings map to :attr:`Role.OTHER` rather than raising.
    """
    if not raw:
        return Role.OTHER
    key = raw.strip().lower()
    return _ROLE_LOOKUP.get(key) or _ROLE_ALIASES.get(key, Role.OTHER)


def is_minor(role: Role) -> bool:
    """Return ``True`` when *role* denotes a minor."""
    return role in MINOR_ROLES
