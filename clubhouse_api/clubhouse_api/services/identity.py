"""Identity collaborator.

Admission only needs two operations from the identity subsystem:
``ensure_user`` (find-or-create by email) and ``mark_user_verified``.
:class:`DatabaseIdentityProvider` implements them on the ``users`` table;
:class:`InMemoryIdentityProvider` is a deterministic stand-in for tests and
for embedding the admission workflow without a user store.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Protocol

from clubhouse_core.state.repository import UserRepository
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Capability interface for user identity."""

    async def ensure_user(
        self,
        email: str,
        password: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> str:
        """Return the id of the user with *email*, creating one if needed."""
        ...

    async def mark_user_verified(self, user_id: str) -> bool:
        """Mark the user's email as verified.  Returns ``False`` if unknown."""
        ...

    async def get_email(self, user_id: str) -> str | None:
        """Return the email address of *user_id*, if known."""
        ...


def _display_name(profile: dict[str, Any] | None) -> str:
    if not profile:
        return ""
    name = profile.get("name")
    if name:
        return str(name)
    parts = [str(profile[k]) for k in ("first_name", "last_name") if profile.get(k)]
    return " ".join(parts)


class DatabaseIdentityProvider:
    """Identity backed by the ``users`` table.

    Existing users are returned as-is; their password and profile are never
    overwritten by an admission.  New users without a password receive an
    unguessable one and set their own through the password-reset flow.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._users = UserRepository(session)

    async def ensure_user(
        self,
        email: str,
        password: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> str:
        existing = await self._users.get_by_email(email)
        if existing is not None:
            return existing.id
        user = await self._users.create(
            email=email,
            password=password or secrets.token_urlsafe(32),
            display_name=_display_name(profile),
        )
        logger.info("Created user %s for %s", user.id, user.email)
        return user.id

    async def mark_user_verified(self, user_id: str) -> bool:
        return await self._users.mark_verified(user_id)

    async def get_email(self, user_id: str) -> str | None:
        user = await self._users.get_by_id(user_id)
        return user.email if user is not None else None


class InMemoryIdentityProvider:
    """Deterministic in-memory identity: ids are ``user-1``, ``user-2``, ..."""

    def __init__(self) -> None:
        self._by_email: dict[str, str] = {}
        self._emails: dict[str, str] = {}
        self.profiles: dict[str, dict[str, Any]] = {}
        self.verified: set[str] = set()

    async def ensure_user(
        self,
        email: str,
        password: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> str:
        key = email.strip().lower()
        user_id = self._by_email.get(key)
        if user_id is None:
            user_id = f"user-{len(self._by_email) + 1}"
            self._by_email[key] = user_id
            self._emails[user_id] = key
            self.profiles[user_id] = dict(profile or {})
        return user_id

    async def mark_user_verified(self, user_id: str) -> bool:
        if user_id not in self._emails:
            return False
        self.verified.add(user_id)
        return True

    async def get_email(self, user_id: str) -> str | None:
        return self._emails.get(user_id)
