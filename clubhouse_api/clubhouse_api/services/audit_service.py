"""Centralized audit logging service.

Wraps :class:`AuditRepository` with the admission and billing event
constants and a simplified interface for routers and services.  Every
admission and billing transition is funnelled through here so that the
trail is consistent and complete.
"""

from __future__ import annotations

import logging

from clubhouse_core.state.repository import AuditRepository
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class AuditAction:
    """Well-known audit event types.

    String constants rather than an enum, so that ad-hoc event types can be
    logged without touching this list.
    """

    TENANT_CREATED = "tenant_created"
    TENANT_CODE_ROTATED = "tenant_code_rotated"
    EMAIL_VERIFIED = "email_verified"
    INVITE_SENT = "invite_sent"
    INVITE_RESENT = "invite_resent"
    INVITE_REVOKED = "invite_revoked"
    INVITE_ACCEPTED = "invite_accepted"
    JOINED_BY_CODE = "joined_by_code"
    JOIN_REQUESTED = "join_requested"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


class AuditService:
    """Thin wrapper around :class:`AuditRepository`.

    Parameters
    ----------
    session:
        The async database session for the current request scope.
    tenant_id:
        Tenant the events belong to.
    actor:
        Identity of the user or system principal performing the action.
        Defaults to ``"system"``.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        actor: str = "system",
    ) -> None:
        self._repo = AuditRepository(session, tenant_id=tenant_id)
        self._actor = actor

    async def log(
        self,
        event_type: str,
        target_type: str | None = None,
        target_id: str | None = None,
        **kwargs: object,
    ) -> str:
        """Record an audit event and return its ID.

        Extra keyword arguments are stored as event metadata.
        """
        metadata: dict | None = dict(kwargs) if kwargs else None  # type: ignore[arg-type]
        return await self._repo.log(
            actor=self._actor,
            event_type=event_type,
            target_type=target_type,
            target_id=target_id,
            metadata=metadata,
        )
