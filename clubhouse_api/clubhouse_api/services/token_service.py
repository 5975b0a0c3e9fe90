"""Single-use token lifecycle: issue, preview, consume, revoke.

Redemption is a single conditional ``UPDATE`` judged by its affected-row
count (see :meth:`InviteRepository.consume`).  Only when nothing was
consumed is the row re-read, purely to explain the failure.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from clubhouse_core.ids import random_token
from clubhouse_core.state.repository import EmailVerificationRepository, InviteRepository
from clubhouse_core.state.tables import EmailVerificationTable, InviteTable
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.errors import TokenAlreadyUsed, TokenExpired, TokenNotFound

logger = logging.getLogger(__name__)


def raise_for_unusable(row: Any, now: datetime | None = None) -> None:
    """Raise the token error describing why *row* cannot be redeemed.

    Returns normally when *row* is live.  A consumed token reports
    ``TokenAlreadyUsed`` even if it has since expired.
    """
    if row is None:
        raise TokenNotFound()
    if row.used_at is not None:
        raise TokenAlreadyUsed()
    if row.expires_at <= (now or datetime.now(UTC)):
        raise TokenExpired()


class TokenService:
    """Invitation and email-verification tokens for one request scope."""

    def __init__(self, session: AsyncSession) -> None:
        self._invites = InviteRepository(session)
        self._verifications = EmailVerificationRepository(session)

    # -- Invitations ---------------------------------------------------------

    async def issue_invite(
        self,
        *,
        tenant_id: str,
        email: str,
        role: str,
        invited_by_user_id: str | None,
        expires_in: timedelta,
        channel: str = "email",
    ) -> InviteTable:
        return await self._invites.create(
            tenant_id=tenant_id,
            email=email,
            role=role,
            token=random_token(),
            expires_at=datetime.now(UTC) + expires_in,
            invited_by_user_id=invited_by_user_id,
            channel=channel,
        )

    async def consume_invite(self, token: str) -> InviteTable:
        """Redeem an invitation token exactly once."""
        row = await self._invites.consume(token)
        if row is None:
            raise_for_unusable(await self._invites.get_by_token(token))
            # Live on re-read: a competing redemption rolled back in between.
            raise TokenNotFound()
        logger.info("Consumed invite %s for tenant %s", row.id, row.tenant_id)
        return row

    async def peek_invite(self, token: str) -> InviteTable:
        """Return a live invite without consuming it."""
        row = await self._invites.get_by_token(token)
        raise_for_unusable(row)
        return row

    async def get_invite_for_tenant(self, invite_id: str, tenant_id: str) -> InviteTable | None:
        return await self._invites.get_for_tenant(invite_id, tenant_id)

    async def list_pending_invites(self, tenant_id: str) -> list[InviteTable]:
        return await self._invites.list_pending(tenant_id)

    async def revoke_invite(self, invite: InviteTable) -> None:
        """Force *invite* into the expired state."""
        await self._invites.expire(invite.id)
        logger.info("Revoked invite %s for tenant %s", invite.id, invite.tenant_id)

    # -- Email verification --------------------------------------------------

    async def issue_verification(self, *, user_id: str, email: str, expires_in: timedelta) -> EmailVerificationTable:
        return await self._verifications.create(
            user_id=user_id,
            email=email,
            token=random_token(),
            expires_at=datetime.now(UTC) + expires_in,
        )

    async def consume_verification(self, token: str) -> EmailVerificationTable:
        """Redeem an email-verification token exactly once."""
        row = await self._verifications.consume(token)
        if row is None:
            raise_for_unusable(await self._verifications.get_by_token(token))
            raise TokenNotFound()
        return row
