"""Parental consent capture and parent-player linking."""

from __future__ import annotations

import logging
from typing import Any

from clubhouse_core.state.repository import ConsentRepository, ParentLinkRepository
from clubhouse_core.state.tables import ConsentRecordTable
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ConsentService:
    """Consent records and guardian links within one tenant."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._tenant_id = tenant_id
        self._consents = ConsentRepository(session, tenant_id=tenant_id)
        self._links = ParentLinkRepository(session, tenant_id=tenant_id)

    async def record_consent(
        self,
        *,
        minor_user_id: str,
        parent_user_id: str,
        parent_email: str | None,
        method: str,
        policy_version: str,
        context: dict[str, Any] | None = None,
    ) -> ConsentRecordTable:
        """Write one immutable consent record.

        Every call is a distinct consent event; nothing is deduplicated.
        """
        record = await self._consents.create(
            minor_user_id=minor_user_id,
            parent_user_id=parent_user_id,
            parent_email=parent_email,
            method=method,
            policy_version=policy_version,
            context=context,
        )
        logger.info(
            "Recorded consent %s: tenant=%s minor=%s parent=%s method=%s",
            record.id,
            self._tenant_id,
            minor_user_id,
            parent_user_id,
            method,
        )
        return record

    async def link_parent_player(self, parent_user_id: str, player_user_id: str) -> bool:
        """Link parent and player; a no-op if already linked."""
        created = await self._links.link(parent_user_id, player_user_id)
        if not created:
            logger.debug("Parent %s already linked to player %s", parent_user_id, player_user_id)
        return created
