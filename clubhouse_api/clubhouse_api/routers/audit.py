"""Audit log query and chain-verification endpoints.

Both endpoints require the ``READ_AUDIT`` permission, which only the tenant
owner holds, and only ever read the active tenant's chain.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from clubhouse_core.state.repository import AuditRepository
from fastapi import APIRouter, Depends, Query

from clubhouse_api.dependencies import SessionDep, TenantDep
from clubhouse_api.middleware.rbac import Permission, Role, require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
async def query_audit_log(
    session: SessionDep,
    tenant_id: TenantDep,
    event_type: str | None = Query(default=None, description="Filter by event type."),
    target_type: str | None = Query(default=None, description="Filter by target type."),
    target_id: str | None = Query(default=None, description="Filter by target ID."),
    since: datetime | None = Query(default=None, description="Only entries at or after this timestamp."),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _role: Role = Depends(require_permission(Permission.READ_AUDIT)),
) -> list[dict[str, Any]]:
    """Query the append-only audit log, most recent first."""
    repo = AuditRepository(session, tenant_id=tenant_id)
    entries = await repo.query(
        event_type=event_type,
        target_type=target_type,
        target_id=target_id,
        since=since,
        limit=limit,
        offset=offset,
    )
    return [
        {
            "id": entry.id,
            "tenant_id": entry.tenant_id,
            "actor": entry.actor,
            "event_type": entry.event_type,
            "target_type": entry.target_type,
            "target_id": entry.target_id,
            "metadata": entry.metadata_json,
            "previous_hash": entry.previous_hash,
            "entry_hash": entry.entry_hash,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in entries
    ]


@router.get("/verify")
async def verify_audit_chain(
    session: SessionDep,
    tenant_id: TenantDep,
    limit: int = Query(default=1000, ge=1, le=10000),
    _role: Role = Depends(require_permission(Permission.READ_AUDIT)),
) -> dict[str, Any]:
    """Recompute the hash chain and report whether it is intact."""
    repo = AuditRepository(session, tenant_id=tenant_id)
    is_valid, entries_checked = await repo.verify_chain(limit=limit)
    return {
        "is_valid": is_valid,
        "entries_checked": entries_checked,
    }
