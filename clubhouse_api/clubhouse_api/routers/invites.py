"""Invitation endpoints.

Issuing, listing, resending and revoking require ``MANAGE_INVITES`` (owner
and coach) and always act on the caller's active tenant; an invite id from
another tenant answers 404.  ``GET /invites/validate/{token}`` is public and
never consumes the token.
"""

from __future__ import annotations

import logging
from typing import Any

from clubhouse_core.state.tables import InviteTable
from fastapi import APIRouter, Depends, Path

from clubhouse_api.dependencies import (
    EmailDep,
    IdentityFactoryDep,
    PublicSessionDep,
    SessionDep,
    SettingsDep,
    TenantDep,
    UserDep,
)
from clubhouse_api.middleware.rbac import Permission, Role, require_permission
from clubhouse_api.schemas import (
    CreateInviteRequest,
    InviteActionRequest,
    InviteListResponse,
    InvitePreviewResponse,
    InviteResponse,
)
from clubhouse_api.services.admission_service import AdmissionService
from clubhouse_api.services.token_service import TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invites", tags=["invites"])


def _invite_to_dict(invite: InviteTable) -> dict[str, Any]:
    return {
        "ok": True,
        "id": invite.id,
        "email": invite.email,
        "role": invite.role,
        "expires_at": invite.expires_at.isoformat(),
        "used": invite.used_at is not None,
    }


@router.post("", response_model=InviteResponse)
async def create_invite(
    body: CreateInviteRequest,
    session: SessionDep,
    settings: SettingsDep,
    tenant_id: TenantDep,
    user_id: UserDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_INVITES)),
) -> dict[str, Any]:
    """Invite *email* into the active tenant with *role*."""
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    invite = await service.issue_invite(
        tenant_id=tenant_id,
        actor_user_id=user_id,
        email=body.email,
        role=body.role,
    )
    return _invite_to_dict(invite)


@router.get("", response_model=InviteListResponse)
async def list_invites(
    session: SessionDep,
    tenant_id: TenantDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_INVITES)),
) -> dict[str, Any]:
    """List the active tenant's invites that can still be redeemed."""
    invites = await TokenService(session).list_pending_invites(tenant_id)
    return {"ok": True, "invites": [_invite_to_dict(i) for i in invites]}


@router.post("/resend", response_model=InviteResponse)
async def resend_invite(
    body: InviteActionRequest,
    session: SessionDep,
    settings: SettingsDep,
    tenant_id: TenantDep,
    user_id: UserDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_INVITES)),
) -> dict[str, Any]:
    """Re-send the invite email.  The token and its expiry are unchanged."""
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    invite = await service.resend_invite(tenant_id=tenant_id, actor_user_id=user_id, invite_id=body.id)
    return _invite_to_dict(invite)


@router.post("/revoke", response_model=InviteResponse)
async def revoke_invite(
    body: InviteActionRequest,
    session: SessionDep,
    settings: SettingsDep,
    tenant_id: TenantDep,
    user_id: UserDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_INVITES)),
) -> dict[str, Any]:
    """Revoke a pending invite so its token can no longer be redeemed."""
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    invite = await service.revoke_invite(tenant_id=tenant_id, actor_user_id=user_id, invite_id=body.id)
    return _invite_to_dict(invite)


@router.get("/validate/{token}", response_model=InvitePreviewResponse)
async def validate_invite(
    session: PublicSessionDep,
    settings: SettingsDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    token: str = Path(..., min_length=1, max_length=128),
) -> dict[str, Any]:
    """Preview a pending invite without consuming it."""
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    return {"ok": True, **await service.preview_invite(token)}
