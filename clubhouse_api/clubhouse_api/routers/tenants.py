"""Tenant membership, switching, join-code lookup and rotation endpoints.

The active tenant is always the one named in the verified session token.
Switching issues a new token after re-checking membership in the store;
nothing in the request body can change the active tenant on its own.
"""

from __future__ import annotations

import logging
from typing import Any

from clubhouse_core.roles import parse_role
from fastapi import APIRouter, Depends, Path

from clubhouse_api.dependencies import (
    EmailDep,
    IdentityFactoryDep,
    PublicSessionDep,
    SessionDep,
    SettingsDep,
    TenantDep,
    TokenManagerDep,
    UserDep,
)
from clubhouse_api.errors import MembershipNotFound, TenantNotFound
from clubhouse_api.middleware.rbac import Permission, Role, require_permission
from clubhouse_api.schemas import (
    RotateCodeResponse,
    SwitchTenantRequest,
    SwitchTenantResponse,
    TenantListResponse,
    TenantLookupResponse,
)
from clubhouse_api.services.admission_service import AdmissionService
from clubhouse_api.services.membership_service import MembershipService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])

# Operations on the active tenant itself.
tenant_router = APIRouter(prefix="/tenant", tags=["tenants"])


@router.get("", response_model=TenantListResponse)
async def list_tenants(
    session: SessionDep,
    tenant_id: TenantDep,
    user_id: UserDep,
) -> dict[str, Any]:
    """List every tenant the caller belongs to, with their role in each."""
    memberships = await MembershipService(session).list_memberships(user_id)
    return {
        "ok": True,
        "active_tenant_id": tenant_id,
        "tenants": [
            {"tenant_id": tenant.id, "name": tenant.name, "slug": tenant.slug, "role": membership.role}
            for membership, tenant in memberships
        ],
    }


@router.post("/switch", response_model=SwitchTenantResponse)
async def switch_tenant(
    body: SwitchTenantRequest,
    session: SessionDep,
    user_id: UserDep,
    token_manager: TokenManagerDep,
) -> dict[str, Any]:
    """Issue a session token scoped to another tenant the caller belongs to."""
    membership = await MembershipService(session).get_membership(body.tenant_id, user_id)
    if membership is None:
        raise MembershipNotFound()

    role = parse_role(membership.role)
    logger.info("User %s switched active tenant to %s", user_id, body.tenant_id)
    return {
        "ok": True,
        "tenant_id": body.tenant_id,
        "role": role.value,
        "session_token": token_manager.issue(sub=user_id, tenant_id=body.tenant_id, role=role.value),
    }


@router.get("/by-code/{code}", response_model=TenantLookupResponse)
async def lookup_by_code(
    session: PublicSessionDep,
    code: str = Path(..., min_length=1, max_length=32),
) -> dict[str, Any]:
    """Resolve a join-code to the tenant it currently belongs to."""
    tenant = await MembershipService(session).find_tenant_by_code(code)
    if tenant is None:
        raise TenantNotFound()
    return {
        "ok": True,
        "name": tenant.name,
        "slug": tenant.slug,
        "requires_approval": tenant.requires_approval,
    }


@tenant_router.post("/code/rotate", response_model=RotateCodeResponse)
async def rotate_code(
    session: SessionDep,
    settings: SettingsDep,
    tenant_id: TenantDep,
    user_id: UserDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    _role: Role = Depends(require_permission(Permission.MANAGE_TENANT)),
) -> dict[str, Any]:
    """Replace the active tenant's join-code.  The old code stops resolving."""
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    code = await service.rotate_join_code(tenant_id=tenant_id, actor_user_id=user_id)
    return {"ok": True, "tenant_code": code}
