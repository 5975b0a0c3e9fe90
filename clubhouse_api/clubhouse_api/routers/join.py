"""Public join endpoints: redeem an invitation token or a tenant join-code."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

from clubhouse_api.dependencies import (
    EmailDep,
    IdentityFactoryDep,
    PublicSessionDep,
    SettingsDep,
    TokenManagerDep,
)
from clubhouse_api.schemas import JoinByCodeRequest, JoinByTokenRequest, JoinResponse
from clubhouse_api.services.admission_service import AdmissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/join", tags=["join"])


@router.post("/by-token", response_model=JoinResponse)
async def join_by_token(
    body: JoinByTokenRequest,
    session: PublicSessionDep,
    settings: SettingsDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    token_manager: TokenManagerDep,
) -> dict[str, Any]:
    """Redeem an invitation token.

    Answers 400 with ``token_not_found``, ``token_already_used`` or
    ``token_expired`` when the token cannot be redeemed.
    """
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    result = await service.join_by_token(
        token=body.token,
        password=body.password,
        profile=body.profile,
        parent_email=body.parent_email,
    )
    result["session_token"] = token_manager.issue(
        sub=result["user_id"],
        tenant_id=result["tenant_id"],
        role=result["role"],
    )
    return {"ok": True, **result}


@router.post("/by-code", response_model=JoinResponse)
async def join_by_code(
    body: JoinByCodeRequest,
    session: PublicSessionDep,
    settings: SettingsDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    token_manager: TokenManagerDep,
) -> dict[str, Any]:
    """Join with the tenant's shared code.

    Tenants that require approval queue a join request instead; the
    response then has ``queued: true`` and no session token.
    """
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    result = await service.join_by_code(
        code=body.code,
        email=body.email,
        role=body.role,
        password=body.password,
        profile=body.profile,
        parent_email=body.parent_email,
    )
    if not result["queued"]:
        result["session_token"] = token_manager.issue(
            sub=result["user_id"],
            tenant_id=result["tenant_id"],
            role=result["role"],
        )
    return {"ok": True, **result}
