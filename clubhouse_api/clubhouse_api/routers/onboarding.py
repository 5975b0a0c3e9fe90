"""Tenant onboarding and email verification endpoints.

Both endpoints are public.  ``POST /get-started`` acts on behalf of the
signed-in user when a valid session token is presented, and otherwise
finds or creates the owner account from ``contact_email``.
"""

from __future__ import annotations

import logging
from typing import Any

from clubhouse_core.roles import Role
from fastapi import APIRouter, Query

from clubhouse_api.dependencies import (
    EmailDep,
    IdentityFactoryDep,
    OptionalUserDep,
    PublicSessionDep,
    SettingsDep,
    TokenManagerDep,
)
from clubhouse_api.schemas import GetStartedRequest, GetStartedResponse, VerifyEmailResponse
from clubhouse_api.services.admission_service import AdmissionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["onboarding"])


@router.post("/get-started", response_model=GetStartedResponse)
async def get_started(
    body: GetStartedRequest,
    session: PublicSessionDep,
    settings: SettingsDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    token_manager: TokenManagerDep,
    acting_user_id: OptionalUserDep,
) -> dict[str, Any]:
    """Create a tenant, its owner membership and its Stripe customer.

    Returns a session token already scoped to the new tenant.  A Stripe
    failure answers 502 and nothing is persisted.
    """
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    result = await service.onboard_tenant(
        org_name=body.org_name,
        contact_name=body.contact_name,
        contact_email=body.contact_email,
        city=body.city,
        state=body.state,
        country=body.country,
        password=body.password,
        acting_user_id=acting_user_id,
    )
    result["session_token"] = token_manager.issue(
        sub=result["user_id"],
        tenant_id=result["tenant_id"],
        role=Role.OWNER.value,
    )
    return {"ok": True, **result}


@router.get("/verify", response_model=VerifyEmailResponse)
async def verify_email(
    session: PublicSessionDep,
    settings: SettingsDep,
    identity_factory: IdentityFactoryDep,
    email: EmailDep,
    token: str = Query(..., min_length=1, max_length=128, description="Verification token."),
) -> dict[str, Any]:
    """Consume an email-verification token."""
    service = AdmissionService(session, settings, identity=identity_factory(session), email=email)
    result = await service.verify_email(token)
    return {"ok": True, **result}
