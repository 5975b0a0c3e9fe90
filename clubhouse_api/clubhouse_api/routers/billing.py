"""Billing endpoints: subscription status and Stripe Checkout."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from clubhouse_api.dependencies import SessionDep, SettingsDep, TenantDep
from clubhouse_api.errors import CustomerNotFound
from clubhouse_api.middleware.rbac import Permission, Role, require_permission
from clubhouse_api.schemas import CheckoutRequest, CheckoutSessionResponse, SubscriptionResponse
from clubhouse_api.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    session: SessionDep,
    settings: SettingsDep,
    tenant_id: TenantDep,
    _role: Role = Depends(require_permission(Permission.READ_BILLING)),
) -> dict[str, Any]:
    """Return the active tenant's plan and subscription status."""
    service = BillingService(session, settings, tenant_id=tenant_id)
    subscription = await service.get_subscription()
    if subscription is None:
        raise CustomerNotFound()
    return {"ok": True, **subscription}


@router.post("/checkout", response_model=CheckoutSessionResponse)
async def create_checkout(
    session: SessionDep,
    settings: SettingsDep,
    tenant_id: TenantDep,
    body: CheckoutRequest | None = None,
    _role: Role = Depends(require_permission(Permission.MANAGE_BILLING)),
) -> dict[str, Any]:
    """Create a Stripe Checkout session for the paid plan.

    Requires the tenant to already have a Stripe customer (created at
    onboarding); answers 400 ``customer_not_found`` otherwise.
    """
    service = BillingService(session, settings, tenant_id=tenant_id)
    url = await service.create_checkout_session(price_id=body.price_id if body else None)
    return {"ok": True, "url": url}
