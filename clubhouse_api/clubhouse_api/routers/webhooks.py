"""Stripe webhook receiver.

Authenticated by the ``Stripe-Signature`` header rather than a session
token.  The signature is checked against the raw request bytes before the
body is parsed or anything is written.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request

from clubhouse_api.dependencies import PublicSessionDep, SettingsDep
from clubhouse_api.services.billing_service import StripeWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session: PublicSessionDep,
    settings: SettingsDep,
) -> dict[str, Any]:
    """Apply a Stripe event to the tenant's subscription.

    Any correctly signed payload answers 200, including event types that
    are not handled and events older than the last one applied.  A missing
    or invalid signature answers 400.
    """
    payload = await request.body()
    handler = StripeWebhookHandler(session, settings)
    event = handler.construct_event(payload, request.headers.get("stripe-signature"))
    result = await handler.handle_event(event)
    return {"received": True, **result}
