"""Stripe billing integration.

Provides customer creation at onboarding, checkout session creation, and
reconciliation of subscription state from Stripe webhook events.

Stripe's Python client is synchronous; every call runs in a worker thread
bounded by ``external_call_timeout`` and is never retried inside the
request.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from clubhouse_core.state.repository import SubscriptionRepository
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.config import APISettings
from clubhouse_api.errors import (
    BillingUnavailable,
    CustomerNotFound,
    WebhookPayloadError,
    WebhookSignatureError,
)
from clubhouse_api.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)

PAID_PLAN_KEY = "paid"

_HANDLED_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.deleted",
        "customer.subscription.paused",
    }
)


def _as_timestamp(value: Any) -> int | None:
    """Return *value* as integer epoch seconds, or ``None`` if it is not one."""
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


class BillingService:
    """Stripe billing operations for a single tenant.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        API settings containing Stripe configuration.
    tenant_id:
        The tenant performing billing operations.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        *,
        tenant_id: str,
    ) -> None:
        self._session = session
        self._settings = settings
        self._tenant_id = tenant_id
        self._subscriptions = SubscriptionRepository(session, tenant_id=tenant_id)

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    async def _call(self, fn: Callable[..., Any], **params: Any) -> Any:
        return await asyncio.wait_for(
            asyncio.to_thread(fn, **params),
            timeout=self._settings.external_call_timeout,
        )

    async def open_customer(self, *, name: str, email: str) -> str:
        """Create the tenant's Stripe customer and its free, inactive subscription row.

        Raises
        ------
        BillingUnavailable
            If Stripe fails or times out.  Nothing is written in that case.
        """
        stripe = self._get_stripe()
        try:
            customer = await self._call(
                stripe.Customer.create,
                email=email,
                name=name,
                metadata={"tenant_id": self._tenant_id},
                idempotency_key=f"tenant-{self._tenant_id}-customer",
            )
        except Exception as exc:
            logger.error("Stripe customer creation failed for tenant %s: %s", self._tenant_id, exc)
            raise BillingUnavailable() from exc

        customer_id: str = customer["id"]
        await self._subscriptions.create(customer_id)
        logger.info("Opened Stripe customer %s for tenant %s", customer_id, self._tenant_id)
        return customer_id

    async def create_checkout_session(self, price_id: str | None = None) -> str:
        """Create a subscription Checkout session and return its URL.

        ``tenant_id`` travels in both the session metadata and the
        subscription metadata so that every later webhook can be routed
        without a customer lookup.
        """
        subscription = await self._subscriptions.get()
        if subscription is None or not subscription.stripe_customer_id:
            raise CustomerNotFound()

        price = price_id or self._settings.stripe_price_id_paid
        if not price:
            raise ValueError("No Stripe price configured for checkout")

        base_url = self._settings.app_base_url.rstrip("/")
        metadata = {"tenant_id": self._tenant_id}
        stripe = self._get_stripe()
        try:
            checkout = await self._call(
                stripe.checkout.Session.create,
                mode="subscription",
                customer=subscription.stripe_customer_id,
                line_items=[{"price": price, "quantity": 1}],
                success_url=f"{base_url}/billing/success",
                cancel_url=f"{base_url}/billing/cancel",
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except Exception as exc:
            logger.error("Stripe checkout creation failed for tenant %s: %s", self._tenant_id, exc)
            raise BillingUnavailable() from exc
        return checkout["url"]

    async def get_subscription(self) -> dict[str, Any] | None:
        row = await self._subscriptions.get()
        if row is None:
            return None
        return {
            "plan_key": row.plan_key,
            "status": row.status,
            "stripe_customer_id": row.stripe_customer_id,
            "stripe_subscription_id": row.stripe_subscription_id,
            "trial_end": row.trial_end.isoformat() if row.trial_end else None,
            "current_period_end": row.current_period_end.isoformat() if row.current_period_end else None,
        }


class StripeWebhookHandler:
    """Verify and apply Stripe webhook events.

    Events are applied as absolute state writes keyed by the tenant found in
    the object's ``metadata.tenant_id``, so redelivery of the same event
    converges on the same row.  Events strictly older than the last applied
    one are ignored.
    """

    def __init__(self, session: AsyncSession, settings: APISettings) -> None:
        self._session = session
        self._settings = settings

    def construct_event(self, payload: bytes, sig_header: str | None) -> dict[str, Any]:
        """Verify *sig_header* against the raw *payload*, then parse it.

        Raises
        ------
        WebhookSignatureError
            Missing header, unconfigured secret, or signature mismatch.
        WebhookPayloadError
            Correctly signed body that is not a JSON object.
        """
        if not sig_header:
            raise WebhookSignatureError("Missing Stripe signature")
        secret = self._settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            logger.error("Stripe webhook received but no webhook secret is configured")
            raise WebhookSignatureError()

        import stripe

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                sig_header,
                secret,
                tolerance=self._settings.stripe_webhook_tolerance_seconds,
            )
        except Exception as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise WebhookSignatureError() from exc

        try:
            event = json.loads(body)
        except ValueError as exc:
            raise WebhookPayloadError() from exc
        if not isinstance(event, dict):
            raise WebhookPayloadError()
        return event

    async def handle_event(self, event: dict[str, Any]) -> dict[str, str]:
        """Apply a verified event.

        Supported events:

        - ``checkout.session.completed``: subscription becomes active on the
          paid plan.
        - ``customer.subscription.deleted`` / ``customer.subscription.paused``:
          subscription becomes canceled.

        Returns
        -------
        dict
            ``{"status": "processed"}`` or ``{"status": "ignored", ...}``.
        """
        event_type = str(event.get("type", ""))
        event_id = str(event.get("id", ""))
        if event_type not in _HANDLED_EVENTS:
            logger.info("Ignoring Stripe event %s of type %s", event_id, event_type)
            return {"status": "ignored"}

        created = _as_timestamp(event.get("created") or 0)
        data = event.get("data")
        data_object = data.get("object") if isinstance(data, dict) else None
        if created is None or not isinstance(data_object, dict):
            logger.warning("Ignoring malformed Stripe event %s of type %s", event_id, event_type)
            return {"status": "ignored", "reason": "malformed_event"}

        if event_type == "checkout.session.completed":
            values: dict[str, Any] = {"plan_key": PAID_PLAN_KEY, "status": "active"}
            subscription_id = data_object.get("subscription")
            if isinstance(subscription_id, dict):
                subscription_id = subscription_id.get("id")
            if subscription_id:
                values["stripe_subscription_id"] = subscription_id
            customer_id = data_object.get("customer")
            if isinstance(customer_id, str) and customer_id:
                values["stripe_customer_id"] = customer_id
            return await self._apply(
                data_object, event_id, event_type, created, values, AuditAction.SUBSCRIPTION_ACTIVATED
            )

        values = {"status": "canceled"}
        period_end = _as_timestamp(data_object.get("current_period_end"))
        if period_end:
            try:
                values["current_period_end"] = datetime.fromtimestamp(period_end, tz=UTC)
            except (OverflowError, OSError, ValueError):
                logger.warning("Stripe event %s has out-of-range current_period_end %s", event_id, period_end)
        return await self._apply(
            data_object, event_id, event_type, created, values, AuditAction.SUBSCRIPTION_CANCELED
        )

    async def _apply(
        self,
        data_object: dict[str, Any],
        event_id: str,
        event_type: str,
        created: int,
        values: dict[str, Any],
        audit_action: str,
    ) -> dict[str, str]:
        metadata = data_object.get("metadata")
        tenant_id = metadata.get("tenant_id") if isinstance(metadata, dict) else None
        if not tenant_id:
            logger.warning("Stripe event %s (%s) carries no tenant_id metadata", event_id, event_type)
            return {"status": "ignored", "reason": "missing_tenant"}

        repo = SubscriptionRepository(self._session, tenant_id=tenant_id)
        current = await repo.get()
        if current is None:
            logger.warning("Stripe event %s references unknown tenant %s", event_id, tenant_id)
            return {"status": "ignored", "reason": "unknown_tenant"}

        previous_event_id = current.last_event_id
        if not await repo.apply_event(event_id=event_id, event_created=created, **values):
            logger.info(
                "Ignoring stale Stripe event %s for tenant %s (created=%d < last=%s)",
                event_id,
                tenant_id,
                created,
                current.last_event_created,
            )
            return {"status": "ignored", "reason": "stale_event"}

        if previous_event_id != event_id:
            audit = AuditService(self._session, tenant_id=tenant_id, actor="stripe")
            await audit.log(
                audit_action,
                "subscription",
                str(current.id),
                stripe_event_id=event_id,
                stripe_event_type=event_type,
                status=values["status"],
            )
        logger.info("Applied Stripe event %s (%s) to tenant %s", event_id, event_type, tenant_id)
        return {"status": "processed"}
