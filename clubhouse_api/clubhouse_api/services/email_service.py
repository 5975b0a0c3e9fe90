"""Outbound transactional email.

Speaks a Resend-compatible JSON API (``POST {email_api_url}`` with
``from``/``to``/``subject``/``html``).  Sending is fire-and-forget: every
public method returns ``True`` on acceptance and ``False`` on any failure,
logging the reason.  Nothing here raises into the admission flow.
"""

from __future__ import annotations

import html
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class EmailClient:
    """Async client for the transactional email API.

    Parameters
    ----------
    api_url:
        Full URL of the send endpoint.
    api_key:
        Bearer key.  When empty, messages are logged and dropped.
    sender:
        ``From`` address.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), headers=headers)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send_verify_email(self, to: str, link: str) -> bool:
        body = (
            "<p>Welcome to Clubhouse.</p>"
            f'<p><a href="{html.escape(link, quote=True)}">Verify your email</a></p>'
        )
        return await self._send(to, "Verify your email", body)

    async def send_invite_email(self, to: str, link: str, role: str, tenant_name: str) -> bool:
        name = html.escape(tenant_name)
        body = (
            f"<p>You have been invited to join <strong>{name}</strong> as {html.escape(role)}.</p>"
            f'<p><a href="{html.escape(link, quote=True)}">Accept invitation</a></p>'
        )
        return await self._send(to, f"You're invited to join {tenant_name}", body)

    async def send_welcome_email(self, to: str, tenant_name: str) -> bool:
        body = f"<p>{html.escape(tenant_name)} is ready. Invite your coaches and families to get started.</p>"
        return await self._send(to, f"Welcome to Clubhouse, {tenant_name}", body)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _send(self, to: str, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.info("Email delivery disabled; dropping '%s' to %s", subject, to)
            return False

        payload: dict[str, Any] = {"from": self._sender, "to": [to], "subject": subject, "html": body}
        try:
            response = await self._client.post(self._api_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Email API returned %d for '%s' to %s: %s",
                exc.response.status_code,
                subject,
                to,
                exc.response.text[:500],
            )
            return False
        except httpx.RequestError as exc:
            logger.warning("Email API request for '%s' to %s failed: %s", subject, to, exc)
            return False
        return True
