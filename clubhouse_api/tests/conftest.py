"""Shared fixtures for Clubhouse API tests.

Every test gets its own on-disk SQLite database, a recording email client,
an in-memory identity provider and a mocked Stripe client, wired into a
fresh application through dependency overrides.  Requests go through the
full middleware stack via an httpx ``ASGITransport``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import pytest_asyncio
from clubhouse_core.state.sqlite_adapter import create_local_tables
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from clubhouse_api.config import APISettings
from clubhouse_api.dependencies import (
    dispose_engine,
    get_email_client,
    get_identity_factory,
    get_session_factory,
    get_settings,
    init_engine,
)
from clubhouse_api.main import create_app
from clubhouse_api.security import SessionTokenManager
from clubhouse_api.services.billing_service import BillingService
from clubhouse_api.services.identity import InMemoryIdentityProvider

TEST_SESSION_SECRET = "test-session-secret-for-clubhouse-tests"
TEST_WEBHOOK_SECRET = "whsec_test_clubhouse"
TEST_CUSTOMER_ID = "cus_test123"
TEST_CHECKOUT_URL = "https://checkout.stripe.com/c/pay/cs_test_123"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path: Path) -> APISettings:
    """Return settings pointing at a per-test SQLite file."""
    return APISettings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'clubhouse.db'}",
        app_base_url="https://app.clubhouse.example",
        cors_origins=["http://localhost:3000"],
        session_secret=TEST_SESSION_SECRET,
        stripe_secret_key="sk_test_xxx",
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        stripe_price_id_paid="price_paid",
        email_api_key="",
        rate_limit_enabled=False,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def engine(test_settings: APISettings):
    """Initialise the global engine on the per-test database."""
    db_engine = init_engine(test_settings)
    await create_local_tables(db_engine)
    yield db_engine
    await dispose_engine()


@pytest.fixture()
def session_factory(engine):
    """Session factory for inspecting or seeding state outside a request."""
    return get_session_factory()


@pytest.fixture()
def count_rows(session_factory) -> Callable[..., Awaitable[int]]:
    """Return ``await count_rows(Table, column=value, ...)``."""

    async def _count(table: Any, **filters: Any) -> int:
        stmt = select(func.count()).select_from(table)
        for column, value in filters.items():
            stmt = stmt.where(getattr(table, column) == value)
        async with session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    return _count


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class RecordingEmailClient:
    """Stand-in for :class:`EmailClient` that records every message."""

    enabled = True

    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    async def send_verify_email(self, to: str, link: str) -> bool:
        self.sent.append({"kind": "verify", "to": to, "link": link})
        return True

    async def send_invite_email(self, to: str, link: str, role: str, tenant_name: str) -> bool:
        self.sent.append({"kind": "invite", "to": to, "link": link, "role": role, "tenant_name": tenant_name})
        return True

    async def send_welcome_email(self, to: str, tenant_name: str) -> bool:
        self.sent.append({"kind": "welcome", "to": to, "tenant_name": tenant_name})
        return True

    async def close(self) -> None:
        return None

    def of_kind(self, kind: str) -> list[dict[str, str]]:
        return [m for m in self.sent if m["kind"] == kind]

    def last_token(self, kind: str) -> str:
        """Return the ``token`` query parameter of the newest *kind* message."""
        link = self.of_kind(kind)[-1]["link"]
        return parse_qs(urlsplit(link).query)["token"][0]


@pytest.fixture()
def email_outbox() -> RecordingEmailClient:
    return RecordingEmailClient()


@pytest.fixture()
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture()
def stripe_mock():
    """Patch the lazily imported Stripe module with a MagicMock.

    ``Customer.create`` and ``checkout.Session.create`` succeed by default;
    tests set ``side_effect`` to simulate provider failures.  Webhook
    signature verification still uses the real library.
    """
    mock = MagicMock()
    mock.Customer.create.return_value = {"id": TEST_CUSTOMER_ID}
    mock.checkout.Session.create.return_value = {"url": TEST_CHECKOUT_URL}
    with patch.object(BillingService, "_get_stripe", return_value=mock):
        yield mock


# ---------------------------------------------------------------------------
# Application and client
# ---------------------------------------------------------------------------


@pytest.fixture()
def app(
    test_settings: APISettings,
    engine,
    email_outbox: RecordingEmailClient,
    identity: InMemoryIdentityProvider,
    stripe_mock: MagicMock,
):
    """Create the application with test collaborators injected."""
    application = create_app(test_settings)
    application.dependency_overrides[get_settings] = lambda: test_settings
    application.dependency_overrides[get_email_client] = lambda: email_outbox
    application.dependency_overrides[get_identity_factory] = lambda: (lambda session: identity)
    return application


@pytest_asyncio.fixture()
async def client(app) -> AsyncClient:
    """Yield an async httpx client bound to the test app (no default auth)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers() -> Callable[..., dict[str, str]]:
    """Return a helper that builds Bearer headers for an arbitrary principal."""
    manager = SessionTokenManager(TEST_SESSION_SECRET)

    def _headers(user_id: str = "user-1", tenant_id: str = "tenant-1", role: str = "owner") -> dict[str, str]:
        token = manager.issue(sub=user_id, tenant_id=tenant_id, role=role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def onboard(client: AsyncClient) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Return a helper that onboards a tenant and returns the response body.

    The body includes ``session_token``; ``headers`` holds ready-made
    owner auth headers for it.
    """

    async def _onboard(
        org_name: str = "Acme FC",
        contact_email: str = "owner@acmefc.org",
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        resp = await client.post(
            "/api/v1/get-started",
            json={
                "org_name": org_name,
                "contact_name": "Pat Owner",
                "contact_email": contact_email,
                "city": "Springfield",
                "state": "IL",
                "country": "US",
                "password": "correct-horse-battery",
            },
            headers=headers or {},
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        body["headers"] = bearer(body["session_token"])
        return body

    return _onboard


@pytest.fixture()
def invite(client: AsyncClient, email_outbox: RecordingEmailClient) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Return a helper that issues an invite and returns it with its token."""

    async def _invite(headers: dict[str, str], email: str, role: str = "coach") -> dict[str, Any]:
        resp = await client.post("/api/v1/invites", json={"email": email, "role": role}, headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        body["token"] = email_outbox.last_token("invite")
        return body

    return _invite
