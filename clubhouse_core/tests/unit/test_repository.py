"""Unit tests for the state repositories.

These tests run against a real SQLite database file (via aiosqlite) so that
uniqueness constraints, conditional updates and cross-session visibility
behave as they do in production.

Covers:
- Single-use token consumption, including concurrent redemption
- Expiry and revocation
- Tenant slug/code lookups and join-code rotation
- Membership uniqueness and idempotent membership creation
- Parent-player link idempotency and append-only consent
- Subscription event-ordering guard
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import bcrypt
import pytest
import pytest_asyncio
from clubhouse_core.state.repository import (
    ConsentRepository,
    InviteRepository,
    JoinRequestRepository,
    MembershipRepository,
    ParentLinkRepository,
    SubscriptionRepository,
    TenantRepository,
    UserRepository,
)
from clubhouse_core.state.sqlite_adapter import create_local_tables, get_local_engine
from clubhouse_core.state.tables import InviteTable, TenantTable
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    """Provide a session factory bound to a fresh on-disk SQLite database."""
    engine = get_local_engine(tmp_path / "state.db")
    await create_local_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]):
    async with session_factory() as s:
        yield s


async def _make_tenant(session: AsyncSession, name: str = "Acme FC", slug: str = "acme-fc", code: str = "ABCD2345"):
    return await TenantRepository(session).create(
        name=name,
        slug=slug,
        tenant_code=code,
        contact_name="Pat Doe",
        contact_email="Pat@AcmeFC.org",
    )


async def _make_invite(
    session: AsyncSession,
    *,
    token: str = "tok-1",
    expires_at: datetime | None = None,
    tenant_id: str = "t1",
) -> InviteTable:
    return await InviteRepository(session).create(
        tenant_id=tenant_id,
        email="Kid@AcmeFC.org",
        role="player",
        token=token,
        expires_at=expires_at or datetime.now(UTC) + timedelta(days=7),
        invited_by_user_id="owner-1",
    )


# ---------------------------------------------------------------------------
# Single-use tokens
# ---------------------------------------------------------------------------


class TestTokenConsumption:
    @pytest.mark.asyncio
    async def test_consume_marks_used_and_returns_row(self, session: AsyncSession) -> None:
        invite = await _make_invite(session)
        repo = InviteRepository(session)

        row = await repo.consume("tok-1")
        assert row is not None
        assert row.id == invite.id
        assert row.used_at is not None
        assert row.email == "kid@acmefc.org"

    @pytest.mark.asyncio
    async def test_second_consume_returns_none(self, session: AsyncSession) -> None:
        await _make_invite(session)
        repo = InviteRepository(session)

        assert await repo.consume("tok-1") is not None
        assert await repo.consume("tok-1") is None

    @pytest.mark.asyncio
    async def test_unknown_token_returns_none(self, session: AsyncSession) -> None:
        assert await InviteRepository(session).consume("nope") is None

    @pytest.mark.asyncio
    async def test_expired_token_never_consumes(self, session: AsyncSession) -> None:
        await _make_invite(session, expires_at=datetime.now(UTC) - timedelta(seconds=1))
        repo = InviteRepository(session)

        assert await repo.consume("tok-1") is None
        row = await repo.get_by_token("tok-1")
        assert row.used_at is None

    @pytest.mark.asyncio
    async def test_expire_revokes_live_token(self, session: AsyncSession) -> None:
        invite = await _make_invite(session)
        repo = InviteRepository(session)

        assert await repo.expire(invite.id) is True
        assert await repo.consume("tok-1") is None
        refreshed = await repo.get_by_token("tok-1")
        assert refreshed.expires_at <= datetime.now(UTC)

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_have_one_winner(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as s:
            await _make_invite(s, token="race")
            await s.commit()

        async def redeem() -> bool:
            async with session_factory() as s:
                row = await InviteRepository(s).consume("race")
                await s.commit()
                return row is not None

        results = await asyncio.gather(*(redeem() for _ in range(5)))
        assert sorted(results) == [False, False, False, False, True]

        async with session_factory() as s:
            row = await InviteRepository(s).get_by_token("race")
            assert row.used_at is not None

    @pytest.mark.asyncio
    async def test_list_pending_excludes_used_and_expired(self, session: AsyncSession) -> None:
        await _make_invite(session, token="live")
        await _make_invite(session, token="used")
        await _make_invite(session, token="old", expires_at=datetime.now(UTC) - timedelta(hours=1))
        await _make_invite(session, token="other-tenant", tenant_id="t2")
        repo = InviteRepository(session)
        await repo.consume("used")

        pending = await repo.list_pending("t1")
        assert [i.token for i in pending] == ["live"]

    @pytest.mark.asyncio
    async def test_get_for_tenant_is_scoped(self, session: AsyncSession) -> None:
        invite = await _make_invite(session)
        repo = InviteRepository(session)

        assert (await repo.get_for_tenant(invite.id, "t1")).id == invite.id
        assert await repo.get_for_tenant(invite.id, "t2") is None


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TestTenantRepository:
    @pytest.mark.asyncio
    async def test_create_normalizes_contact_email(self, session: AsyncSession) -> None:
        tenant = await _make_tenant(session)
        assert tenant.contact_email == "pat@acmefc.org"
        assert tenant.status == "active"
        assert tenant.requires_approval is False

    @pytest.mark.asyncio
    async def test_get_by_code_is_case_insensitive(self, session: AsyncSession) -> None:
        tenant = await _make_tenant(session)
        repo = TenantRepository(session)

        found = await repo.get_by_code(" abcd2345 ")
        assert found is not None and found.id == tenant.id

    @pytest.mark.asyncio
    async def test_slug_and_code_exist(self, session: AsyncSession) -> None:
        await _make_tenant(session)
        repo = TenantRepository(session)

        assert await repo.slug_exists("acme-fc") is True
        assert await repo.slug_exists("acme-fc-2") is False
        assert await repo.code_exists("ABCD2345") is True

    @pytest.mark.asyncio
    async def test_taken_slug_is_skipped(self, session: AsyncSession) -> None:
        await _make_tenant(session)
        assert await _make_tenant(session, code="ZZZZ2345") is None

    @pytest.mark.asyncio
    async def test_taken_code_is_skipped(self, session: AsyncSession) -> None:
        await _make_tenant(session)
        assert await _make_tenant(session, slug="acme-fc-2") is None
        assert await TenantRepository(session).slug_exists("acme-fc-2") is False

    @pytest.mark.asyncio
    async def test_rotation_retires_old_code(self, session: AsyncSession) -> None:
        tenant = await _make_tenant(session)
        repo = TenantRepository(session)

        assert await repo.update_code(tenant.id, "WXYZ6789") is True
        assert await repo.get_by_code("ABCD2345") is None
        found = await repo.get_by_code("wxyz6789")
        assert found is not None and found.id == tenant.id

    @pytest.mark.asyncio
    async def test_update_code_unknown_tenant(self, session: AsyncSession) -> None:
        assert await TenantRepository(session).update_code("missing", "ABCDEFGH") is False

    @pytest.mark.asyncio
    async def test_update_code_refuses_a_code_held_elsewhere(self, session: AsyncSession) -> None:
        tenant = await _make_tenant(session)
        await _make_tenant(session, name="Riverside", slug="riverside", code="WXYZ6789")
        repo = TenantRepository(session)

        assert await repo.update_code(tenant.id, "WXYZ6789") is False
        found = await repo.get_by_code("ABCD2345")
        assert found is not None and found.id == tenant.id

    @pytest.mark.asyncio
    async def test_update_policy_normalizes_domains(self, session: AsyncSession) -> None:
        tenant = await _make_tenant(session)
        repo = TenantRepository(session)

        await repo.update_policy(tenant.id, requires_approval=True, allowed_email_domains=["@AcmeFC.org "])
        refreshed = (
            await session.execute(
                select(TenantTable).where(TenantTable.id == tenant.id).execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert refreshed.requires_approval is True
        assert refreshed.allowed_email_domains == ["acmefc.org"]


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


class TestMembershipRepository:
    @pytest.mark.asyncio
    async def test_duplicate_binding_raises_and_keeps_original(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as s:
            await MembershipRepository(s).create("t1", "u1", "coach")
            await s.commit()

        async with session_factory() as s:
            with pytest.raises(IntegrityError):
                await MembershipRepository(s).create("t1", "u1", "player")
            await s.rollback()

        async with session_factory() as s:
            membership = await MembershipRepository(s).get("t1", "u1")
            assert membership.role == "coach"

    @pytest.mark.asyncio
    async def test_create_if_absent_never_overwrites(self, session: AsyncSession) -> None:
        repo = MembershipRepository(session)
        assert await repo.create_if_absent("t1", "u1", "parent") is True
        assert await repo.create_if_absent("t1", "u1", "coach") is False

        membership = await repo.get("t1", "u1")
        assert membership.role == "parent"
        assert await repo.count_for_tenant("t1") == 1

    @pytest.mark.asyncio
    async def test_list_for_user_spans_tenants(self, session: AsyncSession) -> None:
        repo = MembershipRepository(session)
        await repo.create("t1", "u1", "owner")
        await repo.create("t2", "u1", "parent")
        await repo.create("t2", "u2", "player")

        memberships = await repo.list_for_user("u1")
        assert {(m.tenant_id, m.role) for m in memberships} == {("t1", "owner"), ("t2", "parent")}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUserRepository:
    @pytest.mark.asyncio
    async def test_password_is_hashed(self, session: AsyncSession) -> None:
        repo = UserRepository(session)
        user = await repo.create("Pat@AcmeFC.org", "correct horse", "Pat")

        assert user.email == "pat@acmefc.org"
        assert user.password_hash != "correct horse"
        assert bcrypt.checkpw(b"correct horse", user.password_hash.encode("utf-8"))
        assert (await repo.get_by_email("PAT@acmefc.org")).id == user.id

    @pytest.mark.asyncio
    async def test_mark_verified(self, session: AsyncSession) -> None:
        repo = UserRepository(session)
        user = await repo.create("pat@acmefc.org", "pw-123456")

        assert await repo.mark_verified(user.id) is True
        assert await repo.mark_verified("missing") is False


# ---------------------------------------------------------------------------
# Consent, links and join requests
# ---------------------------------------------------------------------------


class TestGuardianship:
    @pytest.mark.asyncio
    async def test_link_is_idempotent(self, session: AsyncSession) -> None:
        repo = ParentLinkRepository(session, tenant_id="t1")

        assert await repo.link("parent-1", "player-1") is True
        assert await repo.link("parent-1", "player-1") is False
        assert len(await repo.list_for_player("player-1")) == 1

    @pytest.mark.asyncio
    async def test_links_are_tenant_scoped(self, session: AsyncSession) -> None:
        await ParentLinkRepository(session, tenant_id="t1").link("parent-1", "player-1")
        assert await ParentLinkRepository(session, tenant_id="t2").link("parent-1", "player-1") is True
        assert len(await ParentLinkRepository(session, tenant_id="t2").list_for_player("player-1")) == 1

    @pytest.mark.asyncio
    async def test_consent_records_are_append_only(self, session: AsyncSession) -> None:
        repo = ConsentRepository(session, tenant_id="t1")
        for _ in range(2):
            await repo.create(
                minor_user_id="player-1",
                parent_user_id="parent-1",
                parent_email="Mom@Mail.com",
                method="parent_email",
                policy_version="2024-01",
                context={"channel": "invite"},
            )

        records = await repo.list_for_minor("player-1")
        assert len(records) == 2
        assert records[0].parent_email == "mom@mail.com"
        assert records[0].context == {"channel": "invite"}

    @pytest.mark.asyncio
    async def test_join_request_pending(self, session: AsyncSession) -> None:
        repo = JoinRequestRepository(session, tenant_id="t1")
        request = await repo.create(email="Kid@Mail.com", role="player", profile={"name": "Kid"})

        pending = await repo.list_pending()
        assert [r.id for r in pending] == [request.id]
        assert pending[0].email == "kid@mail.com"


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestSubscriptionRepository:
    @pytest.mark.asyncio
    async def test_create_opens_free_inactive(self, session: AsyncSession) -> None:
        repo = SubscriptionRepository(session, tenant_id="t1")
        row = await repo.create("cus_123")

        assert row.plan_key == "free"
        assert row.status == "inactive"
        assert row.last_event_created is None

    @pytest.mark.asyncio
    async def test_only_one_row_per_tenant(self, session: AsyncSession) -> None:
        repo = SubscriptionRepository(session, tenant_id="t1")
        await repo.create("cus_123")
        with pytest.raises(IntegrityError):
            await repo.create("cus_456")

    @pytest.mark.asyncio
    async def test_apply_event_sets_absolute_state(self, session: AsyncSession) -> None:
        repo = SubscriptionRepository(session, tenant_id="t1")
        await repo.create("cus_123")

        assert await repo.apply_event(event_id="evt_1", event_created=100, plan_key="paid", status="active")
        row = await repo.get()
        assert (row.plan_key, row.status, row.last_event_id, row.last_event_created) == (
            "paid",
            "active",
            "evt_1",
            100,
        )

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, session: AsyncSession) -> None:
        repo = SubscriptionRepository(session, tenant_id="t1")
        await repo.create("cus_123")

        for _ in range(2):
            assert await repo.apply_event(event_id="evt_1", event_created=100, status="active")
        row = await repo.get()
        assert row.status == "active"
        assert row.last_event_id == "evt_1"

    @pytest.mark.asyncio
    async def test_stale_event_is_skipped(self, session: AsyncSession) -> None:
        repo = SubscriptionRepository(session, tenant_id="t1")
        await repo.create("cus_123")

        assert await repo.apply_event(event_id="evt_new", event_created=200, status="canceled")
        assert await repo.apply_event(event_id="evt_old", event_created=100, status="active") is False

        row = await repo.get()
        assert row.status == "canceled"
        assert row.last_event_id == "evt_new"

    @pytest.mark.asyncio
    async def test_apply_event_without_row(self, session: AsyncSession) -> None:
        repo = SubscriptionRepository(session, tenant_id="missing")
        assert await repo.apply_event(event_id="evt_1", event_created=1, status="active") is False

    @pytest.mark.asyncio
    async def test_rows_are_not_shared_between_tenants(self, session: AsyncSession) -> None:
        await SubscriptionRepository(session, tenant_id="t1").create("cus_1")
        await SubscriptionRepository(session, tenant_id="t2").create("cus_2")
        await SubscriptionRepository(session, tenant_id="t1").apply_event(
            event_id="evt_1", event_created=1, status="active"
        )

        assert (await SubscriptionRepository(session, tenant_id="t2").get()).status == "inactive"
