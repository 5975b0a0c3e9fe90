"""Repository classes providing CRUD access to the Clubhouse state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
(or execute a statement directly) so that generated defaults are populated;
the caller is responsible for calling ``session.commit()`` (or relying on the
``get_session`` context manager / request dependency).
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from clubhouse_core.ids import new_id, normalize_tenant_code
from clubhouse_core.state.database import get_dialect_name
from clubhouse_core.state.tables import (
    AuditLogTable,
    ConsentRecordTable,
    EmailVerificationTable,
    InviteTable,
    JoinRequestTable,
    MembershipTable,
    ParentPlayerLinkTable,
    SubscriptionTable,
    TenantTable,
    UserTable,
)

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str] | None = None,
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to insert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names of the unique constraint used for conflict detection.
        When omitted, a conflict on any unique constraint skips the row.

    Returns
    -------
    The execution result from ``session.execute()``; ``rowcount`` is ``1``
    when the row was inserted and ``0`` when it already existed.
    """
    stmt: Any
    if "postgresql" in get_dialect_name(session):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# UserRepository
# ---------------------------------------------------------------------------


class UserRepository:
    """CRUD operations for the ``users`` table.

    Password hashing uses bcrypt.  Emails are stored lower-cased and are
    globally unique: one person has one account across every tenant.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _hash_password(plaintext: str) -> str:
        """Hash a plaintext password with bcrypt."""
        import bcrypt

        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    async def create(self, email: str, password: str, display_name: str = "") -> UserTable:
        """Create a new user with a hashed password."""
        row = UserTable(
            id=new_id(),
            email=_normalize_email(email),
            password_hash=self._hash_password(password),
            display_name=display_name.strip(),
            email_verified=False,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_email(self, email: str) -> UserTable | None:
        """Fetch a user by email address (case-insensitive)."""
        stmt = select(UserTable).where(UserTable.email == _normalize_email(email))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> UserTable | None:
        """Fetch a user by primary key."""
        result = await self._session.execute(select(UserTable).where(UserTable.id == user_id))
        return result.scalar_one_or_none()

    async def mark_verified(self, user_id: str) -> bool:
        """Set ``email_verified`` for *user_id*.  Returns ``False`` if absent."""
        stmt = update(UserTable).where(UserTable.id == user_id).values(email_verified=True)
        result = await self._session.execute(stmt)
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TenantRepository:
    """CRUD operations for the ``tenants`` table.

    Tenants are a global namespace, so this repository is not tenant-scoped.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        name: str,
        slug: str,
        tenant_code: str,
        contact_name: str,
        contact_email: str,
        city: str | None = None,
        state: str | None = None,
        country: str | None = None,
    ) -> TenantTable | None:
        """Insert a new tenant row unless its slug or join-code is taken.

        The uniqueness check happens in the ``INSERT`` itself, so a tenant
        committed concurrently under the same slug or code makes this call
        return ``None`` instead of raising.
        """
        tenant_id = new_id()
        result = await _dialect_upsert_nothing(
            self._session,
            TenantTable,
            {
                "id": tenant_id,
                "name": name.strip(),
                "slug": slug,
                "tenant_code": tenant_code,
                "contact_name": contact_name.strip(),
                "contact_email": _normalize_email(contact_email),
                "city": city,
                "state": state,
                "country": country,
                "status": "active",
                "requires_approval": False,
            },
        )
        if result.rowcount != 1:
            return None
        return await self.get(tenant_id)

    async def get(self, tenant_id: str) -> TenantTable | None:
        result = await self._session.execute(select(TenantTable).where(TenantTable.id == tenant_id))
        return result.scalar_one_or_none()

    async def get_by_code(self, code: str) -> TenantTable | None:
        """Resolve a join-code to its tenant (case-insensitive)."""
        stmt = select(TenantTable).where(TenantTable.tenant_code == normalize_tenant_code(code))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def slug_exists(self, slug: str) -> bool:
        result = await self._session.execute(select(TenantTable.id).where(TenantTable.slug == slug).limit(1))
        return result.scalar_one_or_none() is not None

    async def code_exists(self, code: str) -> bool:
        result = await self._session.execute(
            select(TenantTable.id).where(TenantTable.tenant_code == code).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def update_code(self, tenant_id: str, new_code: str) -> bool:
        """Replace the tenant's join-code if no tenant holds *new_code*.

        Returns ``False`` when the tenant is absent or the code is taken.
        """
        holder = aliased(TenantTable)
        taken = select(holder.id).where(holder.tenant_code == new_code).exists()
        stmt = (
            update(TenantTable)
            .where(TenantTable.id == tenant_id, ~taken)
            .values(tenant_code=new_code, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def update_policy(
        self,
        tenant_id: str,
        *,
        requires_approval: bool | None = None,
        allowed_email_domains: list[str] | None = None,
    ) -> bool:
        """Update admission policy flags; ``None`` leaves a field unchanged."""
        values: dict[str, Any] = {"updated_at": datetime.now(UTC)}
        if requires_approval is not None:
            values["requires_approval"] = requires_approval
        if allowed_email_domains is not None:
            values["allowed_email_domains"] = [d.strip().lower().lstrip("@") for d in allowed_email_domains]
        stmt = (
            update(TenantTable)
            .where(TenantTable.id == tenant_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_by_ids(self, tenant_ids: list[str]) -> list[TenantTable]:
        if not tenant_ids:
            return []
        stmt = select(TenantTable).where(TenantTable.id.in_(tenant_ids)).order_by(TenantTable.name)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# MembershipRepository
# ---------------------------------------------------------------------------


class MembershipRepository:
    """CRUD operations for the ``tenant_users`` table.

    Lookups by user span tenants, so the tenant is passed per call rather
    than bound at construction time.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, tenant_id: str, user_id: str, role: str) -> MembershipTable:
        """Insert a membership row.

        Raises :class:`sqlalchemy.exc.IntegrityError` when the
        ``(tenant_id, user_id)`` pair already exists.
        """
        row = MembershipTable(id=new_id(), tenant_id=tenant_id, user_id=user_id, role=role)
        self._session.add(row)
        await self._session.flush()
        return row

    async def create_if_absent(self, tenant_id: str, user_id: str, role: str) -> bool:
        """Insert a membership unless the user already holds one in the tenant.

        Returns ``True`` when a row was inserted.  An existing binding is
        left untouched whatever its role.
        """
        result = await _dialect_upsert_nothing(
            self._session,
            MembershipTable,
            {
                "id": new_id(),
                "tenant_id": tenant_id,
                "user_id": user_id,
                "role": role,
                "created_at": datetime.now(UTC),
            },
            index_elements=["tenant_id", "user_id"],
        )
        return result.rowcount == 1

    async def get(self, tenant_id: str, user_id: str) -> MembershipTable | None:
        stmt = select(MembershipTable).where(
            MembershipTable.tenant_id == tenant_id,
            MembershipTable.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[MembershipTable]:
        """Return every membership held by *user_id*, oldest first."""
        stmt = (
            select(MembershipTable)
            .where(MembershipTable.user_id == user_id)
            .order_by(MembershipTable.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_tenant(self, tenant_id: str) -> int:
        stmt = select(func.count()).select_from(MembershipTable).where(MembershipTable.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()


# ---------------------------------------------------------------------------
# Single-use token repositories
# ---------------------------------------------------------------------------


class _SingleUseTokenRepository:
    """Shared lifecycle for single-use, expiring token tables.

    A token is live while ``used_at IS NULL AND expires_at > now``.  Every
    state check reduces to that one predicate.
    """

    _table: Any

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_token(self, token: str) -> Any:
        """Fetch a row by token value, bypassing any cached identity."""
        stmt = (
            select(self._table)
            .where(self._table.token == token)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, row_id: str) -> Any:
        stmt = select(self._table).where(self._table.id == row_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def consume(self, token: str, *, now: datetime | None = None) -> Any:
        """Atomically mark *token* used if it is still live.

        Issues a single conditional ``UPDATE`` and judges success by the
        affected-row count, so concurrent callers racing on the same token
        produce exactly one winner.  Call this before any other statement
        in the transaction so SQLite acquires its write lock through the
        busy handler instead of failing on a stale read snapshot.

        Returns the consumed row, or ``None`` if nothing was consumed.
        """
        now = now or datetime.now(UTC)
        stmt = (
            update(self._table)
            .where(
                self._table.token == token,
                self._table.used_at.is_(None),
                self._table.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.get_by_token(token)

    async def expire(self, row_id: str, *, now: datetime | None = None) -> bool:
        """Force a token's expiry to *now*.  Returns ``False`` if absent."""
        stmt = (
            update(self._table)
            .where(self._table.id == row_id)
            .values(expires_at=now or datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class InviteRepository(_SingleUseTokenRepository):
    """CRUD operations for the ``invites`` table."""

    _table = InviteTable

    async def create(
        self,
        *,
        tenant_id: str,
        email: str,
        role: str,
        token: str,
        expires_at: datetime,
        invited_by_user_id: str | None,
        channel: str = "email",
    ) -> InviteTable:
        row = InviteTable(
            id=new_id(),
            tenant_id=tenant_id,
            email=_normalize_email(email),
            role=role,
            token=token,
            expires_at=expires_at,
            invited_by_user_id=invited_by_user_id,
            channel=channel,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_for_tenant(self, invite_id: str, tenant_id: str) -> InviteTable | None:
        """Fetch an invite only if it belongs to *tenant_id*."""
        stmt = (
            select(InviteTable)
            .where(InviteTable.id == invite_id, InviteTable.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_pending(self, tenant_id: str, *, now: datetime | None = None) -> list[InviteTable]:
        now = now or datetime.now(UTC)
        stmt = (
            select(InviteTable)
            .where(
                InviteTable.tenant_id == tenant_id,
                InviteTable.used_at.is_(None),
                InviteTable.expires_at > now,
            )
            .order_by(InviteTable.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class EmailVerificationRepository(_SingleUseTokenRepository):
    """CRUD operations for the ``email_verifications`` table."""

    _table = EmailVerificationTable

    async def create(self, *, user_id: str, email: str, token: str, expires_at: datetime) -> EmailVerificationTable:
        row = EmailVerificationTable(
            id=new_id(),
            user_id=user_id,
            email=_normalize_email(email),
            token=token,
            expires_at=expires_at,
        )
        self._session.add(row)
        await self._session.flush()
        return row


# ---------------------------------------------------------------------------
# SubscriptionRepository
# ---------------------------------------------------------------------------


class SubscriptionRepository:
    """Billing state for one tenant (``subscriptions`` table)."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get(self) -> SubscriptionTable | None:
        stmt = (
            select(SubscriptionTable)
            .where(SubscriptionTable.tenant_id == self._tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, stripe_customer_id: str) -> SubscriptionTable:
        """Open the tenant's billing record on the free plan, inactive."""
        row = SubscriptionTable(
            tenant_id=self._tenant_id,
            stripe_customer_id=stripe_customer_id,
            plan_key="free",
            status="inactive",
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def apply_event(self, *, event_id: str, event_created: int, **values: Any) -> bool:
        """Set the subscription to an absolute state reported by a webhook.

        The write is skipped when a strictly newer event has already been
        applied.  Re-applying the same event (equal ``created``) rewrites the
        same values, so redelivery is idempotent.

        Returns ``True`` when the row was updated; ``False`` when the tenant
        has no subscription or the event is stale.
        """
        stmt = (
            update(SubscriptionTable)
            .where(
                SubscriptionTable.tenant_id == self._tenant_id,
                or_(
                    SubscriptionTable.last_event_created.is_(None),
                    SubscriptionTable.last_event_created <= event_created,
                ),
            )
            .values(
                **values,
                last_event_id=event_id,
                last_event_created=event_created,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Consent and guardianship
# ---------------------------------------------------------------------------


class ConsentRepository:
    """Append-only writes to ``consent_records``."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def create(
        self,
        *,
        minor_user_id: str,
        parent_user_id: str,
        parent_email: str | None,
        method: str,
        policy_version: str,
        context: dict[str, Any] | None = None,
    ) -> ConsentRecordTable:
        row = ConsentRecordTable(
            id=new_id(),
            tenant_id=self._tenant_id,
            minor_user_id=minor_user_id,
            parent_user_id=parent_user_id,
            parent_email=_normalize_email(parent_email) if parent_email else None,
            method=method,
            policy_version=policy_version,
            context=context,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_for_minor(self, minor_user_id: str) -> list[ConsentRecordTable]:
        stmt = (
            select(ConsentRecordTable)
            .where(
                ConsentRecordTable.tenant_id == self._tenant_id,
                ConsentRecordTable.minor_user_id == minor_user_id,
            )
            .order_by(ConsentRecordTable.captured_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class ParentLinkRepository:
    """Idempotent writes to ``parent_player_links``."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def link(self, parent_user_id: str, player_user_id: str) -> bool:
        """Insert the link if absent.  Returns ``True`` when newly created."""
        result = await _dialect_upsert_nothing(
            self._session,
            ParentPlayerLinkTable,
            {
                "id": new_id(),
                "tenant_id": self._tenant_id,
                "parent_user_id": parent_user_id,
                "player_user_id": player_user_id,
                "created_at": datetime.now(UTC),
            },
            index_elements=["tenant_id", "parent_user_id", "player_user_id"],
        )
        return result.rowcount == 1

    async def list_for_player(self, player_user_id: str) -> list[ParentPlayerLinkTable]:
        stmt = select(ParentPlayerLinkTable).where(
            ParentPlayerLinkTable.tenant_id == self._tenant_id,
            ParentPlayerLinkTable.player_user_id == player_user_id,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# JoinRequestRepository
# ---------------------------------------------------------------------------


class JoinRequestRepository:
    """Pending join requests for approval-gated tenants."""

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def create(
        self,
        *,
        email: str,
        role: str,
        parent_email: str | None = None,
        profile: dict[str, Any] | None = None,
    ) -> JoinRequestTable:
        row = JoinRequestTable(
            id=new_id(),
            tenant_id=self._tenant_id,
            email=_normalize_email(email),
            role=role,
            parent_email=_normalize_email(parent_email) if parent_email else None,
            profile=profile,
            status="pending",
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def list_pending(self) -> list[JoinRequestTable]:
        stmt = (
            select(JoinRequestTable)
            .where(JoinRequestTable.tenant_id == self._tenant_id, JoinRequestTable.status == "pending")
            .order_by(JoinRequestTable.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# AuditRepository
# ---------------------------------------------------------------------------


class AuditRepository:
    """Append-only audit log repository with hash-chaining for tamper evidence.

    Each audit entry is linked to its predecessor via ``previous_hash``,
    forming a per-tenant tamper-evident chain.  ``entry_hash`` is a SHA-256
    digest of the entry's content fields concatenated with the previous
    hash, so modifying any stored row breaks the chain for every later entry.
    """

    def __init__(self, session: AsyncSession, *, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    @staticmethod
    def _compute_hash(
        tenant_id: str,
        actor: str,
        event_type: str,
        target_type: str | None,
        target_id: str | None,
        metadata: dict | None,
        previous_hash: str | None,
        created_at: datetime,
    ) -> str:
        """Compute SHA-256 over the ``|``-joined content fields.

        ``None`` values hash as the empty string.
        """
        parts = [
            tenant_id,
            actor,
            event_type,
            target_type or "",
            target_id or "",
            json.dumps(metadata, sort_keys=True, default=str) if metadata else "",
            previous_hash or "",
            created_at.isoformat(),
        ]
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    def _chain_lock_id(self) -> int:
        """Stable 31-bit advisory lock key for this tenant's chain."""
        digest = hashlib.sha256(f"audit_chain_{self._tenant_id}".encode()).digest()
        return int.from_bytes(digest[:4], "big") & 0x7FFFFFFF

    async def get_latest_hash(self) -> str | None:
        """Return the entry_hash of this tenant's most recent entry."""
        stmt = (
            select(AuditLogTable.entry_hash)
            .where(AuditLogTable.tenant_id == self._tenant_id)
            .order_by(AuditLogTable.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def log(
        self,
        *,
        actor: str,
        event_type: str,
        target_type: str | None = None,
        target_id: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Append an audit entry and return its ID."""
        entry_id = new_id()
        now = datetime.now(UTC)

        # Serialise chain appends per tenant so two writers cannot both
        # link to the same previous_hash.  SQLite is single-writer already.
        if "postgresql" in get_dialect_name(self._session):
            await self._session.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": self._chain_lock_id()},
            )

        previous_hash = await self.get_latest_hash()
        entry_hash = self._compute_hash(
            tenant_id=self._tenant_id,
            actor=actor,
            event_type=event_type,
            target_type=target_type,
            target_id=target_id,
            metadata=metadata,
            previous_hash=previous_hash,
            created_at=now,
        )

        row = AuditLogTable(
            id=entry_id,
            tenant_id=self._tenant_id,
            actor=actor,
            event_type=event_type,
            target_type=target_type,
            target_id=target_id,
            metadata_json=metadata,
            previous_hash=previous_hash,
            entry_hash=entry_hash,
            created_at=now,
        )
        self._session.add(row)
        await self._session.flush()

        logger.info(
            "Audit: tenant=%s actor=%s event=%s target=%s/%s",
            self._tenant_id,
            actor,
            event_type,
            target_type or "-",
            target_id or "-",
        )
        return entry_id

    async def query(
        self,
        *,
        event_type: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogTable]:
        """Query this tenant's entries, most recent first.

        Omitted filters are not applied.
        """
        stmt = select(AuditLogTable).where(AuditLogTable.tenant_id == self._tenant_id)

        if event_type is not None:
            stmt = stmt.where(AuditLogTable.event_type == event_type)
        if target_type is not None:
            stmt = stmt.where(AuditLogTable.target_type == target_type)
        if target_id is not None:
            stmt = stmt.where(AuditLogTable.target_id == target_id)
        if since is not None:
            stmt = stmt.where(AuditLogTable.created_at >= since)

        stmt = stmt.order_by(AuditLogTable.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def verify_chain(self, *, limit: int = 1000) -> tuple[bool, int]:
        """Verify hash chain integrity over the oldest *limit* entries.

        Returns
        -------
        tuple[bool, int]
            ``(is_valid, entries_checked)``; ``is_valid`` is ``True`` only if
            every recomputed hash matches and every link is intact.
        """
        stmt = (
            select(AuditLogTable)
            .where(AuditLogTable.tenant_id == self._tenant_id)
            .order_by(AuditLogTable.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        entries = list(result.scalars().all())

        checked = 0
        previous_hash: str | None = None

        for entry in entries:
            if entry.previous_hash != previous_hash:
                logger.warning(
                    "Audit chain break at entry %s: expected previous_hash=%s, got=%s",
                    entry.id,
                    previous_hash,
                    entry.previous_hash,
                )
                return (False, checked)

            expected_hash = self._compute_hash(
                tenant_id=entry.tenant_id,
                actor=entry.actor,
                event_type=entry.event_type,
                target_type=entry.target_type,
                target_id=entry.target_id,
                metadata=entry.metadata_json,
                previous_hash=entry.previous_hash,
                created_at=entry.created_at,
            )
            if entry.entry_hash != expected_hash:
                logger.warning(
                    "Audit hash mismatch at entry %s: stored=%s, computed=%s",
                    entry.id,
                    entry.entry_hash,
                    expected_hash,
                )
                return (False, checked)

            previous_hash = entry.entry_hash
            checked += 1

        return (True, checked)
