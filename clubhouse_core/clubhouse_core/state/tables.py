"""SQLAlchemy 2.0 ORM table definitions for the Clubhouse state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for ``create_all`` in local mode and for
the repository layer.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Cross-dialect JSON type: uses JSONB on PostgreSQL, falls back to plain JSON
# (stored as TEXT) on SQLite.
_JsonType = JSONB().with_variant(JSON(), "sqlite")


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime column that always round-trips as UTC.

    SQLite stores datetimes without an offset and returns naive values;
    they are re-tagged as UTC on the way out.  Aware values are normalised
    to UTC on the way in so that string comparisons in SQLite stay ordered.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all Clubhouse tables."""


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserTable(Base):
    """Platform user accounts backing the database identity provider.

    A user may belong to many tenants through :class:`MembershipTable`.
    Passwords are stored as bcrypt hashes; the plaintext is never persisted.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_users_email", "email"),)


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantTable(Base):
    """An organization onboarded onto the platform.

    ``slug`` is immutable after creation.  ``tenant_code`` changes only via
    explicit rotation; the previous value stops resolving as soon as the
    rotating transaction commits.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    tenant_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    contact_name: Mapped[str] = mapped_column(String(256), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    allowed_email_domains: Mapped[list[str] | None] = mapped_column(_JsonType, nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_tenants_slug", "slug"),
        Index("ix_tenants_tenant_code", "tenant_code"),
    )


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


class MembershipTable(Base):
    """Binds one user to one tenant with exactly one role.

    The ``(tenant_id, user_id)`` unique constraint is the arbiter of
    concurrent admissions for the same user.
    """

    __tablename__ = "tenant_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_users_tenant_user"),
        Index("ix_tenant_users_tenant", "tenant_id"),
        Index("ix_tenant_users_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# Single-use tokens
# ---------------------------------------------------------------------------


class InviteTable(Base):
    """Invitation tokens scoped to (tenant, email, role).

    A row is redeemable only while ``used_at`` is NULL and ``expires_at``
    lies in the future.  Revocation forces ``expires_at`` into the past.
    """

    __tablename__ = "invites"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    invited_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="email")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_invites_tenant", "tenant_id"),
        Index("ix_invites_token", "token"),
    )


class EmailVerificationTable(Base):
    """Email-verification tokens scoped to (user, email)."""

    __tablename__ = "email_verifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_email_verifications_user", "user_id"),
        Index("ix_email_verifications_token", "token"),
    )


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class SubscriptionTable(Base):
    """Stripe customer and subscription state, exactly one row per tenant.

    ``last_event_created`` / ``last_event_id`` record the most recent
    webhook event applied so that strictly older redeliveries are ignored.
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    stripe_customer_id: Mapped[str] = mapped_column(String(256), nullable=False)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    plan_key: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="inactive")
    trial_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_event_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    last_event_created: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("ix_subscriptions_stripe_customer", "stripe_customer_id"),)


# ---------------------------------------------------------------------------
# Consent and guardianship
# ---------------------------------------------------------------------------


class ConsentRecordTable(Base):
    """Immutable record of a parent consenting on behalf of a minor.

    Each admission of a minor writes a new row; repeated captures for the
    same pair are separate events and are all retained.
    """

    __tablename__ = "consent_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    minor_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    method: Mapped[str] = mapped_column(String(64), nullable=False)
    policy_version: Mapped[str] = mapped_column(String(64), nullable=False)
    context: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_consent_records_tenant_minor", "tenant_id", "minor_user_id"),
        Index("ix_consent_records_parent", "parent_user_id"),
    )


class ParentPlayerLinkTable(Base):
    """Guardian relationship between a parent and a player within a tenant."""

    __tablename__ = "parent_player_links"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    parent_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    player_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "parent_user_id",
            "player_user_id",
            name="uq_parent_player_links_tenant_parent_player",
        ),
        Index("ix_parent_player_links_player", "tenant_id", "player_user_id"),
    )


# ---------------------------------------------------------------------------
# Join requests
# ---------------------------------------------------------------------------


class JoinRequestTable(Base):
    """Pending self-serve join requests for tenants that require approval."""

    __tablename__ = "join_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    parent_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    profile: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    __table_args__ = (Index("ix_join_requests_tenant_status", "tenant_id", "status"),)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditLogTable(Base):
    """Append-only audit log with tamper-evidence via hash chaining.

    ``entry_hash`` is a SHA-256 digest of the entry's content fields and
    ``previous_hash`` links to the preceding entry's hash, forming a
    tamper-evident chain per tenant.
    """

    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    target_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    previous_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_audit_tenant_created", "tenant_id", "created_at"),
        Index("ix_audit_tenant_event", "tenant_id", "event_type"),
        Index("ix_audit_target", "tenant_id", "target_type", "target_id"),
    )
