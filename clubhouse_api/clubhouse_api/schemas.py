"""Shared Pydantic request and response models for API endpoints.

Request bodies are validated before any handler code runs, so a malformed
admission request is rejected with 422 without touching the store or
calling Stripe.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, EmailStr, Field

# ---------------------------------------------------------------------------
# Onboarding schemas
# ---------------------------------------------------------------------------


class GetStartedRequest(BaseModel):
    """Request body for ``POST /get-started``."""

    org_name: str = Field(..., min_length=1, max_length=256, description="Organization display name.")
    contact_name: str = Field(..., min_length=1, max_length=256, description="Primary contact's name.")
    contact_email: EmailStr = Field(..., description="Primary contact's email; becomes the owner account.")
    city: str | None = Field(default=None, max_length=128)
    state: str | None = Field(default=None, max_length=128)
    country: str | None = Field(default=None, max_length=128)
    password: str | None = Field(default=None, min_length=8, max_length=128, description="Owner password.")


class GetStartedResponse(BaseModel):
    ok: bool = True
    tenant_id: str
    slug: str
    tenant_code: str
    user_id: str
    verification_sent: bool
    session_token: str


class VerifyEmailResponse(BaseModel):
    ok: bool = True
    user_id: str
    email: str


# ---------------------------------------------------------------------------
# Invite schemas
# ---------------------------------------------------------------------------


class CreateInviteRequest(BaseModel):
    """Request body for ``POST /invites``."""

    email: EmailStr = Field(..., description="Invitee email address.")
    role: str = Field(..., description="One of: coach, assistant, parent, player.")


class InviteActionRequest(BaseModel):
    """Request body for ``POST /invites/resend`` and ``POST /invites/revoke``."""

    id: str = Field(..., min_length=1, description="Invite ID.")


class InviteResponse(BaseModel):
    """An invitation as seen by tenant staff.  The token itself is never returned."""

    ok: bool = True
    id: str
    email: str
    role: str
    expires_at: str
    used: bool = False


class InviteListResponse(BaseModel):
    ok: bool = True
    invites: list[InviteResponse] = Field(default_factory=list)


class InvitePreviewResponse(BaseModel):
    ok: bool = True
    tenant_name: str
    tenant_slug: str
    email: str
    role: str
    expires_at: str


# ---------------------------------------------------------------------------
# Join schemas
# ---------------------------------------------------------------------------


class JoinByTokenRequest(BaseModel):
    """Request body for ``POST /join/by-token``."""

    token: str = Field(..., min_length=1, max_length=128)
    password: str | None = Field(default=None, min_length=8, max_length=128)
    profile: dict[str, Any] | None = Field(default=None, description="Free-form member profile.")
    parent_email: EmailStr | None = Field(default=None, description="Consenting parent, for minors.")


class JoinByCodeRequest(BaseModel):
    """Request body for ``POST /join/by-code``."""

    code: str = Field(..., min_length=1, max_length=32)
    email: EmailStr
    role: str = Field(default="player", description="parent or player.")
    password: str | None = Field(default=None, min_length=8, max_length=128)
    profile: dict[str, Any] | None = None
    parent_email: EmailStr | None = None


class JoinResponse(BaseModel):
    """Result of a join.  ``queued`` joins carry a request id and no membership."""

    ok: bool = True
    queued: bool = False
    tenant_id: str
    user_id: str | None = None
    role: str | None = None
    request_id: str | None = None
    session_token: str | None = None


# ---------------------------------------------------------------------------
# Tenant schemas
# ---------------------------------------------------------------------------


class TenantMembershipResponse(BaseModel):
    tenant_id: str
    name: str
    slug: str
    role: str


class TenantListResponse(BaseModel):
    ok: bool = True
    active_tenant_id: str
    tenants: list[TenantMembershipResponse] = Field(default_factory=list)


class SwitchTenantRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1, description="Tenant to make active.")


class SwitchTenantResponse(BaseModel):
    ok: bool = True
    tenant_id: str
    role: str
    session_token: str


class TenantLookupResponse(BaseModel):
    ok: bool = True
    name: str
    slug: str
    requires_approval: bool


class RotateCodeResponse(BaseModel):
    ok: bool = True
    tenant_code: str


# ---------------------------------------------------------------------------
# Billing schemas
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    """Request body for ``POST /billing/checkout``."""

    price_id: str | None = Field(default=None, description="Stripe price; defaults to the configured paid plan.")


class CheckoutSessionResponse(BaseModel):
    ok: bool = True
    url: str


class SubscriptionResponse(BaseModel):
    """Current subscription state for the active tenant."""

    ok: bool = True
    plan_key: str
    status: str
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    trial_end: str | None = None
    current_period_end: str | None = None
