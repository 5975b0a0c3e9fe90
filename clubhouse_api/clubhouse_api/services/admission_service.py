"""Admission workflow: onboarding, invitations, joining and verification.

Orchestrates the token, membership, consent and billing services within
the caller's transaction and writes one audit event per admission.  Any
raised error aborts the whole request: the session dependency rolls back,
so a consumed token, a half-created tenant or a membership without its
consent record never persists.

Outbound email is best-effort and never raises.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

from clubhouse_core.roles import ASSIGNABLE_ROLES, SELF_JOIN_ROLES, Role, is_minor, parse_role
from clubhouse_core.state.repository import JoinRequestRepository
from clubhouse_core.state.tables import InviteTable, TenantTable
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.config import APISettings
from clubhouse_api.errors import (
    EmailDomainNotAllowed,
    InvalidRole,
    InviteNotFound,
    ParentEmailInvalid,
    TenantInactive,
    TenantNotFound,
    TokenAlreadyUsed,
)
from clubhouse_api.services.audit_service import AuditAction, AuditService
from clubhouse_api.services.billing_service import BillingService
from clubhouse_api.services.consent_service import ConsentService
from clubhouse_api.services.email_service import EmailClient
from clubhouse_api.services.identity import IdentityProvider
from clubhouse_api.services.membership_service import MembershipService
from clubhouse_api.services.token_service import TokenService, raise_for_unusable

logger = logging.getLogger(__name__)

CONSENT_METHOD_PARENT_EMAIL = "parent_email"


def _email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower()


class AdmissionService:
    """Admission operations for one request scope.

    Parameters
    ----------
    session:
        An async database session (caller manages the transaction).
    settings:
        API settings (link base URL, token lifetimes, consent policy).
    identity:
        The identity collaborator.
    email:
        Outbound email client.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        *,
        identity: IdentityProvider,
        email: EmailClient,
    ) -> None:
        self._session = session
        self._settings = settings
        self._identity = identity
        self._email = email
        self._tokens = TokenService(session)
        self._memberships = MembershipService(session)

    def _link(self, path: str, token: str) -> str:
        return f"{self._settings.app_base_url.rstrip('/')}/{path}?{urlencode({'token': token})}"

    def _audit(self, tenant_id: str, actor: str) -> AuditService:
        return AuditService(self._session, tenant_id=tenant_id, actor=actor)

    # -- Onboarding ----------------------------------------------------------

    async def onboard_tenant(
        self,
        *,
        org_name: str,
        contact_name: str,
        contact_email: str,
        city: str | None = None,
        state: str | None = None,
        country: str | None = None,
        password: str | None = None,
        acting_user_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a tenant owned by the acting user, with its billing record.

        The Stripe customer is created inside the same transaction as the
        tenant; a Stripe failure raises :class:`BillingUnavailable` and the
        tenant is rolled back with everything else.

        A signed-in caller becomes the owner; their verification link goes to
        their own address on record, never to *contact_email*.
        """
        if acting_user_id:
            user_id = acting_user_id
            verify_address = await self._identity.get_email(acting_user_id)
        else:
            user_id = await self._identity.ensure_user(contact_email, password, {"name": contact_name})
            verify_address = contact_email

        tenant = await self._memberships.create_tenant(
            name=org_name,
            contact_name=contact_name,
            contact_email=contact_email,
            city=city,
            state=state,
            country=country,
        )
        await self._memberships.bind_membership(tenant.id, user_id, Role.OWNER)

        billing = BillingService(self._session, self._settings, tenant_id=tenant.id)
        await billing.open_customer(name=tenant.name, email=tenant.contact_email)

        email_sent = False
        if verify_address:
            verification = await self._tokens.issue_verification(
                user_id=user_id,
                email=verify_address,
                expires_in=timedelta(hours=self._settings.verification_ttl_hours),
            )
            email_sent = await self._email.send_verify_email(verify_address, self._link("verify", verification.token))
        else:
            logger.warning("No email on record for user %s; skipping verification", user_id)

        await self._audit(tenant.id, user_id).log(
            AuditAction.TENANT_CREATED,
            "tenant",
            tenant.id,
            slug=tenant.slug,
            contact_email=tenant.contact_email,
        )
        return {
            "tenant_id": tenant.id,
            "slug": tenant.slug,
            "tenant_code": tenant.tenant_code,
            "user_id": user_id,
            "verification_sent": email_sent,
        }

    async def verify_email(self, token: str) -> dict[str, Any]:
        """Consume a verification token and welcome every tenant the user owns."""
        row = await self._tokens.consume_verification(token)
        await self._identity.mark_user_verified(row.user_id)

        owned = [
            tenant
            for membership, tenant in await self._memberships.list_memberships(row.user_id)
            if parse_role(membership.role) is Role.OWNER
        ]
        for tenant in owned:
            await self._email.send_welcome_email(row.email, tenant.name)
            await self._audit(tenant.id, row.user_id).log(
                AuditAction.EMAIL_VERIFIED,
                "user",
                row.user_id,
                email=row.email,
            )
        return {"user_id": row.user_id, "email": row.email}

    # -- Invitations ---------------------------------------------------------

    async def issue_invite(self, *, tenant_id: str, actor_user_id: str, email: str, role: str) -> InviteTable:
        parsed = parse_role(role)
        if parsed not in ASSIGNABLE_ROLES:
            raise InvalidRole(f"Role '{role}' cannot be invited")

        tenant = await self._memberships.get_tenant(tenant_id)
        invite = await self._tokens.issue_invite(
            tenant_id=tenant.id,
            email=email,
            role=parsed.value,
            invited_by_user_id=actor_user_id,
            expires_in=timedelta(hours=self._settings.invite_ttl_hours),
        )
        await self._email.send_invite_email(invite.email, self._link("join", invite.token), invite.role, tenant.name)
        await self._audit(tenant.id, actor_user_id).log(
            AuditAction.INVITE_SENT,
            "invite",
            invite.id,
            email=invite.email,
            role=invite.role,
        )
        return invite

    async def _owned_invite(self, tenant_id: str, invite_id: str) -> InviteTable:
        invite = await self._tokens.get_invite_for_tenant(invite_id, tenant_id)
        if invite is None:
            raise InviteNotFound()
        return invite

    async def resend_invite(self, *, tenant_id: str, actor_user_id: str, invite_id: str) -> InviteTable:
        """Re-deliver the same token; its expiry is unchanged."""
        invite = await self._owned_invite(tenant_id, invite_id)
        raise_for_unusable(invite)
        tenant = await self._memberships.get_tenant(tenant_id)
        await self._email.send_invite_email(invite.email, self._link("join", invite.token), invite.role, tenant.name)
        await self._audit(tenant_id, actor_user_id).log(AuditAction.INVITE_RESENT, "invite", invite.id, email=invite.email)
        return invite

    async def revoke_invite(self, *, tenant_id: str, actor_user_id: str, invite_id: str) -> InviteTable:
        invite = await self._owned_invite(tenant_id, invite_id)
        if invite.used_at is not None:
            raise TokenAlreadyUsed()
        await self._tokens.revoke_invite(invite)
        await self._audit(tenant_id, actor_user_id).log(
            AuditAction.INVITE_REVOKED, "invite", invite.id, email=invite.email
        )
        return invite

    async def preview_invite(self, token: str) -> dict[str, Any]:
        """Describe a live invite without consuming it."""
        invite = await self._tokens.peek_invite(token)
        tenant = await self._memberships.get_tenant(invite.tenant_id)
        return {
            "tenant_name": tenant.name,
            "tenant_slug": tenant.slug,
            "email": invite.email,
            "role": invite.role,
            "expires_at": invite.expires_at.isoformat(),
        }

    # -- Joining -------------------------------------------------------------

    async def join_by_token(
        self,
        *,
        token: str,
        password: str | None = None,
        profile: dict[str, Any] | None = None,
        parent_email: str | None = None,
    ) -> dict[str, Any]:
        """Redeem an invitation token.

        The token is consumed before anything else touches the store, so
        concurrent redemptions serialize on that single update.
        """
        invite = await self._tokens.consume_invite(token)
        role = parse_role(invite.role)

        user_id = await self._identity.ensure_user(invite.email, password, profile)
        await self._memberships.bind_membership(invite.tenant_id, user_id, role)

        parent_user_id = None
        if is_minor(role) and parent_email:
            parent_user_id = await self._admit_guardian(
                tenant_id=invite.tenant_id,
                player_user_id=user_id,
                player_email=invite.email,
                parent_email=parent_email,
                context={"channel": "invite", "invite_id": invite.id},
            )

        await self._audit(invite.tenant_id, user_id).log(
            AuditAction.INVITE_ACCEPTED,
            "invite",
            invite.id,
            role=role.value,
            parent_user_id=parent_user_id,
        )
        return {"tenant_id": invite.tenant_id, "user_id": user_id, "role": role.value}

    async def join_by_code(
        self,
        *,
        code: str,
        email: str,
        role: str = Role.PLAYER.value,
        password: str | None = None,
        profile: dict[str, Any] | None = None,
        parent_email: str | None = None,
    ) -> dict[str, Any]:
        """Join a tenant with its shared code, or queue a request for approval."""
        tenant = await self._memberships.find_tenant_by_code(code)
        if tenant is None:
            raise TenantNotFound()
        self._check_policy(tenant, email)

        parsed = parse_role(role)
        if parsed not in SELF_JOIN_ROLES:
            raise InvalidRole(f"Role '{role}' cannot be joined with a code")

        if tenant.requires_approval:
            request = await JoinRequestRepository(self._session, tenant_id=tenant.id).create(
                email=email,
                role=parsed.value,
                parent_email=parent_email,
                profile=profile,
            )
            await self._audit(tenant.id, email.strip().lower()).log(
                AuditAction.JOIN_REQUESTED,
                "join_request",
                request.id,
                role=parsed.value,
            )
            return {"queued": True, "tenant_id": tenant.id, "request_id": request.id}

        user_id = await self._identity.ensure_user(email, password, profile)
        await self._memberships.bind_membership(tenant.id, user_id, parsed)

        parent_user_id = None
        if is_minor(parsed) and parent_email:
            parent_user_id = await self._admit_guardian(
                tenant_id=tenant.id,
                player_user_id=user_id,
                player_email=email,
                parent_email=parent_email,
                context={"channel": "code"},
            )

        await self._audit(tenant.id, user_id).log(
            AuditAction.JOINED_BY_CODE,
            "user",
            user_id,
            role=parsed.value,
            parent_user_id=parent_user_id,
        )
        return {"queued": False, "tenant_id": tenant.id, "user_id": user_id, "role": parsed.value}

    @staticmethod
    def _check_policy(tenant: TenantTable, email: str) -> None:
        if tenant.status != "active":
            raise TenantInactive()
        allowed = tenant.allowed_email_domains
        if allowed and _email_domain(email) not in {d.lower() for d in allowed}:
            raise EmailDomainNotAllowed()

    async def _admit_guardian(
        self,
        *,
        tenant_id: str,
        player_user_id: str,
        player_email: str,
        parent_email: str,
        context: dict[str, Any],
    ) -> str:
        """Give the parent a membership, record consent, and link the pair."""
        if parent_email.strip().lower() == player_email.strip().lower():
            raise ParentEmailInvalid()

        parent_user_id = await self._identity.ensure_user(parent_email)
        await self._memberships.ensure_membership(tenant_id, parent_user_id, Role.PARENT)

        consent = ConsentService(self._session, tenant_id=tenant_id)
        await consent.record_consent(
            minor_user_id=player_user_id,
            parent_user_id=parent_user_id,
            parent_email=parent_email,
            method=CONSENT_METHOD_PARENT_EMAIL,
            policy_version=self._settings.consent_policy_version,
            context=context,
        )
        await consent.link_parent_player(parent_user_id, player_user_id)
        return parent_user_id

    # -- Tenant administration -----------------------------------------------

    async def rotate_join_code(self, *, tenant_id: str, actor_user_id: str) -> str:
        code = await self._memberships.rotate_join_code(tenant_id)
        await self._audit(tenant_id, actor_user_id).log(AuditAction.TENANT_CODE_ROTATED, "tenant", tenant_id)
        return code
