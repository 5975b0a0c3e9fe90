"""Tenant creation, membership binding and join-code rotation."""

from __future__ import annotations

import logging

from clubhouse_core.ids import generate_tenant_code, normalize_tenant_code, slugify
from clubhouse_core.roles import Role
from clubhouse_core.state.repository import MembershipRepository, TenantRepository
from clubhouse_core.state.tables import MembershipTable, TenantTable
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.errors import CodeAllocationError, DuplicateMembership, TenantNotFound

logger = logging.getLogger(__name__)

# Upper bounds on join-code draws and on conflicting tenant inserts.
MAX_CODE_ATTEMPTS = 5
MAX_ALLOCATION_ATTEMPTS = 5


class MembershipService:
    """Tenants and (tenant, user) role bindings.

    Parameters
    ----------
    session:
        An async database session (caller manages the transaction).
    """

    def __init__(self, session: AsyncSession) -> None:
        self._tenants = TenantRepository(session)
        self._memberships = MembershipRepository(session)

    # -- Tenants -------------------------------------------------------------

    async def allocate_slug(self, name: str) -> str:
        """Return the first free slug among ``base``, ``base-2``, ``base-3``, ..."""
        base = slugify(name)
        candidate = base
        suffix = 1
        while await self._tenants.slug_exists(candidate):
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    async def allocate_code(self) -> str:
        """Draw join-codes until one is unused.

        Raises
        ------
        CodeAllocationError
            After :data:`MAX_CODE_ATTEMPTS` collisions.
        """
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = generate_tenant_code()
            if not await self._tenants.code_exists(code):
                return code
            logger.warning("Tenant code collision on attempt %d", attempt)
        raise CodeAllocationError()

    async def create_tenant(
        self,
        *,
        name: str,
        contact_name: str,
        contact_email: str,
        city: str | None = None,
        state: str | None = None,
        country: str | None = None,
    ) -> TenantTable:
        """Insert a tenant under a fresh slug and join-code.

        A concurrent onboarding can claim the chosen slug or code between the
        lookup and the insert; the insert then skips and a fresh pair is drawn.

        Raises
        ------
        CodeAllocationError
            After :data:`MAX_ALLOCATION_ATTEMPTS` conflicting inserts.
        """
        for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
            slug = await self.allocate_slug(name)
            code = await self.allocate_code()
            tenant = await self._tenants.create(
                name=name,
                slug=slug,
                tenant_code=code,
                contact_name=contact_name,
                contact_email=contact_email,
                city=city,
                state=state,
                country=country,
            )
            if tenant is not None:
                logger.info("Created tenant %s (slug=%s)", tenant.id, tenant.slug)
                return tenant
            logger.warning("Tenant slug/code conflict on attempt %d (slug=%s)", attempt, slug)
        raise CodeAllocationError("Could not allocate a unique tenant slug and code")

    async def get_tenant(self, tenant_id: str) -> TenantTable:
        tenant = await self._tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFound()
        return tenant

    async def find_tenant_by_code(self, code: str) -> TenantTable | None:
        normalized = normalize_tenant_code(code)
        if not normalized:
            return None
        return await self._tenants.get_by_code(normalized)

    async def rotate_join_code(self, tenant_id: str) -> str:
        """Replace the tenant's join-code; the old one stops resolving on commit."""
        for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
            code = await self.allocate_code()
            if await self._tenants.update_code(tenant_id, code):
                logger.info("Rotated join-code for tenant %s", tenant_id)
                return code
            if await self._tenants.get(tenant_id) is None:
                raise TenantNotFound()
            logger.warning("Join-code conflict on rotation attempt %d", attempt)
        raise CodeAllocationError()

    # -- Memberships ---------------------------------------------------------

    async def bind_membership(self, tenant_id: str, user_id: str, role: Role) -> MembershipTable:
        """Bind *user_id* to *tenant_id* with *role*.

        Raises
        ------
        DuplicateMembership
            If the user already holds any role in the tenant.  The existing
            binding is never overwritten.
        """
        if await self._memberships.get(tenant_id, user_id) is not None:
            raise DuplicateMembership()
        try:
            return await self._memberships.create(tenant_id, user_id, role.value)
        except IntegrityError as exc:
            # Lost a race with a concurrent admission of the same user.
            raise DuplicateMembership() from exc

    async def ensure_membership(self, tenant_id: str, user_id: str, role: Role) -> bool:
        """Bind *user_id* unless already a member.  Returns ``True`` if bound."""
        return await self._memberships.create_if_absent(tenant_id, user_id, role.value)

    async def get_membership(self, tenant_id: str, user_id: str) -> MembershipTable | None:
        return await self._memberships.get(tenant_id, user_id)

    async def list_memberships(self, user_id: str) -> list[tuple[MembershipTable, TenantTable]]:
        """Return ``(membership, tenant)`` pairs for every tenant *user_id* belongs to."""
        memberships = await self._memberships.list_for_user(user_id)
        tenants = {t.id: t for t in await self._tenants.list_by_ids([m.tenant_id for m in memberships])}
        return [(m, tenants[m.tenant_id]) for m in memberships if m.tenant_id in tenants]
