"""
Context resolution: who is calling, in which tenant, with which role.

``ContextResolver.resolve`` is a read-only function of the current actor,
membership and tenant rows. Nothing is cached, so a role change or a disabled
membership takes effect on the very next call.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import NotFoundError, PermissionDeniedError, ScopeViolationError
from entitygraph.db.models import (
    Actor,
    PlatformRole,
    Role,
    Tenant,
    TenantMember,
    TenantStatus,
)


@dataclass(frozen=True)
class ResolvedContext:
    """Resolved caller context for one operation."""

    actor_id: UUID
    tenant_id: UUID | None
    role: Role
    elevated: bool = False

    @property
    def is_global(self) -> bool:
        """Elevated and not acting as any particular tenant."""
        return self.elevated and self.tenant_id is None


class ContextResolver:
    """Resolves an actor and an optional requested tenant into a ``ResolvedContext``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def resolve(
        self,
        actor_id: UUID,
        requested_tenant_id: UUID | None = None,
    ) -> ResolvedContext:
        actor = await self._load_actor(actor_id)
        if actor is None or not actor.is_active:
            raise PermissionDeniedError("Actor is unknown or inactive")

        if actor.global_role == PlatformRole.SUPER_ADMIN:
            if requested_tenant_id is not None:
                tenant = await self._session.get(Tenant, requested_tenant_id)
                if tenant is None:
                    raise NotFoundError("Tenant not found")
            return ResolvedContext(
                actor_id=actor.id,
                tenant_id=requested_tenant_id,
                role=Role.SUPER_ADMIN,
                elevated=True,
            )

        memberships = await self._active_memberships(actor.id)
        if not memberships:
            raise PermissionDeniedError("Actor is not a member of any tenant")

        by_tenant = {member.tenant_id: member for member in memberships}
        if requested_tenant_id is not None:
            member = by_tenant.get(requested_tenant_id)
            if member is None:
                raise ScopeViolationError("Actor is not a member of the requested tenant")
        elif len(memberships) == 1:
            member = memberships[0]
        else:
            member = by_tenant.get(actor.default_tenant_id) if actor.default_tenant_id else None
            if member is None:
                raise PermissionDeniedError(
                    "Actor belongs to several tenants; a tenant must be requested"
                )

        return ResolvedContext(
            actor_id=actor.id,
            tenant_id=member.tenant_id,
            role=member.role,
            elevated=False,
        )

    async def _load_actor(self, actor_id: UUID) -> Actor | None:
        result = await self._session.execute(
            select(Actor)
            .where(Actor.id == actor_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _active_memberships(self, actor_id: UUID) -> list[TenantMember]:
        result = await self._session.execute(
            select(TenantMember)
            .join(Tenant, Tenant.id == TenantMember.tenant_id)
            .where(
                TenantMember.actor_id == actor_id,
                TenantMember.is_active.is_(True),
                Tenant.status == TenantStatus.ACTIVE,
            )
            .order_by(TenantMember.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
