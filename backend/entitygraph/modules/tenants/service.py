"""
Tenant lifecycle and membership management.

Every tenant gets an ``organization/tenant`` anchor entity when it is
created; availability edges point at it. Membership changes are gated by
``manage_users`` plus the role-hierarchy rules of the Permission Evaluator.
"""

from __future__ import annotations

import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import (
    ConflictError,
    EntityGraphError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from entitygraph.core.guard import AccessGuard
from entitygraph.core.logging import get_logger
from entitygraph.core.permissions import MANAGE_USERS, VIEW_USERS, PermissionEvaluator
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.db.models import (
    SYSTEM_TENANT_ID,
    SYSTEM_TENANT_SLUG,
    TENANT_ANCHOR_SUBTYPE,
    TENANT_ANCHOR_TYPE,
    Actor,
    Role,
    Tenant,
    TenantMember,
    TenantStatus,
)
from entitygraph.modules.entities.store import EntityStore

logger = get_logger(__name__)

ACTION_TENANT_CREATE = "tenant.create"
ACTION_MEMBER_ADD = "member.add"
ACTION_MEMBER_GRANT = "member.grant_role"
ACTION_MEMBER_REMOVE = "member.remove"
ACTION_MEMBER_READ = "member.read"

SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,98}[a-z0-9])?$")


def tenant_ref(tenant_id: UUID | str) -> str:
    return f"tenant:{tenant_id}"


def member_ref(tenant_id: UUID | str, actor_id: UUID | str) -> str:
    return f"member:{tenant_id}:{actor_id}"


async def ensure_system_tenant(session: AsyncSession) -> Tenant:
    """Create the sentinel tenant that owns platform entities, if missing."""
    tenant = await session.get(Tenant, SYSTEM_TENANT_ID)
    if tenant is None:
        tenant = Tenant(id=SYSTEM_TENANT_ID, slug=SYSTEM_TENANT_SLUG, name="System")
        session.add(tenant)
        await session.commit()
        logger.info("system_tenant_created", tenant_id=str(SYSTEM_TENANT_ID))
    return tenant


class TenantService:
    """Tenants, their anchors and their members."""

    def __init__(
        self,
        session: AsyncSession,
        registry: TypeRegistry | None = None,
        evaluator: PermissionEvaluator | None = None,
    ) -> None:
        self._session = session
        self._registry = registry or get_type_registry()
        self._guard = AccessGuard(session, evaluator)
        self._store = EntityStore(session, self._registry)

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    async def create_tenant(
        self,
        actor_id: UUID,
        *,
        slug: str,
        name: str,
        acting_tenant_id: UUID | None = None,
    ) -> Tenant:
        ref = f"tenant_slug:{slug}"
        context = await self._guard.resolve(
            actor_id, acting_tenant_id, action=ACTION_TENANT_CREATE, resource_ref=ref
        )
        try:
            self._guard.check_elevated(context, "create_tenant")
            if not SLUG_PATTERN.match(slug):
                raise ValidationError(
                    "slug must be lowercase letters, digits and hyphens",
                    errors=[{"path": "slug", "message": "invalid format"}],
                )
            if not name.strip():
                raise ValidationError("name must be a non-empty string")
            existing = await self._session.execute(select(Tenant.id).where(Tenant.slug == slug))
            if existing.scalar_one_or_none() is not None:
                raise ConflictError(f"Tenant slug '{slug}' is already taken")

            tenant = Tenant(slug=slug, name=name)
            self._session.add(tenant)
            await self._session.flush()
            ref = tenant_ref(tenant.id)
            anchor = await self._store.create(
                tenant_id=tenant.id,
                type_=TENANT_ANCHOR_TYPE,
                subtype=TENANT_ANCHOR_SUBTYPE,
                name=name,
                created_by=actor_id,
                custom_properties={"slug": slug},
            )
            await self._guard.succeed(
                context,
                action=ACTION_TENANT_CREATE,
                resource_ref=ref,
                metadata={"slug": slug, "anchor_id": anchor.id},
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_TENANT_CREATE, resource_ref=ref)
            raise
        logger.info("tenant_created", tenant_id=str(tenant.id), slug=slug)
        return tenant

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def _membership(self, tenant_id: UUID, actor_id: UUID) -> TenantMember | None:
        result = await self._session.execute(
            select(TenantMember)
            .where(TenantMember.tenant_id == tenant_id, TenantMember.actor_id == actor_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _active_membership(self, tenant_id: UUID, actor_id: UUID) -> TenantMember:
        member = await self._membership(tenant_id, actor_id)
        if member is None or not member.is_active:
            raise NotFoundError("Member not found")
        return member

    @staticmethod
    def _target_tenant(tenant_id: UUID | None) -> UUID:
        if tenant_id is None:
            raise ValidationError("A tenant is required for membership changes")
        if tenant_id == SYSTEM_TENANT_ID:
            raise ValidationError("The system tenant has no members")
        return tenant_id

    def _require_not_self(self, acting_actor_id: UUID, member_actor_id: UUID, elevated: bool) -> None:
        if acting_actor_id == member_actor_id and not elevated:
            raise PermissionDeniedError(
                "Actors cannot change their own membership",
                capability=MANAGE_USERS,
            )

    async def add_member(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None,
        member_actor_id: UUID,
        role: Role,
    ) -> TenantMember:
        ref = member_ref(tenant_id, member_actor_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_USERS, action=ACTION_MEMBER_ADD, resource_ref=ref
        )
        try:
            target_tenant = self._target_tenant(context.tenant_id)
            self._guard.check_decision(self._guard.evaluator.check_role_grant(context, role))
            self._require_not_self(actor_id, member_actor_id, context.elevated)
            if await self._session.get(Actor, member_actor_id) is None:
                raise NotFoundError("Actor not found")

            member = await self._membership(target_tenant, member_actor_id)
            if member is not None and member.is_active:
                raise ConflictError("Actor is already a member of this tenant")
            if member is None:
                member = TenantMember(tenant_id=target_tenant, actor_id=member_actor_id, role=role)
                self._session.add(member)
            else:
                member.role = role
                member.is_active = True
            await self._session.flush()
            await self._guard.succeed(
                context,
                action=ACTION_MEMBER_ADD,
                resource_ref=ref,
                metadata={"role": role},
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_MEMBER_ADD, resource_ref=ref)
            raise
        return member

    async def grant_role(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None,
        member_actor_id: UUID,
        role: Role,
    ) -> TenantMember:
        """
        Change a member's role. The grantor must outrank both the member's
        current role and the role being granted.
        """
        ref = member_ref(tenant_id, member_actor_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_USERS, action=ACTION_MEMBER_GRANT, resource_ref=ref
        )
        try:
            target_tenant = self._target_tenant(context.tenant_id)
            self._require_not_self(actor_id, member_actor_id, context.elevated)
            self._guard.check_decision(self._guard.evaluator.check_role_grant(context, role))
            member = await self._active_membership(target_tenant, member_actor_id)
            previous = member.role
            self._guard.check_decision(self._guard.evaluator.can_manage_member(context, previous))
            member.role = role
            await self._session.flush()
            await self._guard.succeed(
                context,
                action=ACTION_MEMBER_GRANT,
                resource_ref=ref,
                metadata={"role": role, "previous_role": previous},
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_MEMBER_GRANT, resource_ref=ref)
            raise
        logger.info(
            "role_granted",
            tenant_id=str(target_tenant),
            member_actor_id=str(member_actor_id),
            role=role.value,
        )
        return member

    async def remove_member(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None,
        member_actor_id: UUID,
    ) -> TenantMember:
        """Deactivate a membership; the row is kept for the audit trail."""
        ref = member_ref(tenant_id, member_actor_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_USERS, action=ACTION_MEMBER_REMOVE, resource_ref=ref
        )
        try:
            target_tenant = self._target_tenant(context.tenant_id)
            self._require_not_self(actor_id, member_actor_id, context.elevated)
            member = await self._active_membership(target_tenant, member_actor_id)
            self._guard.check_decision(
                self._guard.evaluator.can_manage_member(context, member.role)
            )
            member.is_active = False
            await self._session.flush()
            await self._guard.succeed(
                context,
                action=ACTION_MEMBER_REMOVE,
                resource_ref=ref,
                metadata={"role": member.role},
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_MEMBER_REMOVE, resource_ref=ref)
            raise
        return member

    async def list_members(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None,
        include_inactive: bool = False,
    ) -> list[TenantMember]:
        ref = tenant_ref(tenant_id) if tenant_id else "tenant:*"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_USERS, action=ACTION_MEMBER_READ, resource_ref=ref
        )
        try:
            target_tenant = self._target_tenant(context.tenant_id)
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_MEMBER_READ, resource_ref=ref, record_errors=False
            )
            raise
        stmt = (
            select(TenantMember)
            .join(Tenant, Tenant.id == TenantMember.tenant_id)
            .where(TenantMember.tenant_id == target_tenant, Tenant.status == TenantStatus.ACTIVE)
        )
        if not include_inactive:
            stmt = stmt.where(TenantMember.is_active.is_(True))
        result = await self._session.execute(
            stmt.order_by(TenantMember.created_at.asc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
