"""
Availability index over ``available_to`` edges.

An edge ``resource -> tenant anchor`` with ``attrs == {"enabled": True}``
makes the resource readable by that tenant. Only elevated contexts write
the index; a missing edge means disabled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import EntityGraphError, NotFoundError, ValidationError
from entitygraph.core.guard import AccessGuard
from entitygraph.core.logging import get_logger
from entitygraph.core.permissions import PermissionEvaluator
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.core.scoping import anchor_ids_stmt, is_enabled_edge
from entitygraph.db.models import AVAILABILITY_LINK_TYPE, Entity, Link, Tenant
from entitygraph.modules.entities.store import EntityStore
from entitygraph.modules.links.graph import RelationshipGraph

logger = get_logger(__name__)

ACTION_SET = "availability.set"
ACTION_READ = "availability.read"
CAPABILITY_MANAGE_AVAILABILITY = "manage_availability"


@dataclass(frozen=True)
class AvailabilityEntry:
    """Availability of one resource for one tenant."""

    resource_id: UUID
    tenant_id: UUID
    enabled: bool
    link_id: UUID
    updated_at: datetime


class AvailabilityService:
    """Elevated-only management of shared-resource visibility."""

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
        self._graph = RelationshipGraph(session)

    async def _tenant_anchor(self, tenant_id: UUID) -> Entity:
        tenant = await self._session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        result = await self._session.execute(
            select(Entity).where(Entity.id.in_(anchor_ids_stmt(tenant_id))).limit(1)
        )
        anchor = result.scalar_one_or_none()
        if anchor is None:
            raise NotFoundError("Tenant has no anchor entity")
        return anchor

    async def set_availability(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID,
        resource_id: UUID,
        enabled: bool,
        acting_tenant_id: UUID | None = None,
    ) -> AvailabilityEntry:
        """Enable or disable ``resource_id`` for ``tenant_id``; takes effect on the next read."""
        ref = f"entity:{resource_id}"
        context = await self._guard.resolve(
            actor_id, acting_tenant_id, action=ACTION_SET, resource_ref=ref
        )
        try:
            self._guard.check_elevated(context, CAPABILITY_MANAGE_AVAILABILITY)
            scope = self._guard.scope(context)
            scope.require_bypass("set_availability", resource_id)
            resource = await self._store.get(resource_id)
            anchor = await self._tenant_anchor(tenant_id)
            if resource.tenant_id == tenant_id:
                raise ValidationError("Resource already belongs to this tenant")

            attrs = {"enabled": enabled}
            edge = await self._graph.find(resource.id, anchor.id, AVAILABILITY_LINK_TYPE)
            if edge is None:
                edge = await self._graph.link(
                    tenant_id=resource.tenant_id,
                    source=resource,
                    target=anchor,
                    link_type=AVAILABILITY_LINK_TYPE,
                    created_by=actor_id,
                    attrs=attrs,
                )
            else:
                edge = await self._graph.update_attrs(edge, attrs)
            entry = AvailabilityEntry(
                resource_id=resource.id,
                tenant_id=tenant_id,
                enabled=enabled,
                link_id=edge.id,
                updated_at=edge.updated_at,
            )
            await self._guard.succeed(
                context,
                action=ACTION_SET,
                resource_ref=ref,
                metadata={
                    "tenant_id": tenant_id,
                    "enabled": enabled,
                    "link_id": edge.id,
                    **scope.bypass_metadata(),
                },
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_SET, resource_ref=ref)
            raise
        logger.info(
            "availability_set",
            resource_id=str(resource_id),
            tenant_id=str(tenant_id),
            enabled=enabled,
        )
        return entry

    async def list_availability(
        self,
        actor_id: UUID,
        resource_id: UUID,
        *,
        acting_tenant_id: UUID | None = None,
    ) -> list[AvailabilityEntry]:
        """Availability edges of one shared resource, across all tenants."""
        ref = f"entity:{resource_id}"
        context = await self._guard.resolve(
            actor_id, acting_tenant_id, action=ACTION_READ, resource_ref=ref
        )
        try:
            self._guard.check_elevated(context, CAPABILITY_MANAGE_AVAILABILITY)
            scope = self._guard.scope(context)
            scope.require_bypass("list_availability", resource_id)
            await self._store.get(resource_id)
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise

        result = await self._session.execute(
            select(Link, Entity.tenant_id)
            .join(Entity, Entity.id == Link.target_id)
            .where(Link.source_id == resource_id, Link.link_type == AVAILABILITY_LINK_TYPE)
            .order_by(Link.created_at.asc())
            .execution_options(populate_existing=True)
        )
        entries = [
            AvailabilityEntry(
                resource_id=resource_id,
                tenant_id=anchor_tenant_id,
                enabled=is_enabled_edge(edge),
                link_id=edge.id,
                updated_at=edge.updated_at,
            )
            for edge, anchor_tenant_id in result.all()
        ]
        await self._guard.record_bypass(scope, resource_ref=ref)
        return entries
