"""Permission-checked, tenant-scoped access to the Relationship Graph."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import EntityGraphError, ValidationError
from entitygraph.core.guard import AccessGuard
from entitygraph.core.logging import get_logger
from entitygraph.core.permissions import MANAGE_LINKS, VIEW_LINKS, PermissionEvaluator
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.core.scoping import ScopingFilter
from entitygraph.db.models import AVAILABILITY_LINK_TYPE, Entity, Link
from entitygraph.modules.entities.store import EntityStore
from entitygraph.modules.links.graph import Direction, RelationshipGraph

logger = get_logger(__name__)

ACTION_LINK = "link.create"
ACTION_UNLINK = "link.delete"
ACTION_READ = "link.read"


def link_ref(link_id: UUID | str) -> str:
    return f"link:{link_id}"


class LinkService:
    """Feature-facing link operations."""

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

    async def _visible(self, scope: ScopingFilter, entity_id: UUID) -> Entity:
        return await scope.require_visible(await self._store.find(entity_id))

    async def link(
        self,
        actor_id: UUID,
        *,
        source_id: UUID,
        target_id: UUID,
        link_type: str,
        attrs: dict[str, Any] | None = None,
        tenant_id: UUID | None = None,
    ) -> Link:
        ref = f"link:{source_id}:{link_type}:{target_id}"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_LINKS, action=ACTION_LINK, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            if link_type == AVAILABILITY_LINK_TYPE:
                raise ValidationError(
                    f"'{AVAILABILITY_LINK_TYPE}' edges are managed through availability"
                )
            source = await self._visible(scope, source_id)
            target = await self._visible(scope, target_id)
            spec = self._registry.link_type(link_type)
            owner = await scope.link_owner(source, target, spec)
            row = await self._graph.link(
                tenant_id=owner,
                source=source,
                target=target,
                link_type=link_type,
                created_by=actor_id,
                attrs=attrs,
            )
            ref = link_ref(row.id)
            metadata: dict[str, Any] = {
                "link_type": link_type,
                "source_id": source_id,
                "target_id": target_id,
            }
            if scope.used_bypass:
                metadata.update(scope.bypass_metadata())
            await self._guard.succeed(context, action=ACTION_LINK, resource_ref=ref, metadata=metadata)
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_LINK, resource_ref=ref)
            raise
        return row

    async def unlink(
        self,
        actor_id: UUID,
        link_id: UUID,
        *,
        tenant_id: UUID | None = None,
    ) -> None:
        ref = link_ref(link_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_LINKS, action=ACTION_UNLINK, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            row = await self._graph.get(link_id)
            scope.require_link_mutable(row)
            if row.link_type == AVAILABILITY_LINK_TYPE:
                raise ValidationError(
                    f"'{AVAILABILITY_LINK_TYPE}' edges are managed through availability"
                )
            metadata: dict[str, Any] = {
                "link_type": row.link_type,
                "source_id": row.source_id,
                "target_id": row.target_id,
            }
            await self._graph.unlink(link_id)
            if scope.used_bypass:
                metadata.update(scope.bypass_metadata())
            await self._guard.succeed(
                context, action=ACTION_UNLINK, resource_ref=ref, metadata=metadata
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_UNLINK, resource_ref=ref)
            raise

    async def links_from(
        self,
        actor_id: UUID,
        source_id: UUID,
        link_type: str | None = None,
        *,
        tenant_id: UUID | None = None,
    ) -> list[Link]:
        return await self._edges(actor_id, source_id, link_type, tenant_id, outgoing=True)

    async def links_to(
        self,
        actor_id: UUID,
        target_id: UUID,
        link_type: str | None = None,
        *,
        tenant_id: UUID | None = None,
    ) -> list[Link]:
        return await self._edges(actor_id, target_id, link_type, tenant_id, outgoing=False)

    async def neighbors_of(
        self,
        actor_id: UUID,
        entity_id: UUID,
        link_type: str | None,
        direction: Direction,
        *,
        tenant_id: UUID | None = None,
    ) -> list[Entity]:
        """
        Entities at the other end of ``entity_id``'s edges. Endpoints the
        caller cannot see (for example after availability was disabled) are
        dropped from the result.
        """
        ref = f"entity:{entity_id}"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_LINKS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            await self._visible(scope, entity_id)
            candidates = await self._graph.neighbors_of(
                entity_id, link_type, direction, tenant_id=scope.link_tenant()
            )
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise
        neighbors = [entity for entity in candidates if await scope.can_see(entity)]
        await self._guard.record_bypass(scope, resource_ref=ref)
        return neighbors

    async def _edges(
        self,
        actor_id: UUID,
        entity_id: UUID,
        link_type: str | None,
        tenant_id: UUID | None,
        *,
        outgoing: bool,
    ) -> list[Link]:
        ref = f"entity:{entity_id}"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_LINKS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            await self._visible(scope, entity_id)
            fetch = self._graph.links_from if outgoing else self._graph.links_to
            rows = await fetch(entity_id, link_type, tenant_id=scope.link_tenant())
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise
        await self._guard.record_bypass(scope, resource_ref=ref)
        return rows
