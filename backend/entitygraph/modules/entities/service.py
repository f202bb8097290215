"""
Entity operations as seen by feature code.

Each public method runs resolve -> check -> scope -> store -> record as
one unit of work and commits it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.config import get_settings
from entitygraph.core.errors import ConflictError, EntityGraphError
from entitygraph.core.guard import AccessGuard
from entitygraph.core.logging import get_logger
from entitygraph.core.permissions import (
    ARCHIVE_OBJECTS,
    MANAGE_OBJECTS,
    VIEW_AUDIT_LOGS,
    VIEW_LINKS,
    VIEW_OBJECTS,
    PermissionEvaluator,
)
from entitygraph.core.registry import EntityTypeSpec, TypeRegistry, get_type_registry
from entitygraph.core.scoping import ScopingFilter
from entitygraph.db.models import ActionRecord, Entity, Link
from entitygraph.modules.entities.store import EntityStore, Page
from entitygraph.modules.links.graph import RelationshipGraph

logger = get_logger(__name__)

ACTION_CREATE = "entity.create"
ACTION_UPDATE = "entity.update"
ACTION_ARCHIVE = "entity.archive"
ACTION_READ = "entity.read"


def entity_ref(entity_id: UUID | str) -> str:
    return f"entity:{entity_id}"


@dataclass
class EntityDetail:
    """An entity with its visible edges and latest audit trail."""

    entity: Entity
    outgoing: list[Link] = field(default_factory=list)
    incoming: list[Link] = field(default_factory=list)
    recent_actions: list[ActionRecord] = field(default_factory=list)


@dataclass
class TypeSummary:
    type: str
    count: int
    subtypes: list[str]
    property_keys: list[str]
    registered: bool


@dataclass
class EntityStats:
    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]


class EntityService:
    """Tenant-scoped, permission-checked access to the Entity Store."""

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

    def _spec_for(self, entity: Entity) -> EntityTypeSpec:
        return self._registry.find_entity_type(entity.type, entity.subtype) or EntityTypeSpec(
            type=entity.type, subtype=entity.subtype
        )

    async def _visible(self, scope: ScopingFilter, entity_id: UUID) -> Entity:
        return await scope.require_visible(await self._store.find(entity_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        actor_id: UUID,
        *,
        type_: str,
        subtype: str,
        name: str,
        tenant_id: UUID | None = None,
        owner_tenant_id: UUID | None = None,
        custom_properties: dict[str, Any] | None = None,
        status: str | None = None,
        description: str | None = None,
        locale: str | None = None,
        value: str | None = None,
    ) -> Entity:
        """
        Create an entity in the caller's tenant.

        ``tenant_id`` is the tenant the caller asks to act in; ``owner_tenant_id``
        lets an elevated caller place the entity in any tenant, including the
        system tenant.
        """
        ref = f"entity_type:{type_}/{subtype}"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_OBJECTS, action=ACTION_CREATE, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            spec = self._registry.entity_type(type_, subtype)
            if spec.write_capability != MANAGE_OBJECTS:
                self._guard.check(context, spec.write_capability, resource_hint=ref)
            owner = scope.write_tenant(owner_tenant_id)
            entity = await self._store.create(
                tenant_id=owner,
                type_=type_,
                subtype=subtype,
                name=name,
                created_by=actor_id,
                custom_properties=custom_properties,
                status=status,
                description=description,
                locale=locale,
                value=value,
                reference_scope=await scope.reference_scope(owner),
            )
            ref = entity_ref(entity.id)
            metadata: dict[str, Any] = {"type": type_, "subtype": subtype, "tenant_id": owner}
            if scope.used_bypass:
                metadata.update(scope.bypass_metadata())
            await self._guard.succeed(
                context, action=ACTION_CREATE, resource_ref=ref, metadata=metadata
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_CREATE, resource_ref=ref)
            raise
        return entity

    async def update(
        self,
        actor_id: UUID,
        entity_id: UUID,
        patch: dict[str, Any],
        *,
        tenant_id: UUID | None = None,
        expected_version: int | None = None,
    ) -> Entity:
        ref = entity_ref(entity_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, MANAGE_OBJECTS, action=ACTION_UPDATE, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            entity = await self._visible(scope, entity_id)
            await scope.require_mutable(entity)
            spec = self._spec_for(entity)
            if spec.write_capability != MANAGE_OBJECTS:
                self._guard.check(context, spec.write_capability, resource_hint=ref)
            entity = await self._store.update(
                entity_id,
                patch,
                expected_version=expected_version,
                reference_scope=await scope.reference_scope(entity.tenant_id),
            )
            metadata: dict[str, Any] = {"fields": sorted(patch), "version": entity.version}
            if scope.used_bypass:
                metadata.update(scope.bypass_metadata())
            await self._guard.succeed(
                context,
                action=ACTION_UPDATE,
                resource_ref=ref,
                metadata=metadata,
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_UPDATE, resource_ref=ref)
            raise
        return entity

    async def archive(
        self,
        actor_id: UUID,
        entity_id: UUID,
        *,
        tenant_id: UUID | None = None,
    ) -> Entity:
        """
        Move an entity to the terminal ``archived`` status.

        Links touching the entity are resolved through their link type's
        archive policy: any ``block`` edge rejects the archive, otherwise all
        touching edges are deleted in the same unit of work.
        """
        ref = entity_ref(entity_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, ARCHIVE_OBJECTS, action=ACTION_ARCHIVE, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            entity = await self._visible(scope, entity_id)
            await scope.require_mutable(entity)

            touching = await self._graph.links_touching(entity_id)
            blocking = sorted(
                {
                    row.link_type
                    for row in touching
                    if self._registry.archive_policy(row.link_type) == "block"
                }
            )
            if blocking:
                raise ConflictError(
                    f"Entity has active links that block archiving: {', '.join(blocking)}"
                )
            removed = await self._graph.delete_links(touching)
            entity = await self._store.archive(entity_id)

            metadata: dict[str, Any] = {"cascaded_links": removed}
            if scope.used_bypass:
                metadata.update(scope.bypass_metadata())
            await self._guard.succeed(
                context, action=ACTION_ARCHIVE, resource_ref=ref, metadata=metadata
            )
        except EntityGraphError as exc:
            await self._guard.fail(context, exc, action=ACTION_ARCHIVE, resource_ref=ref)
            raise
        return entity

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(
        self,
        actor_id: UUID,
        entity_id: UUID,
        *,
        tenant_id: UUID | None = None,
    ) -> Entity:
        ref = entity_ref(entity_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_OBJECTS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            entity = await self._visible(scope, entity_id)
            spec = self._spec_for(entity)
            if spec.read_capability != VIEW_OBJECTS:
                self._guard.check(context, spec.read_capability, resource_hint=ref)
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise
        await self._guard.record_bypass(scope, resource_ref=ref)
        return entity

    async def list(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None = None,
        type_: str | None = None,
        subtype: str | None = None,
        status: str | None = None,
        search: str | None = None,
        include_archived: bool = False,
        include_shared: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[Entity]:
        """
        Scoped listing. Without elevation only entities of the resolved tenant
        are returned, plus shared ones when ``include_shared`` is set.
        """
        settings = get_settings()
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        offset = max(offset, 0)
        ref = f"entity_type:{type_ or '*'}/{subtype or '*'}"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_OBJECTS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            entity_scope = await scope.entity_scope(include_shared=include_shared)
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise
        page = await self._store.list(
            entity_scope,
            type_=type_,
            subtype=subtype,
            status=status,
            search=search,
            include_archived=include_archived,
            offset=offset,
            limit=limit,
        )
        await self._guard.record_bypass(scope, resource_ref=ref)
        return page

    async def get_entity_detail(
        self,
        actor_id: UUID,
        entity_id: UUID,
        *,
        tenant_id: UUID | None = None,
    ) -> EntityDetail:
        ref = entity_ref(entity_id)
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_OBJECTS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            entity = await self._visible(scope, entity_id)
            spec = self._spec_for(entity)
            if spec.read_capability != VIEW_OBJECTS:
                self._guard.check(context, spec.read_capability, resource_hint=ref)
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise

        detail = EntityDetail(entity=entity)
        evaluator = self._guard.evaluator
        if evaluator.check(context, VIEW_LINKS).allowed:
            link_tenant = scope.link_tenant()
            detail.outgoing = await self._graph.links_from(entity_id, tenant_id=link_tenant)
            detail.incoming = await self._graph.links_to(entity_id, tenant_id=link_tenant)
        limit = get_settings().recent_actions_limit
        if limit and evaluator.check(context, VIEW_AUDIT_LOGS).allowed:
            detail.recent_actions, _ = await self._guard.actions.query(
                tenant_id=context.tenant_id,
                resource_ref=ref,
                limit=limit,
            )
        await self._guard.record_bypass(scope, resource_ref=ref)
        return detail

    async def type_catalog(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None = None,
        sample_size: int = 20,
    ) -> list[TypeSummary]:
        """Per-type counts, observed subtypes and attribute keys within scope."""
        ref = "entity_type:*"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_OBJECTS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        entity_scope = await scope.entity_scope()
        rows = await self._store.count_by(
            entity_scope, Entity.type, Entity.subtype, include_archived=False
        )

        counts: dict[str, int] = {}
        subtypes: dict[str, set[str]] = {}
        for type_, subtype, count in rows:
            counts[type_] = counts.get(type_, 0) + int(count)
            subtypes.setdefault(type_, set()).add(subtype)
        for spec in self._registry.entity_types():
            counts.setdefault(spec.type, 0)
            subtypes.setdefault(spec.type, set()).add(spec.subtype)

        catalog: list[TypeSummary] = []
        for type_ in sorted(counts):
            keys: set[str] = set()
            if counts[type_]:
                for properties in await self._store.sample_properties(
                    entity_scope, type_, limit=sample_size
                ):
                    keys.update(properties)
            catalog.append(
                TypeSummary(
                    type=type_,
                    count=counts[type_],
                    subtypes=sorted(subtypes[type_]),
                    property_keys=sorted(keys),
                    registered=any(
                        self._registry.is_registered(type_, sub) for sub in subtypes[type_]
                    ),
                )
            )
        await self._guard.record_bypass(scope, resource_ref=ref)
        return catalog

    async def entity_stats(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None = None,
    ) -> EntityStats:
        ref = "entity_type:*"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_OBJECTS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        entity_scope = await scope.entity_scope()
        rows = await self._store.count_by(entity_scope, Entity.type, Entity.status)

        by_status: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for type_, status, count in rows:
            by_status[status] = by_status.get(status, 0) + int(count)
            by_type[type_] = by_type.get(type_, 0) + int(count)
        await self._guard.record_bypass(scope, resource_ref=ref)
        return EntityStats(total=sum(by_status.values()), by_status=by_status, by_type=by_type)
