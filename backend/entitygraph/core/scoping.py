"""
Scoping Filter and availability lookup.

Every Entity Store and Relationship Graph call made by a service is
intersected with the resolved tenant. Entities owned by another tenant
become visible only through an enabled ``available_to`` edge pointing at
the reading tenant's anchor entity.

Elevated contexts skip the tenant intersection, but only through
``ScopingFilter._bypass``. Each bypass is remembered on the filter so the
calling service can record it in the Action Log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import ColumnElement, Select, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.context import ResolvedContext
from entitygraph.core.errors import NotFoundError, ScopeViolationError, ValidationError
from entitygraph.core.logging import get_logger
from entitygraph.core.registry import LinkTypeSpec
from entitygraph.db.models import (
    AVAILABILITY_LINK_TYPE,
    SYSTEM_TENANT_ID,
    TENANT_ANCHOR_SUBTYPE,
    TENANT_ANCHOR_TYPE,
    Entity,
    Link,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class EntityScope:
    """
    Row filter handed to the Entity Store.

    ``tenant_id=None`` means unrestricted and is only ever produced by an
    elevated bypass.
    """

    tenant_id: UUID | None
    shared_ids: frozenset[UUID] = field(default_factory=frozenset)

    @property
    def unrestricted(self) -> bool:
        return self.tenant_id is None

    def clause(self) -> ColumnElement[bool] | None:
        if self.tenant_id is None:
            return None
        owned = Entity.tenant_id == self.tenant_id
        if not self.shared_ids:
            return owned
        return or_(owned, Entity.id.in_(sorted(self.shared_ids)))


def is_enabled_edge(link: Link) -> bool:
    return bool((link.attrs or {}).get("enabled") is True)


def anchor_ids_stmt(tenant_id: UUID) -> Select[tuple[UUID]]:
    return select(Entity.id).where(
        Entity.tenant_id == tenant_id,
        Entity.type == TENANT_ANCHOR_TYPE,
        Entity.subtype == TENANT_ANCHOR_SUBTYPE,
    )


class ScopingFilter:
    """Tenant intersection for one resolved context; create one per operation."""

    def __init__(self, session: AsyncSession, context: ResolvedContext) -> None:
        self._session = session
        self._context = context
        self.bypasses: list[str] = []
        self.bypassed_ids: list[str] = []

    @property
    def context(self) -> ResolvedContext:
        return self._context

    @property
    def used_bypass(self) -> bool:
        return bool(self.bypasses)

    def _bypass(self, reason: str, resource_id: UUID | None = None) -> bool:
        """The one branch through which an elevated context skips tenant scoping."""
        if not self._context.elevated:
            return False
        if reason not in self.bypasses:
            self.bypasses.append(reason)
        if resource_id is not None and str(resource_id) not in self.bypassed_ids:
            self.bypassed_ids.append(str(resource_id))
        logger.info(
            "elevated_bypass",
            reason=reason,
            resource_id=str(resource_id) if resource_id else None,
            acting_tenant_id=str(self._context.tenant_id) if self._context.tenant_id else None,
        )
        return True

    def require_bypass(self, reason: str, resource_id: UUID | None = None) -> None:
        """Cross-tenant access that has no tenant-scoped form."""
        if not self._bypass(reason, resource_id):
            raise ScopeViolationError("This operation requires an elevated context")

    def bypass_metadata(self) -> dict[str, list[str]]:
        return {"bypass": list(self.bypasses), "resource_ids": list(self.bypassed_ids)}

    # ------------------------------------------------------------------
    # Availability index
    # ------------------------------------------------------------------

    async def enabled_shared_ids(self, tenant_id: UUID) -> frozenset[UUID]:
        """Ids of entities shared with ``tenant_id`` through an enabled edge."""
        result = await self._session.execute(
            select(Link)
            .where(
                Link.link_type == AVAILABILITY_LINK_TYPE,
                Link.target_id.in_(anchor_ids_stmt(tenant_id)),
            )
            .execution_options(populate_existing=True)
        )
        return frozenset(link.source_id for link in result.scalars().all() if is_enabled_edge(link))

    async def is_shared_with(self, entity_id: UUID, tenant_id: UUID) -> bool:
        result = await self._session.execute(
            select(Link)
            .where(
                Link.link_type == AVAILABILITY_LINK_TYPE,
                Link.source_id == entity_id,
                Link.target_id.in_(anchor_ids_stmt(tenant_id)),
            )
            .execution_options(populate_existing=True)
        )
        return any(is_enabled_edge(link) for link in result.scalars().all())

    async def visible_to_tenant(self, entity: Entity, tenant_id: UUID) -> bool:
        if entity.tenant_id == tenant_id:
            return True
        return await self.is_shared_with(entity.id, tenant_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def can_see(self, entity: Entity) -> bool:
        tenant_id = self._context.tenant_id
        if tenant_id is not None and await self.visible_to_tenant(entity, tenant_id):
            return True
        return self._bypass("read_entity", entity.id)

    async def require_visible(self, entity: Entity | None) -> Entity:
        """Missing and invisible entities are reported identically."""
        if entity is None or not await self.can_see(entity):
            raise NotFoundError("Entity not found")
        return entity

    async def entity_scope(self, *, include_shared: bool = False) -> EntityScope:
        tenant_id = self._context.tenant_id
        if tenant_id is None:
            if self._bypass("list_entities"):
                return EntityScope(tenant_id=None)
            raise ScopeViolationError("No tenant resolved for this call")
        shared = await self.enabled_shared_ids(tenant_id) if include_shared else frozenset()
        return EntityScope(tenant_id=tenant_id, shared_ids=shared)

    async def reference_scope(self, owner_tenant_id: UUID) -> EntityScope:
        """Entities the owning tenant can see; ids outside it are never looked up."""
        shared = await self.enabled_shared_ids(owner_tenant_id)
        return EntityScope(tenant_id=owner_tenant_id, shared_ids=shared)

    def link_tenant(self) -> UUID | None:
        """Owning tenant links are filtered by; ``None`` after an elevated bypass."""
        tenant_id = self._context.tenant_id
        if tenant_id is not None:
            return tenant_id
        if self._bypass("read_links"):
            return None
        raise ScopeViolationError("No tenant resolved for this call")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_tenant(self, requested_tenant_id: UUID | None = None) -> UUID:
        """Tenant a new entity is stamped with."""
        own = self._context.tenant_id
        if requested_tenant_id is None or requested_tenant_id == own:
            if own is not None:
                return own
            raise ValidationError("An owning tenant is required when acting globally")
        if self._bypass("write_other_tenant", requested_tenant_id):
            return requested_tenant_id
        raise ScopeViolationError("Cannot create entities in another tenant")

    async def require_mutable(self, entity: Entity) -> None:
        """Only the owning tenant mutates an entity; shared readers get a scope violation."""
        tenant_id = self._context.tenant_id
        if tenant_id is not None and entity.tenant_id == tenant_id:
            return
        if self._bypass("mutate_entity", entity.id):
            return
        if tenant_id is not None and await self.is_shared_with(entity.id, tenant_id):
            raise ScopeViolationError("Shared entities are read-only for this tenant")
        raise NotFoundError("Entity not found")

    async def link_owner(self, source: Entity, target: Entity, spec: LinkTypeSpec) -> UUID:
        """
        Tenant that will own a new link between two visible endpoints.

        Unelevated callers must own at least one endpoint; the other one may
        only be a visible system entity reached through a cross-tenant type.
        """
        tenant_id = self._context.tenant_id
        if tenant_id is not None:
            owns_source = source.tenant_id == tenant_id
            owns_target = target.tenant_id == tenant_id
            if owns_source and owns_target:
                return tenant_id
            if owns_source or owns_target:
                other = target if owns_source else source
                if (
                    spec.cross_tenant
                    and other.tenant_id == SYSTEM_TENANT_ID
                    and await self.is_shared_with(other.id, tenant_id)
                ):
                    return tenant_id
        if self._bypass("link_across_tenants", source.id):
            return tenant_id or source.tenant_id
        raise ScopeViolationError(
            f"Link type '{spec.link_type}' cannot connect entities across tenants"
        )

    def require_link_mutable(self, link: Link) -> None:
        tenant_id = self._context.tenant_id
        if tenant_id is not None and link.tenant_id == tenant_id:
            return
        if self._bypass("mutate_link", link.id):
            return
        raise NotFoundError("Link not found")
