"""Shared test data: registry contents and the seeded two-tenant world."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.registry import (
    EntityTypeSpec,
    LinkTypeSpec,
    TypeRegistry,
    build_default_registry,
)
from entitygraph.db.models import (
    TENANT_ANCHOR_SUBTYPE,
    TENANT_ANCHOR_TYPE,
    ActionRecord,
    Actor,
    PlatformRole,
    Role,
    Tenant,
    TenantMember,
)
from entitygraph.modules.entities.store import EntityStore
from entitygraph.modules.tenants.service import ensure_system_tenant

PRODUCT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "sku": {"type": "string"},
        "price": {"type": "number", "minimum": 0},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
}

RecordFetcher = Callable[..., Awaitable[list[ActionRecord]]]

TICKET_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"seat": {"type": "string"}},
    "required": ["seat"],
}


@dataclass(frozen=True)
class World:
    """Ids of the seeded tenants and actors; plain UUIDs survive rollbacks."""

    tenant_a: UUID
    tenant_b: UUID
    anchor_a: UUID
    anchor_b: UUID
    super_admin: UUID
    owner_a: UUID
    manager_a: UUID
    employee_a: UUID
    viewer_a: UUID
    manager_b: UUID
    employee_b: UUID
    multi: UUID
    drifter: UUID
    orphan: UUID
    inactive: UUID


def build_test_registry() -> TypeRegistry:
    """Default registry plus the product, ticket and template types used in tests."""
    registry = build_default_registry("block")
    registry.register_entity_type(
        EntityTypeSpec(type="product", subtype="default", schema=PRODUCT_SCHEMA)
    )
    registry.register_entity_type(EntityTypeSpec(type="product", subtype="bundle"))
    registry.register_entity_type(
        EntityTypeSpec(type="ticket", subtype="default", schema=TICKET_SCHEMA)
    )
    registry.register_entity_type(EntityTypeSpec(type="template", subtype="catalog"))
    registry.register_link_type(LinkTypeSpec(link_type="issued_from"))
    registry.register_link_type(LinkTypeSpec(link_type="bundles", archive_policy="cascade"))
    registry.register_link_type(
        LinkTypeSpec(link_type="uses_template", archive_policy="cascade", cross_tenant=True)
    )
    return registry


async def seed_world(session: AsyncSession, registry: TypeRegistry) -> World:
    """
    Two tenants with anchors and a spread of roles.

    ``multi`` belongs to both tenants with tenant B as default; ``drifter``
    belongs to both without a default; ``orphan`` belongs to none.
    """
    await ensure_system_tenant(session)

    tenant_a = Tenant(slug="tenant-a", name="Tenant A")
    tenant_b = Tenant(slug="tenant-b", name="Tenant B")
    session.add_all([tenant_a, tenant_b])
    await session.flush()

    def actor(subject: str, **kwargs: Any) -> Actor:
        row = Actor(subject=subject, display_name=subject, **kwargs)
        session.add(row)
        return row

    super_admin = actor("super-admin", global_role=PlatformRole.SUPER_ADMIN)
    owner_a = actor("owner-a")
    manager_a = actor("manager-a")
    employee_a = actor("employee-a")
    viewer_a = actor("viewer-a")
    manager_b = actor("manager-b")
    employee_b = actor("employee-b")
    multi = actor("multi", default_tenant_id=tenant_b.id)
    drifter = actor("drifter")
    orphan = actor("orphan")
    inactive = actor("inactive", is_active=False)
    await session.flush()

    memberships = [
        (tenant_a, owner_a, Role.ORG_OWNER),
        (tenant_a, manager_a, Role.BUSINESS_MANAGER),
        (tenant_a, employee_a, Role.EMPLOYEE),
        (tenant_a, viewer_a, Role.VIEWER),
        (tenant_b, manager_b, Role.BUSINESS_MANAGER),
        (tenant_b, employee_b, Role.EMPLOYEE),
        (tenant_a, multi, Role.EMPLOYEE),
        (tenant_b, multi, Role.VIEWER),
        (tenant_a, drifter, Role.VIEWER),
        (tenant_b, drifter, Role.VIEWER),
        (tenant_a, inactive, Role.EMPLOYEE),
    ]
    for tenant, member, role in memberships:
        session.add(TenantMember(tenant_id=tenant.id, actor_id=member.id, role=role))
    await session.flush()

    store = EntityStore(session, registry)
    anchors: dict[UUID, UUID] = {}
    for tenant in (tenant_a, tenant_b):
        anchor = await store.create(
            tenant_id=tenant.id,
            type_=TENANT_ANCHOR_TYPE,
            subtype=TENANT_ANCHOR_SUBTYPE,
            name=tenant.name,
            created_by=super_admin.id,
            custom_properties={"slug": tenant.slug},
        )
        anchors[tenant.id] = anchor.id
    await session.commit()

    return World(
        tenant_a=tenant_a.id,
        tenant_b=tenant_b.id,
        anchor_a=anchors[tenant_a.id],
        anchor_b=anchors[tenant_b.id],
        super_admin=super_admin.id,
        owner_a=owner_a.id,
        manager_a=manager_a.id,
        employee_a=employee_a.id,
        viewer_a=viewer_a.id,
        manager_b=manager_b.id,
        employee_b=employee_b.id,
        multi=multi.id,
        drifter=drifter.id,
        orphan=orphan.id,
        inactive=inactive.id,
    )
