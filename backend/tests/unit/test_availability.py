"""Tests for shared-resource availability."""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    ScopeViolationError,
    ValidationError,
)
from entitygraph.core.registry import TypeRegistry
from entitygraph.db.models import SYSTEM_TENANT_ID, ActionOutcome
from entitygraph.modules.availability.service import AvailabilityService
from entitygraph.modules.entities.service import EntityService
from tests.support import RecordFetcher, World


async def _product(entities: EntityService, actor_id: UUID, name: str = "P1") -> UUID:
    entity = await entities.create(actor_id, type_="product", subtype="default", name=name)
    return entity.id


async def _system_template(entities: EntityService, world: World) -> UUID:
    entity = await entities.create(
        world.super_admin,
        type_="template",
        subtype="catalog",
        name="Shared template",
        owner_tenant_id=SYSTEM_TENANT_ID,
    )
    return entity.id


class TestAvailabilityScenario:
    """A product owned by tenant A becomes readable by tenant B only while shared."""

    @pytest.mark.asyncio
    async def test_share_and_revoke(
        self,
        db_session: AsyncSession,
        registry: TypeRegistry,
        world: World,
        fetch_records: RecordFetcher,
    ) -> None:
        entities = EntityService(db_session, registry)
        availability = AvailabilityService(db_session, registry)
        p1 = await _product(entities, world.employee_a)

        with pytest.raises(NotFoundError):
            await entities.get(world.employee_b, p1)

        assert (await entities.get(world.super_admin, p1)).id == p1

        entry = await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_b, resource_id=p1, enabled=True
        )
        assert entry.enabled
        assert entry.tenant_id == world.tenant_b

        fetched = await entities.get(world.employee_b, p1)
        assert fetched.id == p1
        assert fetched.tenant_id == world.tenant_a

        await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_b, resource_id=p1, enabled=False
        )
        with pytest.raises(NotFoundError):
            await entities.get(world.employee_b, p1)

        assert len(await fetch_records(action="availability.set")) == 2
        assert await fetch_records(outcome=ActionOutcome.DENIED) == []

    @pytest.mark.asyncio
    async def test_toggling_reuses_one_edge(
        self, db_session: AsyncSession, registry: TypeRegistry, world: World
    ) -> None:
        entities = EntityService(db_session, registry)
        availability = AvailabilityService(db_session, registry)
        p1 = await _product(entities, world.employee_a)

        first = await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_b, resource_id=p1, enabled=True
        )
        second = await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_b, resource_id=p1, enabled=False
        )
        assert first.link_id == second.link_id

        entries = await availability.list_availability(world.super_admin, p1)
        assert [(e.tenant_id, e.enabled) for e in entries] == [(world.tenant_b, False)]


class TestSharedVisibility:
    """Tests for how shared entities appear to the receiving tenant."""

    @pytest.mark.asyncio
    async def test_list_includes_shared_only_on_request(
        self, db_session: AsyncSession, registry: TypeRegistry, world: World
    ) -> None:
        entities = EntityService(db_session, registry)
        availability = AvailabilityService(db_session, registry)
        template = await _system_template(entities, world)
        own = await _product(entities, world.employee_b, name="B product")
        await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_b, resource_id=template, enabled=True
        )

        plain = await entities.list(world.employee_b)
        assert template not in {entity.id for entity in plain.items}
        assert own in {entity.id for entity in plain.items}

        shared = await entities.list(world.employee_b, include_shared=True)
        assert template in {entity.id for entity in shared.items}

        other = await entities.list(world.employee_a, include_shared=True)
        assert template not in {entity.id for entity in other.items}

    @pytest.mark.asyncio
    async def test_shared_entity_is_read_only(
        self,
        db_session: AsyncSession,
        registry: TypeRegistry,
        world: World,
        fetch_records: RecordFetcher,
    ) -> None:
        entities = EntityService(db_session, registry)
        availability = AvailabilityService(db_session, registry)
        p1 = await _product(entities, world.employee_a)
        await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_b, resource_id=p1, enabled=True
        )

        with pytest.raises(ScopeViolationError):
            await entities.update(world.employee_b, p1, {"name": "Renamed by B"})
        with pytest.raises(ScopeViolationError):
            await entities.archive(world.manager_b, p1)

        denied = await fetch_records(outcome=ActionOutcome.DENIED)
        assert [record.action for record in denied] == ["entity.update", "entity.archive"]
        assert (await entities.get(world.employee_a, p1)).name == "P1"


class TestAvailabilityGuards:
    """Tests for who may manage availability and on what."""

    @pytest.mark.asyncio
    async def test_unelevated_caller_is_denied(
        self,
        db_session: AsyncSession,
        registry: TypeRegistry,
        world: World,
        fetch_records: RecordFetcher,
    ) -> None:
        entities = EntityService(db_session, registry)
        p1 = await _product(entities, world.owner_a)
        with pytest.raises(PermissionDeniedError):
            await AvailabilityService(db_session, registry).set_availability(
                world.owner_a, tenant_id=world.tenant_b, resource_id=p1, enabled=True
            )
        denied = await fetch_records(outcome=ActionOutcome.DENIED)
        assert len(denied) == 1
        assert denied[0].action == "availability.set"
        assert denied[0].metadata_["capability"] == "manage_availability"

    @pytest.mark.asyncio
    async def test_unelevated_listing_is_denied(
        self, db_session: AsyncSession, registry: TypeRegistry, world: World
    ) -> None:
        entities = EntityService(db_session, registry)
        p1 = await _product(entities, world.owner_a)
        with pytest.raises(PermissionDeniedError):
            await AvailabilityService(db_session, registry).list_availability(world.owner_a, p1)

    @pytest.mark.asyncio
    async def test_resource_already_owned_by_tenant(
        self, db_session: AsyncSession, registry: TypeRegistry, world: World
    ) -> None:
        entities = EntityService(db_session, registry)
        p1 = await _product(entities, world.employee_a)
        with pytest.raises(ValidationError):
            await AvailabilityService(db_session, registry).set_availability(
                world.super_admin, tenant_id=world.tenant_a, resource_id=p1, enabled=True
            )

    @pytest.mark.asyncio
    async def test_unknown_tenant_or_resource(
        self, db_session: AsyncSession, registry: TypeRegistry, world: World
    ) -> None:
        entities = EntityService(db_session, registry)
        availability = AvailabilityService(db_session, registry)
        p1 = await _product(entities, world.employee_a)
        with pytest.raises(NotFoundError):
            await availability.set_availability(
                world.super_admin, tenant_id=uuid4(), resource_id=p1, enabled=True
            )
        with pytest.raises(NotFoundError):
            await availability.set_availability(
                world.super_admin, tenant_id=world.tenant_b, resource_id=uuid4(), enabled=True
            )

    @pytest.mark.asyncio
    async def test_archiving_shared_entity_cascades_availability(
        self, db_session: AsyncSession, registry: TypeRegistry, world: World
    ) -> None:
        entities = EntityService(db_session, registry)
        availability = AvailabilityService(db_session, registry)
        template = await _system_template(entities, world)
        await availability.set_availability(
            world.super_admin, tenant_id=world.tenant_a, resource_id=template, enabled=True
        )

        archived = await entities.archive(world.super_admin, template)
        assert archived.status == "archived"
        assert await availability.list_availability(world.super_admin, template) == []
