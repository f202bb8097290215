"""Entity endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from entitygraph.core.identity import CurrentCaller
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.db.models import Entity
from entitygraph.db.session import DbSession
from entitygraph.modules.entities.schemas import (
    ActionSummary,
    EntityCreateRequest,
    EntityDetailResponse,
    EntityListResponse,
    EntityResponse,
    EntityStatsResponse,
    EntityUpdateRequest,
    TypeSummaryResponse,
)
from entitygraph.modules.entities.service import EntityService
from entitygraph.modules.links.schemas import LinkResponse

router = APIRouter()

Registry = Annotated[TypeRegistry, Depends(get_type_registry)]


def _to_response(entity: Entity) -> EntityResponse:
    return EntityResponse.model_validate(entity)


@router.get("", response_model=EntityListResponse)
async def list_entities(
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
    type_: Annotated[str | None, Query(alias="type")] = None,
    subtype: str | None = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    search: str | None = None,
    include_archived: bool = False,
    include_shared: bool = False,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> EntityListResponse:
    page = await EntityService(db, registry).list(
        caller.actor_id,
        tenant_id=caller.tenant_id,
        type_=type_,
        subtype=subtype,
        status=status_filter,
        search=search,
        include_archived=include_archived,
        include_shared=include_shared,
        offset=offset,
        limit=limit,
    )
    return EntityListResponse(
        items=[_to_response(entity) for entity in page.items],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        has_more=page.has_more,
    )


@router.post("", response_model=EntityResponse, status_code=status.HTTP_201_CREATED)
async def create_entity(
    body: EntityCreateRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> EntityResponse:
    entity = await EntityService(db, registry).create(
        caller.actor_id,
        tenant_id=caller.tenant_id,
        owner_tenant_id=body.tenant_id,
        type_=body.type,
        subtype=body.subtype,
        name=body.name,
        description=body.description,
        status=body.status,
        locale=body.locale,
        value=body.value,
        custom_properties=body.custom_properties,
    )
    return _to_response(entity)


@router.get("/types", response_model=list[TypeSummaryResponse])
async def entity_type_catalog(
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> list[TypeSummaryResponse]:
    catalog = await EntityService(db, registry).type_catalog(
        caller.actor_id, tenant_id=caller.tenant_id
    )
    return [
        TypeSummaryResponse(
            type=item.type,
            count=item.count,
            subtypes=item.subtypes,
            property_keys=item.property_keys,
            registered=item.registered,
        )
        for item in catalog
    ]


@router.get("/stats", response_model=EntityStatsResponse)
async def entity_stats(
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> EntityStatsResponse:
    stats = await EntityService(db, registry).entity_stats(
        caller.actor_id, tenant_id=caller.tenant_id
    )
    return EntityStatsResponse(total=stats.total, by_status=stats.by_status, by_type=stats.by_type)


@router.get("/{entity_id:uuid}", response_model=EntityResponse)
async def get_entity(
    entity_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> EntityResponse:
    entity = await EntityService(db, registry).get(
        caller.actor_id, entity_id, tenant_id=caller.tenant_id
    )
    return _to_response(entity)


@router.get("/{entity_id:uuid}/detail", response_model=EntityDetailResponse)
async def get_entity_detail(
    entity_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> EntityDetailResponse:
    detail = await EntityService(db, registry).get_entity_detail(
        caller.actor_id, entity_id, tenant_id=caller.tenant_id
    )
    return EntityDetailResponse(
        entity=_to_response(detail.entity),
        outgoing=[LinkResponse.model_validate(row) for row in detail.outgoing],
        incoming=[LinkResponse.model_validate(row) for row in detail.incoming],
        recent_actions=[ActionSummary.model_validate(row) for row in detail.recent_actions],
    )


@router.patch("/{entity_id:uuid}", response_model=EntityResponse)
async def update_entity(
    entity_id: UUID,
    body: EntityUpdateRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> EntityResponse:
    entity = await EntityService(db, registry).update(
        caller.actor_id,
        entity_id,
        body.to_patch(),
        tenant_id=caller.tenant_id,
        expected_version=body.expected_version,
    )
    return _to_response(entity)


@router.post("/{entity_id:uuid}/archive", response_model=EntityResponse)
async def archive_entity(
    entity_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> EntityResponse:
    entity = await EntityService(db, registry).archive(
        caller.actor_id, entity_id, tenant_id=caller.tenant_id
    )
    return _to_response(entity)
