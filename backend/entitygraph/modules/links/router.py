"""Link endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from entitygraph.core.identity import CurrentCaller
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.db.models import Link
from entitygraph.db.session import DbSession
from entitygraph.modules.entities.schemas import EntityResponse
from entitygraph.modules.links.graph import Direction
from entitygraph.modules.links.schemas import LinkCreateRequest, LinkListResponse, LinkResponse
from entitygraph.modules.links.service import LinkService

router = APIRouter()

Registry = Annotated[TypeRegistry, Depends(get_type_registry)]


def _to_list(rows: list[Link]) -> LinkListResponse:
    return LinkListResponse(
        items=[LinkResponse.model_validate(row) for row in rows],
        count=len(rows),
    )


@router.post("", response_model=LinkResponse, status_code=status.HTTP_201_CREATED)
async def create_link(
    body: LinkCreateRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> LinkResponse:
    row = await LinkService(db, registry).link(
        caller.actor_id,
        source_id=body.source_id,
        target_id=body.target_id,
        link_type=body.link_type,
        attrs=body.attrs,
        tenant_id=caller.tenant_id,
    )
    return LinkResponse.model_validate(row)


@router.delete("/{link_id:uuid}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    link_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> None:
    await LinkService(db, registry).unlink(caller.actor_id, link_id, tenant_id=caller.tenant_id)


@router.get("/from/{entity_id:uuid}", response_model=LinkListResponse)
async def links_from(
    entity_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
    link_type: str | None = None,
) -> LinkListResponse:
    rows = await LinkService(db, registry).links_from(
        caller.actor_id, entity_id, link_type, tenant_id=caller.tenant_id
    )
    return _to_list(rows)


@router.get("/to/{entity_id:uuid}", response_model=LinkListResponse)
async def links_to(
    entity_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
    link_type: str | None = None,
) -> LinkListResponse:
    rows = await LinkService(db, registry).links_to(
        caller.actor_id, entity_id, link_type, tenant_id=caller.tenant_id
    )
    return _to_list(rows)


@router.get("/neighbors/{entity_id:uuid}", response_model=list[EntityResponse])
async def neighbors_of(
    entity_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
    link_type: str | None = None,
    direction: Annotated[Direction, Query()] = Direction.FORWARD,
) -> list[EntityResponse]:
    entities = await LinkService(db, registry).neighbors_of(
        caller.actor_id, entity_id, link_type, direction, tenant_id=caller.tenant_id
    )
    return [EntityResponse.model_validate(entity) for entity in entities]
