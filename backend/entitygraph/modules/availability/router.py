"""Availability endpoints (elevated callers only)."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from entitygraph.core.identity import CurrentCaller
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.db.session import DbSession
from entitygraph.modules.availability.schemas import (
    AvailabilityListResponse,
    AvailabilityResponse,
    AvailabilitySetRequest,
)
from entitygraph.modules.availability.service import AvailabilityEntry, AvailabilityService

router = APIRouter()

Registry = Annotated[TypeRegistry, Depends(get_type_registry)]


def _to_response(entry: AvailabilityEntry) -> AvailabilityResponse:
    return AvailabilityResponse.model_validate(entry)


@router.put("", response_model=AvailabilityResponse)
async def set_availability(
    body: AvailabilitySetRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> AvailabilityResponse:
    entry = await AvailabilityService(db, registry).set_availability(
        caller.actor_id,
        tenant_id=body.tenant_id,
        resource_id=body.resource_id,
        enabled=body.enabled,
        acting_tenant_id=caller.tenant_id,
    )
    return _to_response(entry)


@router.get("/{resource_id:uuid}", response_model=AvailabilityListResponse)
async def list_availability(
    resource_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> AvailabilityListResponse:
    entries = await AvailabilityService(db, registry).list_availability(
        caller.actor_id, resource_id, acting_tenant_id=caller.tenant_id
    )
    return AvailabilityListResponse(items=[_to_response(e) for e in entries], count=len(entries))
