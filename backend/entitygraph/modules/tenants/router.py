"""Tenant and membership endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from entitygraph.core.identity import CurrentCaller
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.db.session import DbSession
from entitygraph.modules.tenants.schemas import (
    MemberAddRequest,
    MemberListResponse,
    MemberResponse,
    RoleGrantRequest,
    TenantCreateRequest,
    TenantResponse,
)
from entitygraph.modules.tenants.service import TenantService

router = APIRouter()

Registry = Annotated[TypeRegistry, Depends(get_type_registry)]


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreateRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> TenantResponse:
    tenant = await TenantService(db, registry).create_tenant(
        caller.actor_id,
        slug=body.slug,
        name=body.name,
        acting_tenant_id=caller.tenant_id,
    )
    return TenantResponse.model_validate(tenant)


@router.get("/{tenant_id:uuid}/members", response_model=MemberListResponse)
async def list_members(
    tenant_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
    include_inactive: bool = False,
) -> MemberListResponse:
    members = await TenantService(db, registry).list_members(
        caller.actor_id, tenant_id=tenant_id, include_inactive=include_inactive
    )
    return MemberListResponse(
        items=[MemberResponse.model_validate(member) for member in members],
        count=len(members),
    )


@router.post(
    "/{tenant_id:uuid}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    tenant_id: UUID,
    body: MemberAddRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> MemberResponse:
    member = await TenantService(db, registry).add_member(
        caller.actor_id,
        tenant_id=tenant_id,
        member_actor_id=body.actor_id,
        role=body.role,
    )
    return MemberResponse.model_validate(member)


@router.put("/{tenant_id:uuid}/members/{actor_id:uuid}/role", response_model=MemberResponse)
async def grant_role(
    tenant_id: UUID,
    actor_id: UUID,
    body: RoleGrantRequest,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> MemberResponse:
    member = await TenantService(db, registry).grant_role(
        caller.actor_id,
        tenant_id=tenant_id,
        member_actor_id=actor_id,
        role=body.role,
    )
    return MemberResponse.model_validate(member)


@router.delete("/{tenant_id:uuid}/members/{actor_id:uuid}", response_model=MemberResponse)
async def remove_member(
    tenant_id: UUID,
    actor_id: UUID,
    db: DbSession,
    caller: CurrentCaller,
    registry: Registry,
) -> MemberResponse:
    member = await TenantService(db, registry).remove_member(
        caller.actor_id,
        tenant_id=tenant_id,
        member_actor_id=actor_id,
    )
    return MemberResponse.model_validate(member)
