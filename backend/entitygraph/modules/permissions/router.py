"""Endpoints answering "may I?" for the calling actor."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from entitygraph.core.identity import CurrentCaller
from entitygraph.db.session import DbSession
from entitygraph.modules.permissions.schemas import (
    PermissionCheckResponse,
    PermissionSummaryResponse,
)
from entitygraph.modules.permissions.service import PermissionService

router = APIRouter()


@router.get("", response_model=PermissionSummaryResponse)
async def get_my_permissions(
    db: DbSession,
    caller: CurrentCaller,
    capability: Annotated[list[str] | None, Query()] = None,
) -> PermissionSummaryResponse:
    summary = await PermissionService(db).summary(
        caller.actor_id, tenant_id=caller.tenant_id, capabilities=capability
    )
    return PermissionSummaryResponse(
        actor_id=summary.actor_id,
        tenant_id=summary.tenant_id,
        role=summary.role,
        elevated=summary.elevated,
        capabilities=summary.capabilities,
        granted=summary.granted,
    )


@router.get("/{capability}", response_model=PermissionCheckResponse)
async def check_permission(
    capability: str,
    db: DbSession,
    caller: CurrentCaller,
) -> PermissionCheckResponse:
    decision = await PermissionService(db).check(
        caller.actor_id, capability, tenant_id=caller.tenant_id
    )
    return PermissionCheckResponse(
        capability=decision.capability,
        allowed=decision.allowed,
        via_elevation=decision.via_elevation,
        reason=decision.reason,
    )
