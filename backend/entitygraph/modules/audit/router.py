"""Action Log endpoints for compliance review."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from entitygraph.core.identity import CurrentCaller
from entitygraph.db.models import ActionOutcome
from entitygraph.db.session import DbSession
from entitygraph.modules.audit.schemas import (
    ActionRecordListResponse,
    ActionRecordResponse,
    ChainVerificationResponse,
)
from entitygraph.modules.audit.service import AuditService

router = APIRouter()


@router.get("/records", response_model=ActionRecordListResponse)
async def list_action_records(
    db: DbSession,
    caller: CurrentCaller,
    tenant_id: UUID | None = None,
    platform_only: bool = False,
    since: datetime | None = None,
    until: datetime | None = None,
    action: str | None = None,
    outcome: ActionOutcome | None = None,
    actor_id: UUID | None = None,
    resource_ref: str | None = None,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> ActionRecordListResponse:
    page = await AuditService(db).query(
        caller.actor_id,
        tenant_id=caller.tenant_id,
        filter_tenant_id=tenant_id,
        platform_only=platform_only,
        since=since,
        until=until,
        action=action,
        outcome=outcome,
        filter_actor_id=actor_id,
        resource_ref=resource_ref,
        offset=offset,
        limit=limit,
    )
    return ActionRecordListResponse(
        items=[ActionRecordResponse.model_validate(row) for row in page.items],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
        has_more=page.has_more,
    )


@router.get("/verify", response_model=ChainVerificationResponse)
async def verify_action_chain(
    db: DbSession,
    caller: CurrentCaller,
    tenant_id: UUID | None = None,
) -> ChainVerificationResponse:
    target = tenant_id or caller.tenant_id
    result = await AuditService(db).verify_chain(
        caller.actor_id, tenant_id=caller.tenant_id, chain_tenant_id=tenant_id
    )
    return ChainVerificationResponse(
        is_valid=result.is_valid,
        verified_count=result.verified_count,
        first_break_at=result.first_break_at,
        errors=result.errors,
        tenant_id=target,
    )
