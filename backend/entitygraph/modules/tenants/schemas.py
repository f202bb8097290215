"""Schemas for tenant and membership endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from entitygraph.db.models import Role, TenantStatus


class TenantCreateRequest(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slug: str
    name: str
    status: TenantStatus
    created_at: datetime


class MemberAddRequest(BaseModel):
    actor_id: UUID
    role: Role


class RoleGrantRequest(BaseModel):
    role: Role


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: UUID
    actor_id: UUID
    role: Role
    is_active: bool
    created_at: datetime
    updated_at: datetime


class MemberListResponse(BaseModel):
    items: list[MemberResponse]
    count: int
