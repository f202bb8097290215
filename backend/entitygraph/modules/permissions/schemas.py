"""Schemas for permission queries."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel

from entitygraph.db.models import Role


class PermissionCheckResponse(BaseModel):
    capability: str
    allowed: bool
    via_elevation: bool = False
    reason: str | None = None


class PermissionSummaryResponse(BaseModel):
    actor_id: UUID
    tenant_id: UUID | None = None
    role: Role
    elevated: bool
    capabilities: dict[str, bool]
    granted: list[str]
