"""Schemas for availability management."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AvailabilitySetRequest(BaseModel):
    tenant_id: UUID
    resource_id: UUID
    enabled: bool


class AvailabilityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: UUID
    tenant_id: UUID
    enabled: bool
    link_id: UUID
    updated_at: datetime


class AvailabilityListResponse(BaseModel):
    items: list[AvailabilityResponse]
    count: int
