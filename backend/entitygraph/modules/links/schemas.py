"""Pydantic schemas for the link API."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class LinkCreateRequest(BaseModel):
    source_id: UUID
    target_id: UUID
    link_type: str = Field(..., min_length=1, max_length=100)
    attrs: dict[str, Any] = Field(default_factory=dict)


class LinkResponse(BaseModel):
    """Directed, typed edge."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    source_id: UUID
    target_id: UUID
    link_type: str
    attrs: dict[str, Any]
    created_by: UUID
    created_at: datetime
    updated_at: datetime


class LinkListResponse(BaseModel):
    items: list[LinkResponse]
    count: int
