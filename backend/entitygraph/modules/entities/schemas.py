"""Pydantic schemas for the entity API."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from entitygraph.db.models import ActionOutcome
from entitygraph.modules.links.schemas import LinkResponse


class EntityCreateRequest(BaseModel):
    """Create request; ``tenant_id`` is only honoured for elevated callers."""

    type: str = Field(..., min_length=1, max_length=100)
    subtype: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    status: str | None = Field(default=None, max_length=50)
    locale: str | None = Field(default=None, max_length=20)
    value: str | None = None
    custom_properties: dict[str, Any] = Field(default_factory=dict)
    tenant_id: UUID | None = None


class EntityUpdateRequest(BaseModel):
    """
    Partial update. Unknown keys are kept so that attempts to change
    immutable fields reach the store and are rejected there.
    """

    model_config = ConfigDict(extra="allow")

    name: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    status: str | None = Field(default=None, max_length=50)
    locale: str | None = Field(default=None, max_length=20)
    value: str | None = None
    custom_properties: dict[str, Any] | None = None
    expected_version: int | None = Field(default=None, ge=1)

    def to_patch(self) -> dict[str, Any]:
        patch = self.model_dump(exclude_unset=True)
        patch.pop("expected_version", None)
        return patch


class EntityResponse(BaseModel):
    """Entity as returned to feature code."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    type: str
    subtype: str
    name: str
    description: str | None = None
    status: str
    locale: str | None = None
    value: str | None = None
    custom_properties: dict[str, Any]
    created_by: UUID
    created_at: datetime
    updated_at: datetime
    version: int


class EntityListResponse(BaseModel):
    items: list[EntityResponse]
    total: int
    offset: int
    limit: int
    has_more: bool


class ActionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID
    action: str
    outcome: ActionOutcome
    elevated: bool
    recorded_at: datetime


class EntityDetailResponse(BaseModel):
    """Entity with its visible edges and latest actions."""

    entity: EntityResponse
    outgoing: list[LinkResponse]
    incoming: list[LinkResponse]
    recent_actions: list[ActionSummary]


class TypeSummaryResponse(BaseModel):
    type: str
    count: int
    subtypes: list[str]
    property_keys: list[str]
    registered: bool


class EntityStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]
