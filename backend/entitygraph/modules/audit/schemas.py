"""Pydantic schemas for Action Log responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from entitygraph.db.models import ActionOutcome


class ActionRecordResponse(BaseModel):
    """Single action record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_id: UUID
    tenant_id: UUID | None = None
    action: str
    resource_ref: str
    outcome: ActionOutcome
    elevated: bool
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="metadata_")
    recorded_at: datetime
    record_hash: str
    prev_record_hash: str
    chain_sequence: int


class ActionRecordListResponse(BaseModel):
    """Paginated list of action records."""

    items: list[ActionRecordResponse]
    total: int
    offset: int
    limit: int
    has_more: bool


class ChainVerificationResponse(BaseModel):
    """Result of verifying one hash chain."""

    is_valid: bool
    verified_count: int
    first_break_at: int | None = None
    errors: list[str]
    tenant_id: UUID | None = None
