"""
Action Log: append-only audit trail of state changes and denied attempts.

The orchestration layer calls ``ActionLog.record()`` right after every
mutating call and after every permission denial or scope violation. The
Entity Store and Relationship Graph never write here themselves.

Records are chained per tenant (NULL tenant = platform chain) with SHA-256
over RFC 8785 canonical JSON, see ``entitygraph.core.integrity``. On
PostgreSQL a transaction-scoped advisory lock serializes appends to one
chain; SQLite serializes writers on its own.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Select, desc, func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import ConflictError
from entitygraph.core.integrity import (
    GENESIS_HASH,
    ChainVerificationResult,
    compute_record_hash,
    verify_chain,
)
from entitygraph.core.logging import get_logger
from entitygraph.db.models import ActionOutcome, ActionRecord, as_utc, utcnow

logger = get_logger(__name__)


def _jsonable(value: Any) -> Any:
    """Coerce metadata into plain JSON types so it can be canonicalized."""
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, datetime, date)):
        return value.isoformat() if isinstance(value, (datetime, date)) else str(value)
    return value


def record_payload(
    *,
    actor_id: UUID,
    tenant_id: UUID | None,
    action: str,
    resource_ref: str,
    outcome: ActionOutcome,
    elevated: bool,
    metadata: dict[str, Any] | None,
    recorded_at: datetime,
) -> dict[str, Any]:
    """Canonical dict covered by the record hash."""
    data: dict[str, Any] = {
        "actor_id": str(actor_id),
        "action": action,
        "resource_ref": resource_ref,
        "outcome": outcome.value,
        "elevated": elevated,
        "recorded_at": as_utc(recorded_at).isoformat(),
    }
    if tenant_id is not None:
        data["tenant_id"] = str(tenant_id)
    if metadata is not None:
        data["metadata"] = metadata
    return data


def record_to_chain_dict(record: ActionRecord) -> dict[str, Any]:
    data = record_payload(
        actor_id=record.actor_id,
        tenant_id=record.tenant_id,
        action=record.action,
        resource_ref=record.resource_ref,
        outcome=ActionOutcome(record.outcome),
        elevated=record.elevated,
        metadata=record.metadata_,
        recorded_at=record.recorded_at,
    )
    data["record_hash"] = record.record_hash
    data["prev_record_hash"] = record.prev_record_hash
    data["chain_sequence"] = record.chain_sequence
    return data


def _tenant_clause(tenant_id: UUID | None) -> Any:
    if tenant_id is None:
        return ActionRecord.tenant_id.is_(None)
    return ActionRecord.tenant_id == tenant_id


class ActionLog:
    """Append and query interface over ``action_records``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        *,
        actor_id: UUID,
        tenant_id: UUID | None,
        action: str,
        resource_ref: str,
        outcome: ActionOutcome,
        metadata: dict[str, Any] | None = None,
        elevated: bool = False,
    ) -> ActionRecord:
        """
        Append one record to the chain of ``tenant_id``.

        The record joins the caller's transaction; the caller commits it
        together with the change it describes.
        """
        await self._lock_chain(tenant_id)
        prev_hash, prev_sequence = await self._chain_head(tenant_id)

        clean_metadata = _jsonable(metadata) if metadata is not None else None
        recorded_at = utcnow()
        payload = record_payload(
            actor_id=actor_id,
            tenant_id=tenant_id,
            action=action,
            resource_ref=resource_ref,
            outcome=outcome,
            elevated=elevated,
            metadata=clean_metadata,
            recorded_at=recorded_at,
        )

        entry = ActionRecord(
            actor_id=actor_id,
            tenant_id=tenant_id,
            action=action,
            resource_ref=resource_ref,
            outcome=outcome,
            elevated=elevated,
            metadata_=clean_metadata,
            recorded_at=recorded_at,
            record_hash=compute_record_hash(payload, prev_hash),
            prev_record_hash=prev_hash,
            chain_sequence=prev_sequence + 1,
        )
        self._session.add(entry)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                f"Action chain moved past sequence {prev_sequence}; retry the call"
            ) from exc

        logger.debug(
            "action_recorded",
            action=action,
            resource_ref=resource_ref,
            outcome=outcome.value,
            elevated=elevated,
            chain_sequence=entry.chain_sequence,
        )
        return entry

    async def query(
        self,
        *,
        tenant_id: UUID | None = None,
        platform_only: bool = False,
        since: datetime | None = None,
        until: datetime | None = None,
        action: str | None = None,
        outcome: ActionOutcome | None = None,
        actor_id: UUID | None = None,
        resource_ref: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[ActionRecord], int]:
        """Filter records for compliance review; newest first."""
        stmt: Select[tuple[ActionRecord]] = select(ActionRecord)
        if platform_only:
            stmt = stmt.where(ActionRecord.tenant_id.is_(None))
        elif tenant_id is not None:
            stmt = stmt.where(ActionRecord.tenant_id == tenant_id)
        if since is not None:
            stmt = stmt.where(ActionRecord.recorded_at >= since)
        if until is not None:
            stmt = stmt.where(ActionRecord.recorded_at < until)
        if action is not None:
            stmt = stmt.where(ActionRecord.action == action)
        if outcome is not None:
            stmt = stmt.where(ActionRecord.outcome == outcome)
        if actor_id is not None:
            stmt = stmt.where(ActionRecord.actor_id == actor_id)
        if resource_ref is not None:
            stmt = stmt.where(ActionRecord.resource_ref == resource_ref)

        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self._session.execute(
            stmt.order_by(desc(ActionRecord.recorded_at), desc(ActionRecord.chain_sequence))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def verify(self, tenant_id: UUID | None) -> ChainVerificationResult:
        result = await self._session.execute(
            select(ActionRecord)
            .where(_tenant_clause(tenant_id))
            .order_by(ActionRecord.chain_sequence.asc())
        )
        records = [record_to_chain_dict(row) for row in result.scalars().all()]
        return verify_chain(records)

    async def _chain_head(self, tenant_id: UUID | None) -> tuple[str, int]:
        result = await self._session.execute(
            select(ActionRecord.record_hash, ActionRecord.chain_sequence)
            .where(_tenant_clause(tenant_id))
            .order_by(desc(ActionRecord.chain_sequence))
            .limit(1)
        )
        row = result.first()
        if row is None:
            return GENESIS_HASH, -1
        return str(row[0]), int(row[1])

    async def _lock_chain(self, tenant_id: UUID | None) -> None:
        if self._session.get_bind().dialect.name != "postgresql":
            return
        if tenant_id is None:
            await self._session.execute(text("SELECT pg_advisory_xact_lock(0)"))
        else:
            await self._session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:tid))"),
                {"tid": str(tenant_id)},
            )
