"""
Relationship Graph: typed, directed edges between entities.

One ``links`` table serves both traversal directions through the
``(source_id, link_type)`` and ``(target_id, link_type)`` indexes. Queries
accept ``tenant_id`` as the link-ownership filter produced by the Scoping
Filter; ``None`` means unrestricted.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import Select, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import ConflictError, NotFoundError, ValidationError
from entitygraph.core.logging import get_logger
from entitygraph.db.models import ARCHIVED_STATUS, Entity, Link, as_utc, utcnow

logger = get_logger(__name__)


class Direction(str, Enum):
    """Traversal direction relative to the starting entity."""

    FORWARD = "forward"
    BACKWARD = "backward"


class RelationshipGraph:
    """Persistence and traversal for ``Link`` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def link(
        self,
        *,
        tenant_id: UUID,
        source: Entity,
        target: Entity,
        link_type: str,
        created_by: UUID,
        attrs: dict[str, Any] | None = None,
    ) -> Link:
        """
        Create an edge. Duplicate ``(source, target, link_type)`` triples raise
        ``ConflictError``; the unique constraint settles concurrent attempts.
        """
        if not link_type or not link_type.strip():
            raise ValidationError("link_type must be a non-empty string")
        if source.id == target.id:
            raise ValidationError("An entity cannot be linked to itself")
        for endpoint in (source, target):
            if endpoint.status == ARCHIVED_STATUS:
                raise ValidationError(f"Entity {endpoint.id} is archived and cannot be linked")

        if await self.find(source.id, target.id, link_type) is not None:
            logger.info(
                "link_conflict",
                source_id=str(source.id),
                target_id=str(target.id),
                link_type=link_type,
            )
            raise ConflictError(f"Link '{link_type}' from {source.id} to {target.id} already exists")

        now = utcnow()
        row = Link(
            tenant_id=tenant_id,
            source_id=source.id,
            target_id=target.id,
            link_type=link_type,
            attrs=dict(attrs or {}),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            logger.info("link_conflict", source_id=str(source.id), target_id=str(target.id))
            raise ConflictError(
                f"Link '{link_type}' from {source.id} to {target.id} already exists"
            ) from exc
        logger.info(
            "link_created",
            link_id=str(row.id),
            link_type=link_type,
            source_id=str(source.id),
            target_id=str(target.id),
        )
        return row

    async def get(self, link_id: UUID) -> Link:
        row = await self._session.get(Link, link_id, populate_existing=True)
        if row is None:
            raise NotFoundError("Link not found")
        return row

    async def find(self, source_id: UUID, target_id: UUID, link_type: str) -> Link | None:
        result = await self._session.execute(
            select(Link)
            .where(
                Link.source_id == source_id,
                Link.target_id == target_id,
                Link.link_type == link_type,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_attrs(self, row: Link, attrs: dict[str, Any]) -> Link:
        row.attrs = dict(attrs)
        now = utcnow()
        previous = as_utc(row.updated_at)
        row.updated_at = now if now > previous else previous
        await self._session.flush()
        return row

    async def unlink(self, link_id: UUID) -> Link:
        row = await self.get(link_id)
        await self._session.delete(row)
        await self._session.flush()
        logger.info("link_deleted", link_id=str(link_id), link_type=row.link_type)
        return row

    async def links_from(
        self,
        source_id: UUID,
        link_type: str | None = None,
        *,
        tenant_id: UUID | None = None,
    ) -> list[Link]:
        stmt = select(Link).where(Link.source_id == source_id)
        return await self._fetch(stmt, link_type, tenant_id)

    async def links_to(
        self,
        target_id: UUID,
        link_type: str | None = None,
        *,
        tenant_id: UUID | None = None,
    ) -> list[Link]:
        stmt = select(Link).where(Link.target_id == target_id)
        return await self._fetch(stmt, link_type, tenant_id)

    async def links_touching(self, entity_id: UUID) -> list[Link]:
        """Every edge with ``entity_id`` at either end, regardless of owner."""
        stmt = select(Link).where(or_(Link.source_id == entity_id, Link.target_id == entity_id))
        return await self._fetch(stmt, None, None)

    async def neighbors_of(
        self,
        entity_id: UUID,
        link_type: str | None,
        direction: Direction,
        *,
        tenant_id: UUID | None = None,
    ) -> list[Entity]:
        """Dereference the opposite endpoint of each matching edge."""
        if direction == Direction.FORWARD:
            stmt = select(Entity).join(Link, Link.target_id == Entity.id).where(
                Link.source_id == entity_id
            )
        else:
            stmt = select(Entity).join(Link, Link.source_id == Entity.id).where(
                Link.target_id == entity_id
            )
        if link_type is not None:
            stmt = stmt.where(Link.link_type == link_type)
        if tenant_id is not None:
            stmt = stmt.where(Link.tenant_id == tenant_id)
        result = await self._session.execute(
            stmt.order_by(Link.created_at.asc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    async def delete_links(self, rows: Sequence[Link]) -> int:
        if not rows:
            return 0
        for row in rows:
            await self._session.delete(row)
        await self._session.flush()
        return len(rows)

    async def _fetch(
        self,
        stmt: Select[tuple[Link]],
        link_type: str | None,
        tenant_id: UUID | None,
    ) -> list[Link]:
        if link_type is not None:
            stmt = stmt.where(Link.link_type == link_type)
        if tenant_id is not None:
            stmt = stmt.where(Link.tenant_id == tenant_id)
        result = await self._session.execute(
            stmt.order_by(Link.created_at.asc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
