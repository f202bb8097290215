"""
Entity Store: typed, attribute-flexible records.

The store validates shapes and stamps bookkeeping fields; it performs no
authorization. Callers hand it an ``EntityScope`` produced by the Scoping
Filter for every query that returns more than one row.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from entitygraph.core.errors import ConflictError, NotFoundError, ValidationError
from entitygraph.core.logging import get_logger
from entitygraph.core.registry import TypeRegistry
from entitygraph.core.scoping import EntityScope
from entitygraph.db.models import ARCHIVED_STATUS, Entity, as_utc, utcnow

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_STATUS = "active"

MUTABLE_FIELDS = frozenset(
    {"name", "description", "status", "locale", "value", "custom_properties"}
)
IMMUTABLE_FIELDS = frozenset({"type", "subtype", "tenant_id", "organization_id"})


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a scoped listing."""

    items: list[T]
    total: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _uuid_strings(value: Any, path: str = "") -> Iterator[tuple[str, UUID]]:
    """Yield ``(path, uuid)`` for every string in a payload that parses as a UUID."""
    if isinstance(value, Mapping):
        for key, item in value.items():
            yield from _uuid_strings(item, f"{path}.{key}" if path else str(key))
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield from _uuid_strings(item, f"{path}[{index}]")
    elif isinstance(value, str):
        try:
            yield path or "root", uuid.UUID(value)
        except ValueError:
            return


def _properties(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(
            "custom_properties must be an object",
            errors=[{"path": "custom_properties", "message": "expected an object"}],
        )
    return dict(value)


def _same_value(key: str, new_value: Any, current: Any) -> bool:
    if key in ("tenant_id", "organization_id"):
        try:
            return uuid.UUID(str(new_value)) == current
        except ValueError:
            return False
    return bool(new_value == current)


class EntityStore:
    """Persistence for ``Entity`` rows."""

    def __init__(self, session: AsyncSession, registry: TypeRegistry) -> None:
        self._session = session
        self._registry = registry

    async def create(
        self,
        *,
        tenant_id: UUID,
        type_: str,
        subtype: str,
        name: str,
        created_by: UUID,
        custom_properties: dict[str, Any] | None = None,
        status: str | None = None,
        description: str | None = None,
        locale: str | None = None,
        value: str | None = None,
        reference_scope: EntityScope | None = None,
    ) -> Entity:
        properties = _properties(custom_properties)
        self._registry.validate_properties(type_, subtype, properties)
        await self._reject_implicit_references(
            properties, reference_scope or EntityScope(tenant_id=tenant_id)
        )

        status = status or DEFAULT_STATUS
        if status == ARCHIVED_STATUS:
            raise ValidationError("Entities cannot be created in the archived state")
        self._require_name(name)

        now = utcnow()
        entity = Entity(
            tenant_id=tenant_id,
            type=type_,
            subtype=subtype,
            name=name,
            description=description,
            status=status,
            locale=locale,
            value=value,
            custom_properties=properties,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self._session.add(entity)
        await self._session.flush()
        logger.info(
            "entity_created",
            entity_id=str(entity.id),
            tenant_id=str(tenant_id),
            type=type_,
            subtype=subtype,
        )
        return entity

    async def get(self, entity_id: UUID) -> Entity:
        entity = await self.find(entity_id)
        if entity is None:
            raise NotFoundError("Entity not found")
        return entity

    async def find(self, entity_id: UUID) -> Entity | None:
        return await self._session.get(Entity, entity_id, populate_existing=True)

    async def update(
        self,
        entity_id: UUID,
        patch: Mapping[str, Any],
        *,
        expected_version: int | None = None,
        reference_scope: EntityScope | None = None,
    ) -> Entity:
        """
        Apply a partial update.

        ``type``, ``subtype`` and the owning tenant are immutable; sending a
        different value for any of them is a validation error. The payload
        is replaced wholesale and re-validated against its schema. When
        ``expected_version`` is given and the row has moved on, the update
        fails with ``ConflictError``; the version column catches the same
        race at flush time.
        """
        entity = await self.get(entity_id)
        if expected_version is not None and entity.version != expected_version:
            raise ConflictError(
                f"Entity {entity.id} is at version {entity.version}, not {expected_version}"
            )
        if entity.status == ARCHIVED_STATUS:
            raise ValidationError("Archived entities cannot be modified")

        problems: list[dict[str, str]] = []
        for key, new_value in patch.items():
            if key in IMMUTABLE_FIELDS:
                current = entity.tenant_id if key in ("tenant_id", "organization_id") else getattr(
                    entity, key
                )
                if not _same_value(key, new_value, current):
                    problems.append({"path": key, "message": f"'{key}' is immutable"})
            elif key not in MUTABLE_FIELDS:
                problems.append({"path": key, "message": f"'{key}' cannot be updated"})
        if problems:
            raise ValidationError("Update touches fields that cannot change", errors=problems)

        if patch.get("status") == ARCHIVED_STATUS:
            raise ValidationError("Use archive to move an entity to the archived state")
        if "name" in patch:
            self._require_name(patch["name"])
        if "status" in patch and not patch["status"]:
            raise ValidationError("status must not be empty")

        if "custom_properties" in patch:
            properties = _properties(patch["custom_properties"])
            self._registry.validate_properties(entity.type, entity.subtype, properties)
            await self._reject_implicit_references(
                properties,
                reference_scope or EntityScope(tenant_id=entity.tenant_id),
                exclude=entity.id,
            )
            entity.custom_properties = properties
        for key in ("name", "description", "status", "locale", "value"):
            if key in patch:
                setattr(entity, key, patch[key])

        self._touch(entity)
        await self._flush_versioned(entity)
        logger.info("entity_updated", entity_id=str(entity.id), fields=sorted(patch))
        return entity

    async def archive(self, entity_id: UUID) -> Entity:
        entity = await self.get(entity_id)
        if entity.status == ARCHIVED_STATUS:
            raise ValidationError("Entity is already archived")
        entity.status = ARCHIVED_STATUS
        self._touch(entity)
        await self._flush_versioned(entity)
        logger.info("entity_archived", entity_id=str(entity.id))
        return entity

    async def list(
        self,
        scope: EntityScope,
        *,
        type_: str | None = None,
        subtype: str | None = None,
        status: str | None = None,
        search: str | None = None,
        include_archived: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> Page[Entity]:
        stmt = self._filtered(
            scope,
            type_=type_,
            subtype=subtype,
            status=status,
            search=search,
            include_archived=include_archived,
        )
        total = await self._session.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self._session.execute(
            stmt.order_by(desc(Entity.created_at), desc(Entity.id)).offset(offset).limit(limit)
        )
        return Page(
            items=list(result.scalars().all()),
            total=int(total or 0),
            offset=offset,
            limit=limit,
        )

    async def count_by(
        self,
        scope: EntityScope,
        *columns: Any,
        include_archived: bool = True,
    ) -> list[tuple[Any, ...]]:
        """Grouped row counts, e.g. ``count_by(scope, Entity.type, Entity.subtype)``."""
        stmt = select(*columns, func.count(Entity.id)).group_by(*columns)
        clause = scope.clause()
        if clause is not None:
            stmt = stmt.where(clause)
        if not include_archived:
            stmt = stmt.where(Entity.status != ARCHIVED_STATUS)
        result = await self._session.execute(stmt)
        return [tuple(row) for row in result.all()]

    async def sample_properties(
        self,
        scope: EntityScope,
        type_: str,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        stmt = select(Entity.custom_properties).where(Entity.type == type_)
        clause = scope.clause()
        if clause is not None:
            stmt = stmt.where(clause)
        result = await self._session.execute(
            stmt.order_by(desc(Entity.updated_at)).limit(limit)
        )
        return [row or {} for row in result.scalars().all()]

    def _filtered(
        self,
        scope: EntityScope,
        *,
        type_: str | None,
        subtype: str | None,
        status: str | None,
        search: str | None,
        include_archived: bool,
    ) -> Select[tuple[Entity]]:
        stmt = select(Entity)
        clause = scope.clause()
        if clause is not None:
            stmt = stmt.where(clause)
        if type_ is not None:
            stmt = stmt.where(Entity.type == type_)
        if subtype is not None:
            stmt = stmt.where(Entity.subtype == subtype)
        if status is not None:
            stmt = stmt.where(Entity.status == status)
        elif not include_archived:
            stmt = stmt.where(Entity.status != ARCHIVED_STATUS)
        if search:
            pattern = _like_pattern(search.strip())
            stmt = stmt.where(
                or_(
                    Entity.name.ilike(pattern, escape="\\"),
                    Entity.description.ilike(pattern, escape="\\"),
                )
            )
        return stmt

    async def _reject_implicit_references(
        self,
        properties: Mapping[str, Any],
        scope: EntityScope,
        exclude: UUID | None = None,
    ) -> None:
        """
        Entity ids may only be associated through links, never stored as attributes.

        Only ids inside ``scope`` are looked up, so an id owned by a tenant the
        writer cannot see is treated like any other opaque string.
        """
        candidates = {value: path for path, value in _uuid_strings(properties)}
        if exclude is not None:
            candidates.pop(exclude, None)
        if not candidates:
            return
        stmt = select(Entity.id).where(Entity.id.in_(list(candidates)))
        clause = scope.clause()
        if clause is not None:
            stmt = stmt.where(clause)
        result = await self._session.execute(stmt)
        found = list(result.scalars().all())
        if found:
            raise ValidationError(
                "customProperties must not embed entity ids; use a link instead",
                errors=[
                    {"path": candidates[entity_id], "message": "references an entity"}
                    for entity_id in found
                ],
            )

    @staticmethod
    def _require_name(name: Any) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name must be a non-empty string")

    @staticmethod
    def _touch(entity: Entity) -> None:
        now = utcnow()
        previous = as_utc(entity.updated_at)
        entity.updated_at = now if now > previous else previous

    async def _flush_versioned(self, entity: Entity) -> None:
        try:
            await self._session.flush()
        except StaleDataError as exc:
            raise ConflictError(
                f"Entity {entity.id} was modified concurrently; reload and retry"
            ) from exc
