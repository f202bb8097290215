"""
Type registry for entity payloads and link types.

Each ``(type, subtype)`` pair registers a JSON Schema (draft 2020-12) that
``customProperties`` must satisfy on every write. Link types register the
policy applied when one of their endpoints is archived and whether they may
reach across tenants into a visible system-owned entity.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Literal

from jsonschema import Draft202012Validator  # type: ignore[import-untyped]
from jsonschema.exceptions import SchemaError  # type: ignore[import-untyped]

from entitygraph.core.config import get_settings
from entitygraph.core.errors import ValidationError
from entitygraph.core.permissions import MANAGE_OBJECTS, VIEW_OBJECTS
from entitygraph.db.models import (
    AVAILABILITY_LINK_TYPE,
    TENANT_ANCHOR_SUBTYPE,
    TENANT_ANCHOR_TYPE,
)

ArchivePolicy = Literal["block", "cascade"]

OPEN_OBJECT_SCHEMA: dict[str, Any] = {"type": "object"}


@dataclass(frozen=True)
class EntityTypeSpec:
    """Registered ``(type, subtype)`` with its payload schema and capabilities."""

    type: str
    subtype: str
    schema: dict[str, Any] = field(default_factory=lambda: dict(OPEN_OBJECT_SCHEMA))
    read_capability: str = VIEW_OBJECTS
    write_capability: str = MANAGE_OBJECTS
    description: str | None = None


@dataclass(frozen=True)
class LinkTypeSpec:
    """Registered link type."""

    link_type: str
    archive_policy: ArchivePolicy | None = None
    cross_tenant: bool = False
    description: str | None = None


class TypeRegistry:
    """In-process catalog of entity and link types."""

    def __init__(self, default_archive_policy: ArchivePolicy = "block") -> None:
        self._entity_types: dict[tuple[str, str], EntityTypeSpec] = {}
        self._validators: dict[tuple[str, str], Draft202012Validator] = {}
        self._link_types: dict[str, LinkTypeSpec] = {}
        self.default_archive_policy: ArchivePolicy = default_archive_policy

    # ------------------------------------------------------------------
    # Entity types
    # ------------------------------------------------------------------

    def register_entity_type(self, spec: EntityTypeSpec) -> EntityTypeSpec:
        try:
            Draft202012Validator.check_schema(spec.schema)
        except SchemaError as exc:
            raise ValueError(
                f"Invalid schema for {spec.type}/{spec.subtype}: {exc.message}"
            ) from exc
        key = (spec.type, spec.subtype)
        self._entity_types[key] = spec
        self._validators[key] = Draft202012Validator(spec.schema)
        return spec

    def entity_type(self, type_: str, subtype: str) -> EntityTypeSpec:
        spec = self._entity_types.get((type_, subtype))
        if spec is None:
            raise ValidationError(f"Entity type '{type_}/{subtype}' is not registered")
        return spec

    def find_entity_type(self, type_: str, subtype: str) -> EntityTypeSpec | None:
        return self._entity_types.get((type_, subtype))

    def is_registered(self, type_: str, subtype: str) -> bool:
        return (type_, subtype) in self._entity_types

    def entity_types(self) -> Iterator[EntityTypeSpec]:
        return iter(sorted(self._entity_types.values(), key=lambda s: (s.type, s.subtype)))

    def validate_properties(self, type_: str, subtype: str, properties: Any) -> None:
        """Raise ``ValidationError`` listing every schema violation of the payload."""
        self.entity_type(type_, subtype)
        validator = self._validators[(type_, subtype)]
        errors: list[dict[str, str]] = []
        for error in validator.iter_errors(properties):
            path = ".".join(str(part) for part in error.absolute_path)
            errors.append({"path": path or "root", "message": error.message})
        if errors:
            raise ValidationError(
                f"customProperties do not match the schema for '{type_}/{subtype}'",
                errors=errors,
            )

    # ------------------------------------------------------------------
    # Link types
    # ------------------------------------------------------------------

    def register_link_type(self, spec: LinkTypeSpec) -> LinkTypeSpec:
        self._link_types[spec.link_type] = spec
        return spec

    def link_type(self, link_type: str) -> LinkTypeSpec:
        return self._link_types.get(link_type) or LinkTypeSpec(link_type=link_type)

    def archive_policy(self, link_type: str) -> ArchivePolicy:
        return self.link_type(link_type).archive_policy or self.default_archive_policy


def build_default_registry(default_archive_policy: ArchivePolicy = "block") -> TypeRegistry:
    """Registry holding the platform built-ins every deployment needs."""
    registry = TypeRegistry(default_archive_policy=default_archive_policy)
    registry.register_entity_type(
        EntityTypeSpec(
            type=TENANT_ANCHOR_TYPE,
            subtype=TENANT_ANCHOR_SUBTYPE,
            schema={
                "type": "object",
                "properties": {"slug": {"type": "string"}},
            },
            write_capability="manage_organization",
            description="The tenant's own node in the graph",
        )
    )
    registry.register_link_type(
        LinkTypeSpec(
            link_type=AVAILABILITY_LINK_TYPE,
            archive_policy="cascade",
            cross_tenant=True,
            description="Shared system resource enabled or disabled for a tenant",
        )
    )
    return registry


@lru_cache
def get_type_registry() -> TypeRegistry:
    """
    Process-wide registry; feature packages register their types on it at import
    time. Served to routers as a FastAPI dependency so tests can swap it.
    """
    return build_default_registry(get_settings().default_archive_link_policy)
