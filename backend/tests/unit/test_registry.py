"""Tests for the entity and link type registry."""

from __future__ import annotations

import pytest

from entitygraph.core.errors import ValidationError
from entitygraph.core.registry import (
    EntityTypeSpec,
    LinkTypeSpec,
    TypeRegistry,
    build_default_registry,
)
from entitygraph.db.models import AVAILABILITY_LINK_TYPE, TENANT_ANCHOR_SUBTYPE, TENANT_ANCHOR_TYPE


class TestEntityTypes:
    """Tests for payload schema registration and validation."""

    def test_invalid_schema_is_rejected_at_registration(self) -> None:
        registry = TypeRegistry()
        with pytest.raises(ValueError, match="Invalid schema"):
            registry.register_entity_type(
                EntityTypeSpec(type="product", subtype="default", schema={"type": "not-a-type"})
            )

    def test_unregistered_type(self) -> None:
        registry = TypeRegistry()
        with pytest.raises(ValidationError, match="not registered"):
            registry.validate_properties("ghost", "default", {})
        assert registry.find_entity_type("ghost", "default") is None
        assert not registry.is_registered("ghost", "default")

    def test_every_violation_is_reported(self, registry: TypeRegistry) -> None:
        with pytest.raises(ValidationError) as exc_info:
            registry.validate_properties("product", "default", {"price": -1, "sku": 7})
        paths = sorted(error["path"] for error in exc_info.value.errors)
        assert paths == ["price", "sku"]
        assert "errors" in exc_info.value.to_dict()

    def test_missing_required_field_reports_root(self, registry: TypeRegistry) -> None:
        with pytest.raises(ValidationError) as exc_info:
            registry.validate_properties("ticket", "default", {})
        assert exc_info.value.errors[0]["path"] == "root"

    def test_valid_payload_passes(self, registry: TypeRegistry) -> None:
        registry.validate_properties("product", "default", {"sku": "P-1", "price": 9.5})

    def test_open_schema_accepts_any_object(self, registry: TypeRegistry) -> None:
        registry.validate_properties("product", "bundle", {"anything": {"nested": [1, 2]}})
        with pytest.raises(ValidationError):
            registry.validate_properties("product", "bundle", ["not", "an", "object"])

    def test_entity_types_are_sorted(self, registry: TypeRegistry) -> None:
        keys = [(spec.type, spec.subtype) for spec in registry.entity_types()]
        assert keys == sorted(keys)


class TestLinkTypes:
    """Tests for link type policies."""

    def test_unknown_link_type_uses_defaults(self) -> None:
        registry = TypeRegistry(default_archive_policy="cascade")
        spec = registry.link_type("mentions")
        assert spec == LinkTypeSpec(link_type="mentions")
        assert registry.archive_policy("mentions") == "cascade"

    def test_declared_policy_overrides_default(self, registry: TypeRegistry) -> None:
        assert registry.default_archive_policy == "block"
        assert registry.archive_policy("issued_from") == "block"
        assert registry.archive_policy("bundles") == "cascade"


class TestDefaultRegistry:
    """Tests for the platform built-ins."""

    def test_tenant_anchor_is_registered(self) -> None:
        registry = build_default_registry()
        spec = registry.entity_type(TENANT_ANCHOR_TYPE, TENANT_ANCHOR_SUBTYPE)
        assert spec.write_capability == "manage_organization"

    def test_availability_edges_cascade_and_cross_tenants(self) -> None:
        registry = build_default_registry("block")
        spec = registry.link_type(AVAILABILITY_LINK_TYPE)
        assert spec.cross_tenant
        assert registry.archive_policy(AVAILABILITY_LINK_TYPE) == "cascade"
