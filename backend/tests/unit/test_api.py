"""HTTP-level tests: routing, error mapping and identity headers."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from uuid import UUID

import pytest
from httpx import AsyncClient

from entitygraph.core.errors import (
    ConflictError,
    EntityGraphError,
    NotFoundError,
    PermissionDeniedError,
    ScopeViolationError,
    ValidationError,
)
from entitygraph.main import status_for
from tests.support import World

Headers = Callable[..., dict[str, str]]

ENTITIES = "/api/v1/entities"


async def _create_product(
    client: AsyncClient, headers: dict[str, str], name: str = "Widget"
) -> dict[str, Any]:
    response = await client.post(
        ENTITIES,
        json={
            "type": "product",
            "subtype": "default",
            "name": name,
            "custom_properties": {"sku": "W-1", "price": 9.5},
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestErrorMapping:
    """Each error kind maps to one HTTP status."""

    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (NotFoundError("missing"), 404),
            (ValidationError("bad"), 422),
            (PermissionDeniedError("no"), 403),
            (ScopeViolationError("elsewhere"), 403),
            (ConflictError("again"), 409),
            (EntityGraphError("other"), 400),
        ],
    )
    def test_status_for(self, error: EntityGraphError, status_code: int) -> None:
        assert status_for(error) == status_code


class TestIdentityHeaders:
    """Tests for the caller identity dependency."""

    @pytest.mark.asyncio
    async def test_missing_actor_header(self, test_client: AsyncClient) -> None:
        response = await test_client.get(ENTITIES)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_actor_header(self, test_client: AsyncClient) -> None:
        response = await test_client.get(ENTITIES, headers={"X-Actor-Id": "not-a-uuid"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_foreign_tenant_header(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        response = await test_client.get(
            ENTITIES, headers=auth_headers(world.employee_a, world.tenant_b)
        )
        assert response.status_code == 403
        assert response.json()["code"] == "scope_violation"

    @pytest.mark.asyncio
    async def test_health_needs_no_identity(self, test_client: AsyncClient) -> None:
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] in {"healthy", "degraded"}

    @pytest.mark.asyncio
    async def test_security_headers(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        headers = auth_headers(world.employee_a) | {"X-Request-ID": "req-123"}
        response = await test_client.get(ENTITIES, headers=headers)
        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestEntityEndpoints:
    """Tests for /entities."""

    @pytest.mark.asyncio
    async def test_create_and_read(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        created = await _create_product(test_client, auth_headers(world.employee_a))
        assert created["tenant_id"] == str(world.tenant_a)
        assert created["status"] == "active"
        assert created["version"] == 1

        response = await test_client.get(
            f"{ENTITIES}/{created['id']}", headers=auth_headers(world.viewer_a)
        )
        assert response.status_code == 200
        assert response.json()["custom_properties"] == {"sku": "W-1", "price": 9.5}

        listing = await test_client.get(ENTITIES, headers=auth_headers(world.viewer_a))
        body = listing.json()
        assert body["total"] == 2
        assert created["id"] in {item["id"] for item in body["items"]}

    @pytest.mark.asyncio
    async def test_other_tenant_gets_not_found(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        created = await _create_product(test_client, auth_headers(world.employee_a))
        response = await test_client.get(
            f"{ENTITIES}/{created['id']}", headers=auth_headers(world.employee_b)
        )
        assert response.status_code == 404
        assert response.json() == {"code": "not_found", "detail": "Entity not found"}

    @pytest.mark.asyncio
    async def test_viewer_cannot_update(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        created = await _create_product(test_client, auth_headers(world.employee_a))
        response = await test_client.patch(
            f"{ENTITIES}/{created['id']}",
            json={"name": "Renamed"},
            headers=auth_headers(world.viewer_a),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "permission_denied"

    @pytest.mark.asyncio
    async def test_immutable_field_is_rejected(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        created = await _create_product(test_client, auth_headers(world.employee_a))
        response = await test_client.patch(
            f"{ENTITIES}/{created['id']}",
            json={"type": "ticket"},
            headers=auth_headers(world.employee_a),
        )
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["errors"] == [{"path": "type", "message": "'type' is immutable"}]

    @pytest.mark.asyncio
    async def test_schema_violation(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        response = await test_client.post(
            ENTITIES,
            json={
                "type": "product",
                "subtype": "default",
                "name": "Widget",
                "custom_properties": {"price": -1},
            },
            headers=auth_headers(world.employee_a),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        headers = auth_headers(world.employee_a)
        created = await _create_product(test_client, headers)
        url = f"{ENTITIES}/{created['id']}"

        first = await test_client.patch(
            url, json={"name": "First", "expected_version": 1}, headers=headers
        )
        assert first.status_code == 200
        assert first.json()["version"] == 2

        second = await test_client.patch(
            url, json={"name": "Second", "expected_version": 1}, headers=headers
        )
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_archive(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        created = await _create_product(test_client, auth_headers(world.employee_a))
        response = await test_client.post(
            f"{ENTITIES}/{created['id']}/archive", headers=auth_headers(world.manager_a)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "archived"


class TestLinkEndpoints:
    """Tests for /links."""

    @pytest.mark.asyncio
    async def test_link_traverse_and_duplicate(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        headers = auth_headers(world.employee_a)
        source = await _create_product(test_client, headers, name="Ticket batch")
        target = await _create_product(test_client, headers, name="Event")
        body = {"source_id": source["id"], "target_id": target["id"], "link_type": "issued_from"}

        created = await test_client.post("/api/v1/links", json=body, headers=headers)
        assert created.status_code == 201
        assert created.json()["tenant_id"] == str(world.tenant_a)

        duplicate = await test_client.post("/api/v1/links", json=body, headers=headers)
        assert duplicate.status_code == 409
        assert duplicate.json()["code"] == "conflict"

        outgoing = await test_client.get(f"/api/v1/links/from/{source['id']}", headers=headers)
        assert outgoing.json()["count"] == 1

        neighbors = await test_client.get(
            f"/api/v1/links/neighbors/{target['id']}",
            params={"direction": "backward", "link_type": "issued_from"},
            headers=headers,
        )
        assert neighbors.status_code == 200
        assert [item["id"] for item in neighbors.json()] == [source["id"]]

        deleted = await test_client.delete(
            f"/api/v1/links/{created.json()['id']}", headers=headers
        )
        assert deleted.status_code == 204


class TestAvailabilityEndpoints:
    """Tests for /availability."""

    @pytest.mark.asyncio
    async def test_share_with_other_tenant(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        created = await _create_product(test_client, auth_headers(world.employee_a))
        url = f"{ENTITIES}/{created['id']}"
        assert (await test_client.get(url, headers=auth_headers(world.employee_b))).status_code == 404

        body = {"tenant_id": str(world.tenant_b), "resource_id": created["id"], "enabled": True}
        denied = await test_client.put(
            "/api/v1/availability", json=body, headers=auth_headers(world.owner_a)
        )
        assert denied.status_code == 403

        shared = await test_client.put(
            "/api/v1/availability", json=body, headers=auth_headers(world.super_admin)
        )
        assert shared.status_code == 200
        assert shared.json()["enabled"] is True

        assert (await test_client.get(url, headers=auth_headers(world.employee_b))).status_code == 200

        listing = await test_client.get(
            f"/api/v1/availability/{created['id']}", headers=auth_headers(world.super_admin)
        )
        assert listing.json()["count"] == 1


class TestTenantAndAuditEndpoints:
    """Tests for /tenants and /audit."""

    @pytest.mark.asyncio
    async def test_create_tenant_and_add_member(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        response = await test_client.post(
            "/api/v1/tenants",
            json={"slug": "tenant-c", "name": "Tenant C"},
            headers=auth_headers(world.super_admin),
        )
        assert response.status_code == 201
        tenant_id = UUID(response.json()["id"])

        added = await test_client.post(
            f"/api/v1/tenants/{tenant_id}/members",
            json={"actor_id": str(world.orphan), "role": "org_owner"},
            headers=auth_headers(world.super_admin),
        )
        assert added.status_code == 201

        members = await test_client.get(
            f"/api/v1/tenants/{tenant_id}/members", headers=auth_headers(world.orphan)
        )
        assert members.status_code == 200
        assert [item["role"] for item in members.json()["items"]] == ["org_owner"]

    @pytest.mark.asyncio
    async def test_audit_records_are_tenant_scoped(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        await _create_product(test_client, auth_headers(world.employee_a))
        await _create_product(test_client, auth_headers(world.employee_b))

        response = await test_client.get("/api/v1/audit/records", headers=auth_headers(world.owner_a))
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["action"] == "entity.create"
        assert body["items"][0]["tenant_id"] == str(world.tenant_a)

        forbidden = await test_client.get(
            "/api/v1/audit/records", headers=auth_headers(world.employee_a)
        )
        assert forbidden.status_code == 403

        verify = await test_client.get("/api/v1/audit/verify", headers=auth_headers(world.owner_a))
        assert verify.status_code == 200
        assert verify.json()["is_valid"] is True


class TestPermissionEndpoints:
    """Tests for /permissions."""

    @pytest.mark.asyncio
    async def test_check_capability(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        allowed = await test_client.get(
            "/api/v1/permissions/manage_objects", headers=auth_headers(world.employee_a)
        )
        assert allowed.status_code == 200
        assert allowed.json() == {
            "capability": "manage_objects",
            "allowed": True,
            "via_elevation": False,
            "reason": None,
        }

        denied = await test_client.get(
            "/api/v1/permissions/archive_objects", headers=auth_headers(world.employee_a)
        )
        assert denied.status_code == 200
        assert denied.json()["allowed"] is False

        elevated = await test_client.get(
            "/api/v1/permissions/archive_objects", headers=auth_headers(world.super_admin)
        )
        assert elevated.json()["via_elevation"] is True

    @pytest.mark.asyncio
    async def test_my_permissions(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        response = await test_client.get(
            "/api/v1/permissions",
            params=[("capability", "view_audit_logs"), ("capability", "manage_roles")],
            headers=auth_headers(world.manager_a),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "business_manager"
        assert body["tenant_id"] == str(world.tenant_a)
        assert body["capabilities"] == {"manage_roles": False, "view_audit_logs": True}
        assert body["granted"] == ["view_audit_logs"]

    @pytest.mark.asyncio
    async def test_non_member_is_forbidden(
        self, test_client: AsyncClient, world: World, auth_headers: Headers
    ) -> None:
        response = await test_client.get("/api/v1/permissions", headers=auth_headers(world.orphan))
        assert response.status_code == 403
        assert response.json()["code"] == "permission_denied"
