"""
SQLAlchemy ORM models for the entity graph.

One storage primitive serves every vertical: typed, attribute-flexible
``entities`` connected by typed, directed ``links``. Tenancy, membership and
the append-only ``action_records`` audit trail sit alongside them.

Column types are chosen to run unchanged on PostgreSQL (JSONB) and SQLite
(JSON); identifiers are generated client-side so rows are usable right after
flush without a refresh round-trip.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")

# Platform-owned entities (global catalog templates, shared apps) live here.
SYSTEM_TENANT_ID = UUID("00000000-0000-0000-0000-000000000000")
SYSTEM_TENANT_SLUG = "system"

ARCHIVED_STATUS = "archived"

# Entity kind used as the tenant's own node in the graph.
TENANT_ANCHOR_TYPE = "organization"
TENANT_ANCHOR_SUBTYPE = "tenant"

AVAILABILITY_LINK_TYPE = "available_to"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored timestamp; SQLite hands back naive UTC values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UtcDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp that always loads as UTC, whatever the backend stores."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        return as_utc(value) if value is not None else None

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        return as_utc(value) if value is not None else None


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
    }


# =============================================================================
# Enums
# =============================================================================


class TenantStatus(str, PyEnum):
    """Lifecycle status for tenants."""

    ACTIVE = "active"
    DISABLED = "disabled"


class Role(str, PyEnum):
    """Roles of the fixed hierarchy (ordering lives in ``core.permissions``)."""

    SUPER_ADMIN = "super_admin"
    ENTERPRISE_OWNER = "enterprise_owner"
    ORG_OWNER = "org_owner"
    BUSINESS_MANAGER = "business_manager"
    EMPLOYEE = "employee"
    VIEWER = "viewer"


class PlatformRole(str, PyEnum):
    """Global roles held outside any tenant."""

    SUPER_ADMIN = "super_admin"


class ActionOutcome(str, PyEnum):
    """Outcome recorded for every audited call."""

    SUCCESS = "success"
    DENIED = "denied"
    ERROR = "error"


def _enum(enum_cls: type[PyEnum]) -> Enum:
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e])


# =============================================================================
# Tenancy
# =============================================================================


class Tenant(Base):
    """Isolation boundary; nearly all data and permission checks are scoped to one."""

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    slug: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="URL-safe tenant identifier",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[TenantStatus] = mapped_column(
        _enum(TenantStatus),
        default=TenantStatus.ACTIVE,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("slug", name="uq_tenants_slug"),
        Index("ix_tenants_status", "status"),
    )


class Actor(Base):
    """
    Authenticated principal known to the core.

    The upstream auth layer maps credentials onto ``id``; ``subject`` keeps the
    external identifier for operators.
    """

    __tablename__ = "actors"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    subject: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="External identity subject (OIDC sub, API key owner)",
    )
    display_name: Mapped[str | None] = mapped_column(String(255))
    global_role: Mapped[PlatformRole | None] = mapped_column(_enum(PlatformRole))
    default_tenant_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="SET NULL"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow)

    __table_args__ = (UniqueConstraint("subject", name="uq_actors_subject"),)


class TenantMember(Base):
    """Membership of an actor in a tenant with exactly one role."""

    __tablename__ = "tenant_members"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    actor_id: Mapped[UUID] = mapped_column(
        ForeignKey("actors.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[Role] = mapped_column(_enum(Role), default=Role.VIEWER, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "actor_id", name="uq_tenant_members_tenant_actor"),
        Index("ix_tenant_members_actor", "actor_id"),
    )


# =============================================================================
# Entity Graph
# =============================================================================


class Entity(Base):
    """
    Typed, tenant-owned record with a flexible attribute payload.

    ``(type, subtype)`` and ``tenant_id`` are fixed at creation. ``version`` is
    the optimistic-concurrency counter: two sessions updating the same row
    cannot both succeed.
    """

    __tablename__ = "entities"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    subtype: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Domain-defined lifecycle tag; 'archived' is terminal",
    )
    locale: Mapped[str | None] = mapped_column(String(20))
    value: Mapped[str | None] = mapped_column(Text)
    custom_properties: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    created_by: Mapped[UUID] = mapped_column(ForeignKey("actors.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_entities_tenant_type", "tenant_id", "type"),
        Index("ix_entities_tenant_type_subtype", "tenant_id", "type", "subtype"),
        Index("ix_entities_name", "name"),
        Index("ix_entities_status", "status"),
    )


class Link(Base):
    """
    Typed, directed edge between two entities.

    A single table serves both traversal directions through two secondary
    indexes; the edge is never stored twice.
    """

    __tablename__ = "links"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Tenant that created (and owns) the edge",
    )
    source_id: Mapped[UUID] = mapped_column(
        ForeignKey("entities.id", ondelete="RESTRICT"),
        nullable=False,
    )
    target_id: Mapped[UUID] = mapped_column(
        ForeignKey("entities.id", ondelete="RESTRICT"),
        nullable=False,
    )
    link_type: Mapped[str] = mapped_column(String(100), nullable=False)
    attrs: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    created_by: Mapped[UUID] = mapped_column(ForeignKey("actors.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("source_id", "target_id", "link_type", name="uq_links_triple"),
        Index("ix_links_source_type", "source_id", "link_type"),
        Index("ix_links_target_type", "target_id", "link_type"),
        Index("ix_links_tenant", "tenant_id"),
    )


# =============================================================================
# Action Log
# =============================================================================


class ActionRecord(Base):
    """
    Append-only audit trail of state changes and denied attempts.

    Records of one tenant (or of the platform, when ``tenant_id`` is NULL)
    form a SHA-256 hash chain ordered by ``chain_sequence``.
    """

    __tablename__ = "action_records"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    tenant_id: Mapped[UUID | None] = mapped_column(
        comment="Resolved tenant; NULL for platform-level actions",
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    outcome: Mapped[ActionOutcome] = mapped_column(_enum(ActionOutcome), nullable=False)
    elevated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType)
    recorded_at: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_record_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    chain_sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_action_records_tenant_time", "tenant_id", "recorded_at"),
        # A second writer that read the same chain head fails here instead of forking.
        Index(
            "uq_action_records_tenant_sequence",
            "tenant_id",
            "chain_sequence",
            unique=True,
        ),
        Index(
            "uq_action_records_platform_sequence",
            "chain_sequence",
            unique=True,
            postgresql_where=text("tenant_id IS NULL"),
            sqlite_where=text("tenant_id IS NULL"),
        ),
        Index("ix_action_records_resource", "resource_ref"),
        Index("ix_action_records_actor", "actor_id"),
    )
