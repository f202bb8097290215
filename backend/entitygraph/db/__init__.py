"""Database package."""

from entitygraph.db.models import (
    SYSTEM_TENANT_ID,
    ActionOutcome,
    ActionRecord,
    Actor,
    Base,
    Entity,
    Link,
    PlatformRole,
    Role,
    Tenant,
    TenantMember,
    TenantStatus,
)
from entitygraph.db.session import DbSession, close_db, create_schema, get_db_session, init_db

__all__ = [
    "DbSession",
    "get_db_session",
    "init_db",
    "close_db",
    "create_schema",
    "Base",
    "SYSTEM_TENANT_ID",
    "Tenant",
    "TenantStatus",
    "TenantMember",
    "Actor",
    "PlatformRole",
    "Role",
    "Entity",
    "Link",
    "ActionRecord",
    "ActionOutcome",
]
