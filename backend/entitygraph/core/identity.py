"""
Caller identity supplied by the upstream authentication layer.

The core never sees credentials. A trusted proxy or API-key layer puts the
authenticated actor id into ``Settings.actor_header`` and, optionally, the
tenant the actor wants to act in into ``Settings.tenant_header``.
"""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status

from entitygraph.core.config import get_settings
from entitygraph.core.logging import bind_call_context


@dataclass(frozen=True)
class Caller:
    """Authenticated actor plus the tenant it asked for."""

    actor_id: UUID
    tenant_id: UUID | None = None


def _parse_uuid(raw: str, header: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} must be a UUID",
        ) from None


async def get_caller(request: Request) -> Caller:
    """FastAPI dependency reading the identity headers."""
    settings = get_settings()
    raw_actor = request.headers.get(settings.actor_header)
    if not raw_actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.actor_header} header",
        )
    actor_id = _parse_uuid(raw_actor, settings.actor_header)

    raw_tenant = request.headers.get(settings.tenant_header)
    tenant_id = _parse_uuid(raw_tenant, settings.tenant_header) if raw_tenant else None

    bind_call_context(actor_id, tenant_id)
    return Caller(actor_id=actor_id, tenant_id=tenant_id)


CurrentCaller = Annotated[Caller, Depends(get_caller)]
