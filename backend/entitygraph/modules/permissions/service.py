"""Permission queries for callers that want to adapt their UI or workflow."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.errors import ValidationError
from entitygraph.core.guard import AccessGuard
from entitygraph.core.permissions import (
    KNOWN_CAPABILITIES,
    PermissionDecision,
    PermissionEvaluator,
)
from entitygraph.db.models import Role

ACTION_CHECK = "permission.check"
ACTION_LIST = "permission.list"


@dataclass
class PermissionSummary:
    actor_id: UUID
    tenant_id: UUID | None
    role: Role
    elevated: bool
    capabilities: dict[str, bool]

    @property
    def granted(self) -> list[str]:
        return sorted(cap for cap, allowed in self.capabilities.items() if allowed)


class PermissionService:
    """
    Read-only view of the Permission Evaluator for the calling actor.

    The caller's context is resolved exactly as for any other operation, so
    an actor that cannot act in the requested tenant is denied (and that
    denial recorded) rather than told it holds no capabilities.
    """

    def __init__(self, session: AsyncSession, evaluator: PermissionEvaluator | None = None) -> None:
        self._guard = AccessGuard(session, evaluator)

    async def check(
        self,
        actor_id: UUID,
        capability: str,
        *,
        tenant_id: UUID | None = None,
    ) -> PermissionDecision:
        capability = capability.strip()
        if not capability:
            raise ValidationError("capability must be a non-empty string")
        context = await self._guard.resolve(
            actor_id,
            tenant_id,
            action=ACTION_CHECK,
            resource_ref=f"capability:{capability}",
        )
        return self._guard.evaluator.check(context, capability)

    async def summary(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None = None,
        capabilities: Iterable[str] | None = None,
    ) -> PermissionSummary:
        """Allowed/denied for each capability, defaulting to every known one."""
        wanted = sorted({cap.strip() for cap in capabilities or () if cap.strip()})
        context = await self._guard.resolve(
            actor_id, tenant_id, action=ACTION_LIST, resource_ref="capability:*"
        )
        return PermissionSummary(
            actor_id=context.actor_id,
            tenant_id=context.tenant_id,
            role=context.role,
            elevated=context.elevated,
            capabilities=self._guard.evaluator.check_many(
                context, wanted or KNOWN_CAPABILITIES
            ),
        )
