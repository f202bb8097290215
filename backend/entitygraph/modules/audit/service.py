"""Compliance queries over the Action Log."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.config import get_settings
from entitygraph.core.errors import EntityGraphError
from entitygraph.core.guard import AccessGuard
from entitygraph.core.integrity import ChainVerificationResult
from entitygraph.core.permissions import VIEW_AUDIT_LOGS, PermissionEvaluator
from entitygraph.db.models import ActionOutcome, ActionRecord
from entitygraph.modules.entities.store import Page

ACTION_READ = "audit.read"


class AuditService:
    """
    Tenant-scoped reads of action records.

    Unelevated callers only ever see their own tenant's chain. Elevated
    callers acting globally may name any tenant or the platform chain, and
    that bypass is itself recorded.
    """

    def __init__(self, session: AsyncSession, evaluator: PermissionEvaluator | None = None) -> None:
        self._session = session
        self._guard = AccessGuard(session, evaluator)

    async def query(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None = None,
        filter_tenant_id: UUID | None = None,
        platform_only: bool = False,
        since: datetime | None = None,
        until: datetime | None = None,
        action: str | None = None,
        outcome: ActionOutcome | None = None,
        filter_actor_id: UUID | None = None,
        resource_ref: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> Page[ActionRecord]:
        settings = get_settings()
        limit = min(limit or settings.default_page_size, settings.max_page_size)
        offset = max(offset, 0)
        ref = "audit:*"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_AUDIT_LOGS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        try:
            chain_tenant = context.tenant_id
            if chain_tenant is None or (
                filter_tenant_id is not None and filter_tenant_id != chain_tenant
            ) or platform_only:
                scope.require_bypass("read_audit", filter_tenant_id)
                chain_tenant = filter_tenant_id
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise

        items, total = await self._guard.actions.query(
            tenant_id=chain_tenant,
            platform_only=platform_only,
            since=since,
            until=until,
            action=action,
            outcome=outcome,
            actor_id=filter_actor_id,
            resource_ref=resource_ref,
            offset=offset,
            limit=limit,
        )
        await self._guard.record_bypass(scope, resource_ref=ref)
        return Page(items=items, total=total, offset=offset, limit=limit)

    async def verify_chain(
        self,
        actor_id: UUID,
        *,
        tenant_id: UUID | None = None,
        chain_tenant_id: UUID | None = None,
    ) -> ChainVerificationResult:
        """
        Recompute one hash chain. Unelevated callers verify their own tenant;
        elevated global callers name the tenant or omit it for the platform chain.
        """
        ref = "audit:chain"
        context = await self._guard.resolve_and_check(
            actor_id, tenant_id, VIEW_AUDIT_LOGS, action=ACTION_READ, resource_ref=ref
        )
        scope = self._guard.scope(context)
        target = context.tenant_id
        try:
            if target is None or (chain_tenant_id is not None and chain_tenant_id != target):
                scope.require_bypass("verify_audit_chain", chain_tenant_id)
                target = chain_tenant_id
        except EntityGraphError as exc:
            await self._guard.fail(
                context, exc, action=ACTION_READ, resource_ref=ref, record_errors=False
            )
            raise
        result = await self._guard.actions.verify(target)
        await self._guard.record_bypass(scope, resource_ref=ref)
        return result
