"""
Orchestration guard shared by every service.

Fixes the order resolve -> check -> (scoped work) -> record. Denials and
failures are written to the Action Log after the failed unit of work has
been rolled back, then committed on their own so they survive it.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitygraph.core.audit import ActionLog
from entitygraph.core.context import ContextResolver, ResolvedContext
from entitygraph.core.errors import (
    DENIAL_ERRORS,
    EntityGraphError,
    PermissionDeniedError,
)
from entitygraph.core.logging import get_logger
from entitygraph.core.permissions import (
    PermissionDecision,
    PermissionEvaluator,
    default_evaluator,
)
from entitygraph.core.scoping import ScopingFilter
from entitygraph.db.models import ActionOutcome

logger = get_logger(__name__)

ELEVATED_READ_ACTION = "elevated_read"


def _failure_metadata(exc: EntityGraphError) -> dict[str, Any]:
    metadata: dict[str, Any] = {"code": exc.code, "detail": exc.detail}
    if isinstance(exc, PermissionDeniedError):
        if exc.capability is not None:
            metadata["capability"] = exc.capability
        if exc.resource_hint is not None:
            metadata["resource_hint"] = exc.resource_hint
    return metadata


class AccessGuard:
    """Context resolution, permission checks and outcome recording for one session."""

    def __init__(
        self,
        session: AsyncSession,
        evaluator: PermissionEvaluator | None = None,
    ) -> None:
        self._session = session
        self._resolver = ContextResolver(session)
        self._evaluator = evaluator or default_evaluator
        self.actions = ActionLog(session)

    @property
    def evaluator(self) -> PermissionEvaluator:
        return self._evaluator

    def scope(self, context: ResolvedContext) -> ScopingFilter:
        return ScopingFilter(self._session, context)

    async def resolve(
        self,
        actor_id: UUID,
        requested_tenant_id: UUID | None,
        *,
        action: str,
        resource_ref: str,
    ) -> ResolvedContext:
        """Resolve the caller; resolution denials are recorded before re-raising."""
        try:
            return await self._resolver.resolve(actor_id, requested_tenant_id)
        except DENIAL_ERRORS as exc:
            logger.warning(
                "context_resolution_denied",
                actor_id=str(actor_id),
                requested_tenant_id=str(requested_tenant_id) if requested_tenant_id else None,
                code=exc.code,
            )
            metadata = _failure_metadata(exc)
            if requested_tenant_id is not None:
                metadata["requested_tenant_id"] = str(requested_tenant_id)
            await self._session.rollback()
            await self.actions.record(
                actor_id=actor_id,
                tenant_id=requested_tenant_id,
                action=action,
                resource_ref=resource_ref,
                outcome=ActionOutcome.DENIED,
                metadata=metadata,
            )
            await self._session.commit()
            raise

    def check(
        self,
        context: ResolvedContext,
        capability: str,
        resource_hint: str | None = None,
    ) -> PermissionDecision:
        """Raise ``PermissionDeniedError`` unless the capability is granted."""
        decision = self._evaluator.check(context, capability, resource_hint)
        if not decision.allowed:
            raise PermissionDeniedError(
                decision.reason or f"Capability '{capability}' denied",
                capability=capability,
                resource_hint=resource_hint,
            )
        return decision

    def check_elevated(self, context: ResolvedContext, capability: str) -> None:
        """Operations reserved to elevated contexts."""
        if not context.elevated:
            raise PermissionDeniedError(
                f"Capability '{capability}' requires an elevated context",
                capability=capability,
            )

    def check_decision(self, decision: PermissionDecision) -> None:
        if not decision.allowed:
            raise PermissionDeniedError(
                decision.reason or f"Capability '{decision.capability}' denied",
                capability=decision.capability,
                resource_hint=decision.resource_hint,
            )

    async def resolve_and_check(
        self,
        actor_id: UUID,
        requested_tenant_id: UUID | None,
        capability: str,
        *,
        action: str,
        resource_ref: str,
        resource_hint: str | None = None,
    ) -> ResolvedContext:
        context = await self.resolve(
            actor_id, requested_tenant_id, action=action, resource_ref=resource_ref
        )
        try:
            self.check(context, capability, resource_hint)
        except PermissionDeniedError as exc:
            await self.fail(context, exc, action=action, resource_ref=resource_ref)
            raise
        return context

    async def succeed(
        self,
        context: ResolvedContext,
        *,
        action: str,
        resource_ref: str,
        metadata: dict[str, Any] | None = None,
        tenant_id: UUID | None = None,
    ) -> None:
        """Record a successful mutation and commit it together with the change."""
        await self.actions.record(
            actor_id=context.actor_id,
            tenant_id=tenant_id if tenant_id is not None else context.tenant_id,
            action=action,
            resource_ref=resource_ref,
            outcome=ActionOutcome.SUCCESS,
            metadata=metadata,
            elevated=context.elevated,
        )
        await self._session.commit()
        logger.info(
            "action_succeeded",
            action=action,
            resource_ref=resource_ref,
            elevated=context.elevated,
        )

    async def fail(
        self,
        context: ResolvedContext,
        exc: EntityGraphError,
        *,
        action: str,
        resource_ref: str,
        record_errors: bool = True,
    ) -> None:
        """
        Roll back the failed unit of work and record its outcome.

        Denials are always recorded. Other errors are recorded unless
        ``record_errors`` is False (plain reads).
        """
        await self._session.rollback()
        denied = isinstance(exc, DENIAL_ERRORS)
        if not denied and not record_errors:
            return
        outcome = ActionOutcome.DENIED if denied else ActionOutcome.ERROR
        if denied:
            logger.warning(
                "permission_denied",
                action=action,
                resource_ref=resource_ref,
                code=exc.code,
                detail=exc.detail,
            )
        await self.actions.record(
            actor_id=context.actor_id,
            tenant_id=context.tenant_id,
            action=action,
            resource_ref=resource_ref,
            outcome=outcome,
            metadata=_failure_metadata(exc),
            elevated=context.elevated,
        )
        await self._session.commit()

    async def record_bypass(self, scope: ScopingFilter, *, resource_ref: str) -> None:
        """Record a read that went through the elevated branch of the Scoping Filter."""
        if not scope.used_bypass:
            return
        context = scope.context
        await self.actions.record(
            actor_id=context.actor_id,
            tenant_id=context.tenant_id,
            action=ELEVATED_READ_ACTION,
            resource_ref=resource_ref,
            outcome=ActionOutcome.SUCCESS,
            metadata=scope.bypass_metadata(),
            elevated=True,
        )
        await self._session.commit()
