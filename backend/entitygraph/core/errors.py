"""
Typed error taxonomy surfaced to feature code.

Every failure the core reports is one of five distinguishable kinds. The HTTP
layer maps them onto status codes; feature code catches them by class.
"""

from __future__ import annotations

from typing import Any


class EntityGraphError(Exception):
    """Base class for all errors raised by the core."""

    code: str = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.detail}


class NotFoundError(EntityGraphError):
    """Referenced entity or link does not exist or is not visible in scope."""

    code = "not_found"


class ValidationError(EntityGraphError):
    """Immutable field change or attribute payload rejected by its schema."""

    code = "validation_error"

    def __init__(self, detail: str, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(detail)
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class PermissionDeniedError(EntityGraphError):
    """The permission evaluator denied the requested capability."""

    code = "permission_denied"

    def __init__(
        self,
        detail: str,
        *,
        capability: str | None = None,
        resource_hint: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.capability = capability
        self.resource_hint = resource_hint


class ScopeViolationError(EntityGraphError):
    """An operation tried to cross a tenant boundary without elevation or availability."""

    code = "scope_violation"


class ConflictError(EntityGraphError):
    """Duplicate link creation or concurrent modification of the same entity."""

    code = "conflict"


DENIAL_ERRORS: tuple[type[EntityGraphError], ...] = (PermissionDeniedError, ScopeViolationError)
