"""
Permission evaluation over a fixed role hierarchy.

Two independent lookup structures drive every decision:

* ``ROLE_HIERARCHY``: a total order of roles, highest first. It only gates
  role grants ("a role may grant strictly lower roles").
* ``ROLE_CAPABILITIES``: explicit capability grants per role. Grants are not
  nested by rank; ``org_owner`` holds ``manage_integrations`` while the
  higher ``enterprise_owner`` does not.

Evaluation is deny-by-default and side-effect-free. The only allow path that
skips the grant table is an elevated context.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from entitygraph.core.context import ResolvedContext
from entitygraph.db.models import Role

# Capabilities used by the core itself. Feature code may check its own strings.
VIEW_OBJECTS = "view_objects"
MANAGE_OBJECTS = "manage_objects"
ARCHIVE_OBJECTS = "archive_objects"
VIEW_LINKS = "view_links"
MANAGE_LINKS = "manage_links"
MANAGE_USERS = "manage_users"
VIEW_USERS = "view_users"
VIEW_AUDIT_LOGS = "view_audit_logs"

ROLE_HIERARCHY: tuple[Role, ...] = (
    Role.SUPER_ADMIN,
    Role.ENTERPRISE_OWNER,
    Role.ORG_OWNER,
    Role.BUSINESS_MANAGER,
    Role.EMPLOYEE,
    Role.VIEWER,
)

ROLE_CAPABILITIES: Mapping[Role, frozenset[str]] = {
    Role.SUPER_ADMIN: frozenset({"*"}),
    Role.ENTERPRISE_OWNER: frozenset(
        {
            "create_system_organization",
            "manage_organization",
            MANAGE_USERS,
            "manage_roles",
            MANAGE_OBJECTS,
            ARCHIVE_OBJECTS,
            MANAGE_LINKS,
            "install_apps",
            "manage_apps",
            "export_data",
            "view_*",
        }
    ),
    Role.ORG_OWNER: frozenset(
        {
            "manage_organization",
            MANAGE_USERS,
            "manage_roles",
            "manage_integrations",
            MANAGE_OBJECTS,
            ARCHIVE_OBJECTS,
            MANAGE_LINKS,
            "install_apps",
            "manage_apps",
            "export_data",
            "view_*",
        }
    ),
    Role.BUSINESS_MANAGER: frozenset(
        {
            MANAGE_USERS,
            MANAGE_OBJECTS,
            ARCHIVE_OBJECTS,
            MANAGE_LINKS,
            "install_apps",
            "manage_apps",
            "view_*",
        }
    ),
    Role.EMPLOYEE: frozenset(
        {
            "update_profile",
            "view_organization",
            VIEW_USERS,
            VIEW_OBJECTS,
            VIEW_LINKS,
            "view_apps",
            MANAGE_OBJECTS,
            MANAGE_LINKS,
        }
    ),
    Role.VIEWER: frozenset(
        {
            "view_organization",
            VIEW_USERS,
            VIEW_OBJECTS,
            VIEW_LINKS,
            "view_apps",
            "view_reports",
        }
    ),
}


@dataclass(frozen=True)
class PermissionDecision:
    """Result of a permission check."""

    allowed: bool
    capability: str
    reason: str | None = None
    via_elevation: bool = False
    resource_hint: str | None = None


def grant_matches(grant: str, capability: str) -> bool:
    """Match one grant entry against a capability (``*`` and ``prefix_*`` wildcards)."""
    if grant == "*":
        return True
    if grant.endswith("*"):
        return capability.startswith(grant[:-1])
    return grant == capability


class PermissionEvaluator:
    """Pure evaluator over a role order and a role-to-capability table."""

    def __init__(
        self,
        hierarchy: Sequence[Role] = ROLE_HIERARCHY,
        grants: Mapping[Role, Iterable[str]] = ROLE_CAPABILITIES,
    ) -> None:
        if len(set(hierarchy)) != len(hierarchy):
            raise ValueError("Role hierarchy must not repeat roles")
        self._rank = {role: index for index, role in enumerate(hierarchy)}
        self._grants = {role: frozenset(caps) for role, caps in grants.items()}

    def rank(self, role: Role) -> int:
        """Position in the hierarchy; 0 is the highest role."""
        try:
            return self._rank[role]
        except KeyError:
            raise ValueError(f"Role '{role}' is not part of the hierarchy") from None

    def outranks(self, role: Role, other: Role) -> bool:
        """True when ``role`` is strictly higher than ``other``."""
        return self.rank(role) < self.rank(other)

    def role_has(self, role: Role, capability: str) -> bool:
        return any(grant_matches(grant, capability) for grant in self._grants.get(role, ()))

    def check(
        self,
        context: ResolvedContext,
        capability: str,
        resource_hint: str | None = None,
    ) -> PermissionDecision:
        if context.elevated:
            return PermissionDecision(
                allowed=True,
                capability=capability,
                via_elevation=True,
                resource_hint=resource_hint,
            )
        if self.role_has(context.role, capability):
            return PermissionDecision(
                allowed=True,
                capability=capability,
                resource_hint=resource_hint,
            )
        return PermissionDecision(
            allowed=False,
            capability=capability,
            reason=f"Role '{context.role.value}' lacks capability '{capability}'",
            resource_hint=resource_hint,
        )

    def check_many(
        self,
        context: ResolvedContext,
        capabilities: Iterable[str],
    ) -> dict[str, bool]:
        return {cap: self.check(context, cap).allowed for cap in capabilities}

    def check_role_grant(self, context: ResolvedContext, target_role: Role) -> PermissionDecision:
        """
        A role may only be granted by a strictly higher role.

        Elevation does not relax this rule: not even a super-admin can hand out
        ``super_admin``.
        """
        capability = f"grant_role:{target_role.value}"
        if self.outranks(context.role, target_role):
            return PermissionDecision(allowed=True, capability=capability)
        return PermissionDecision(
            allowed=False,
            capability=capability,
            reason=(
                f"Role '{context.role.value}' cannot grant '{target_role.value}'; "
                "only strictly lower roles may be granted"
            ),
        )

    def can_manage_member(self, context: ResolvedContext, member_role: Role) -> PermissionDecision:
        """Members holding an equal or higher role cannot be changed or removed."""
        capability = f"manage_member:{member_role.value}"
        if self.outranks(context.role, member_role):
            return PermissionDecision(allowed=True, capability=capability)
        return PermissionDecision(
            allowed=False,
            capability=capability,
            reason=(
                f"Role '{context.role.value}' cannot manage a member holding "
                f"'{member_role.value}'"
            ),
        )


default_evaluator = PermissionEvaluator()

# Every capability some role is granted by name; wildcard grants expand over these.
KNOWN_CAPABILITIES: tuple[str, ...] = tuple(
    sorted(
        {
            grant
            for grants in ROLE_CAPABILITIES.values()
            for grant in grants
            if not grant.endswith("*")
        }
        | {VIEW_AUDIT_LOGS}
    )
)
