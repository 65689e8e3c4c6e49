"""
Access Gate — module-level permission enforcement.

Every gated operation passes through this gate with the actor's *resolved*
role (see ``governance.resolver``) before its handler runs. Decisions are:

- ALLOWED: the module is public, or the role is in its permitted set
- DENIED:  the role is not in the set, or the module is unknown (fail closed)

A denial always carries the full set of roles that would have been
sufficient, so callers can explain what is missing. Presets such as
"admin only" are plain role sets evaluated by the same function.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from fleetgate.errors import AuthorizationError
from fleetgate.governance.roles import RoleCatalog, role_catalog
from fleetgate.policy.schema import RoleId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    """Result of checking a resolved role against a module."""

    allowed: bool
    role: RoleId
    module: str | None
    required_roles: frozenset[RoleId] | None = field(default=None)
    # required_roles ranked by the deciding gate's catalog, most privileged first
    ranked_roles: tuple[RoleId, ...] = field(default=())

    @property
    def public(self) -> bool:
        return self.required_roles is None

    def required_list(self) -> list[str]:
        """Required roles, most privileged first (empty for public modules)."""
        return [r.value for r in self.ranked_roles]


class AccessGate:
    """
    Central access enforcement.

    Pure function of the catalog and its inputs — no state, no mutation.
    """

    def __init__(self, catalog: RoleCatalog | None = None) -> None:
        self.catalog = catalog or role_catalog

    def check_required(
        self,
        resolved_role: RoleId,
        required_roles: Iterable[RoleId] | None,
        module: str | None = None,
    ) -> AccessDecision:
        """Check a role against an explicit required set (None = public)."""
        if required_roles is None:
            return AccessDecision(allowed=True, role=resolved_role, module=module)

        required = frozenset(required_roles)
        return AccessDecision(
            allowed=resolved_role in required,
            role=resolved_role,
            module=module,
            required_roles=required,
            ranked_roles=tuple(
                sorted(required, key=self.catalog.hierarchy_level, reverse=True)
            ),
        )

    def check(self, resolved_role: RoleId, module_id: str) -> AccessDecision:
        """
        Check whether a resolved role may access a module.

        Args:
            resolved_role: Output of RoleResolver — never a raw claim.
            module_id: Module identifier (aliases accepted).

        Returns:
            AccessDecision with the allow flag and the required role set.
        """
        module = self.catalog.canonical_module(module_id)
        decision = self.check_required(
            resolved_role, self.catalog.allowed_roles(module), module=module
        )
        if not decision.allowed:
            logger.info(
                "Access denied: role=%s module=%s", resolved_role.value, module
            )
        return decision

    def require(self, resolved_role: RoleId, module_id: str) -> AccessDecision:
        """Like ``check`` but raises AuthorizationError on denial."""
        decision = self.check(resolved_role, module_id)
        if not decision.allowed:
            raise AuthorizationError(
                current_role=resolved_role.value,
                required_roles=decision.required_list(),
                module=decision.module,
            )
        return decision

    def require_roles(
        self,
        resolved_role: RoleId,
        required_roles: Iterable[RoleId],
        module: str | None = None,
    ) -> AccessDecision:
        """Preset form of ``require`` (e.g. ``catalog.admin_only``)."""
        decision = self.check_required(resolved_role, required_roles, module=module)
        if not decision.allowed:
            raise AuthorizationError(
                current_role=resolved_role.value,
                required_roles=decision.required_list(),
                module=module,
            )
        return decision


# Global gate over the process-wide catalog
access_gate = AccessGate()
