"""
Role Catalog — the immutable role hierarchy and module permission matrix.

Loaded once at import time from ``policy.schema`` and never mutated. The
same catalog backs server-side enforcement and the ``/roles/matrix``
endpoint that presentation layers render from, so there is exactly one
copy of the policy.

Unknown modules resolve to an empty role set: the gate fails closed.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from fleetgate.policy.schema import (
    MODULE_ACCESS,
    MODULE_ALIASES,
    ROLE_DEFINITIONS,
    Role,
    RoleId,
)

logger = logging.getLogger(__name__)

LOWEST_LEVEL = 0


class RoleCatalog:
    """Read-only lookup over roles and module permissions."""

    def __init__(
        self,
        roles: Iterable[Role] = ROLE_DEFINITIONS,
        module_access: Mapping[str, tuple[str, frozenset[RoleId] | None]] = MODULE_ACCESS,
        module_aliases: Mapping[str, str] = MODULE_ALIASES,
    ) -> None:
        ordered = sorted(roles, key=lambda r: r.hierarchy_level, reverse=True)
        levels = [r.hierarchy_level for r in ordered]
        if len(set(levels)) != len(levels):
            raise ValueError("Role hierarchy levels must be unique")

        self._roles: Mapping[RoleId, Role] = MappingProxyType({r.id: r for r in ordered})
        self._modules = MappingProxyType(dict(module_access))
        self._aliases = MappingProxyType(dict(module_aliases))

        lowest = ordered[-1]
        self.least_privileged: RoleId = lowest.id

        # Convenience presets: plain role sets fed to the same gate function
        self.admin_only: frozenset[RoleId] = frozenset(
            r.id for r in ordered if r.id in (RoleId.SUPER_ADMIN, RoleId.ADMIN)
        )
        self.all_roles: frozenset[RoleId] = frozenset(self._roles)

    # ── Roles ──────────────────────────────────────────────────

    def role_of(self, role_id: str | RoleId | None) -> Role | None:
        """Return the catalog role for an exact canonical id, or None."""
        if role_id is None:
            return None
        try:
            return self._roles.get(RoleId(role_id))
        except ValueError:
            return None

    def hierarchy_level(self, role_id: str | RoleId | None) -> int:
        """Rank of a role; unknown ids rank below every known role."""
        role = self.role_of(role_id)
        return role.hierarchy_level if role is not None else LOWEST_LEVEL

    def roles(self) -> list[Role]:
        """All roles, most privileged first."""
        return list(self._roles.values())

    def lower_of(self, a: RoleId, b: RoleId) -> RoleId:
        """Whichever of two roles has the lower hierarchy level."""
        return a if self.hierarchy_level(a) <= self.hierarchy_level(b) else b

    # ── Modules ────────────────────────────────────────────────

    def canonical_module(self, module_id: str) -> str:
        key = (module_id or "").strip().lower()
        return self._aliases.get(key, key)

    def is_known_module(self, module_id: str) -> bool:
        return self.canonical_module(module_id) in self._modules

    def allowed_roles(self, module_id: str) -> frozenset[RoleId] | None:
        """
        Roles permitted for a module.

        Returns None for a public module and an empty set for an unknown
        module (deny-all).
        """
        entry = self._modules.get(self.canonical_module(module_id))
        if entry is None:
            logger.debug("Unknown module %r — denying all roles", module_id)
            return frozenset()
        return entry[1]

    def matrix(self) -> dict[str, Any]:
        """Module-to-roles matrix for UI rendering."""
        modules = []
        for module_id, (label, allowed) in self._modules.items():
            if allowed is None:
                continue
            modules.append({
                "module": module_id,
                "label": label,
                "roles": [r.value for r in self._ordered(allowed)],
            })
        return {
            "modules": modules,
            "roles": [
                {
                    "role": r.id.value,
                    "label": r.label,
                    "level": r.hierarchy_level,
                    "color": r.color,
                    "bg": r.bg,
                }
                for r in self._roles.values()
            ],
        }

    def _ordered(self, role_ids: Iterable[RoleId]) -> list[RoleId]:
        return sorted(role_ids, key=self.hierarchy_level, reverse=True)


role_catalog = RoleCatalog()
