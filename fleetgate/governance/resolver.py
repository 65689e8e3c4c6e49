"""
Role Resolver — maps free-text role claims onto canonical role ids.

Resolution never fails. A claim goes through, in order:

1. exact canonical id          ("fleet_manager")
2. normalized slug             ("  Fleet Manager " -> "fleet_manager")
3. explicit alias table        ("Fleet Admin" -> "admin")
4. least privilege             (anything else -> "viewer")

When the actor's trusted stored role is known, the result is capped at it:
the lower of (claimed, stored) wins. A claim above the stored role is
downgraded silently, never rejected.
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Any, Mapping

from fleetgate.errors import UpstreamError
from fleetgate.governance.roles import RoleCatalog, role_catalog
from fleetgate.policy.schema import Actor, RoleId

logger = logging.getLogger(__name__)

# Keys are normalized slugs (see ``slugify``)
ROLE_ALIASES: Mapping[str, RoleId] = MappingProxyType({
    "fleet_admin": RoleId.ADMIN,
    "administrator": RoleId.ADMIN,
    "superadmin": RoleId.SUPER_ADMIN,
    "super_administrator": RoleId.SUPER_ADMIN,
    "root": RoleId.SUPER_ADMIN,
    "manager": RoleId.FLEET_MANAGER,
    "fleet_mgr": RoleId.FLEET_MANAGER,
    "agent": RoleId.INSURANCE_AGENT,
    "insurance": RoleId.INSURANCE_AGENT,
    "dispatch": RoleId.DISPATCHER,
    "fleet_owner": RoleId.OWNER,
    "read_only": RoleId.VIEWER,
    "readonly": RoleId.VIEWER,
    "guest": RoleId.VIEWER,
})

_SEPARATORS = re.compile(r"[\s\-]+")


def slugify(raw: str) -> str:
    """Lower-case, trim, and join words with underscores."""
    return _SEPARATORS.sub("_", raw.strip().lower()).strip("_")


class RoleResolver:
    """Normalizes role claims and enforces the stored-role ceiling."""

    def __init__(
        self,
        catalog: RoleCatalog | None = None,
        aliases: Mapping[str, RoleId] = ROLE_ALIASES,
    ) -> None:
        self.catalog = catalog or role_catalog
        self.aliases = aliases

    def normalize(self, claimed: str | RoleId | None) -> RoleId:
        """Map any role text to a canonical id without applying a ceiling."""
        if isinstance(claimed, RoleId):
            return claimed
        if not claimed or not str(claimed).strip():
            return self.catalog.least_privileged

        text = str(claimed)
        role = self.catalog.role_of(text)
        if role is not None:
            return role.id

        slug = slugify(text)
        role = self.catalog.role_of(slug)
        if role is not None:
            return role.id

        alias = self.aliases.get(slug)
        if alias is not None:
            return alias

        logger.debug("Unrecognized role claim %r — using %s", text, self.catalog.least_privileged.value)
        return self.catalog.least_privileged

    def resolve(
        self,
        claimed: str | RoleId | None,
        stored_role: str | RoleId | None = None,
    ) -> RoleId:
        """
        Resolve a claim, capped at the stored role when one is on file.

        Args:
            claimed: Self-declared role text from the request.
            stored_role: The actor's trusted, previously persisted role.

        Returns:
            The canonical role id to use for every subsequent access check.
        """
        resolved = self.normalize(claimed)
        if stored_role is None:
            return resolved

        stored = self.normalize(stored_role)
        capped = self.catalog.lower_of(resolved, stored)
        if capped != resolved:
            logger.info(
                "Role claim downgraded: claimed=%s stored=%s resolved=%s",
                resolved.value, stored.value, capped.value,
            )
        return capped

    def stored_user(self, actor: Actor, store: Any = None) -> dict[str, Any] | None:
        """The ``users`` row matching the actor's email, or None when unknown."""
        if not actor.verified_email or store is None:
            return None
        try:
            return store.get("users", {"email__iexact": actor.verified_email.strip()})
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"User lookup failed: {exc}") from exc

    def resolve_actor(
        self, actor: Actor, store: Any = None, user: dict[str, Any] | None = None
    ) -> RoleId:
        """
        Resolve an actor, looking up their stored role by verified email.

        Pass ``user`` when the row is already loaded. A store that raises
        surfaces as UpstreamError; an unknown email leaves the claim uncapped.
        """
        if user is None:
            user = self.stored_user(actor, store)
        stored_role = user.get("role") if user is not None else None
        return self.resolve(actor.claimed_role, stored_role)


role_resolver = RoleResolver()
