"""
User role administration: listing users with role metadata and assigning
stored roles.

Assignment is strict. Only exact canonical role ids are accepted; the
alias table used for request claims never applies here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fleetgate.errors import RecordNotFoundError, ValidationError
from fleetgate.governance.resolver import RoleResolver, role_resolver
from fleetgate.governance.roles import role_catalog
from fleetgate.ledger.records import RecordStore
from fleetgate.ledger.service import DecisionAuditor
from fleetgate.policy.schema import AuditEntry, RoleId

logger = logging.getLogger(__name__)

ROLE_ASSIGNED = "ROLE_ASSIGNED"

_USER_FIELDS = ("id", "name", "email", "role", "initials", "created_at")


def list_users(store: RecordStore, resolver: RoleResolver = role_resolver) -> list[dict[str, Any]]:
    """Users newest first, each with the label and colors of its role."""
    users = []
    for row in store.list("users", order_by="created_at", descending=True):
        role = role_catalog.role_of(resolver.normalize(row.get("role")))
        users.append({
            **{k: row.get(k) for k in _USER_FIELDS},
            "role_label": role.label,
            "role_color": role.color,
            "role_bg": role.bg,
        })
    return users


def assign_role(
    store: RecordStore,
    auditor: DecisionAuditor | None,
    user_id: str,
    role: str,
    actor_email: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Set a user's stored role and record a ROLE_ASSIGNED audit entry.

    Raises:
        ValidationError: Missing ``user_id``/``role`` or a non-canonical role.
        RecordNotFoundError: No user with ``user_id``.
    """
    if not user_id or not role:
        raise ValidationError("user_id and role are required")
    try:
        new_role = RoleId(role)
    except ValueError:
        valid = ", ".join(r.id.value for r in role_catalog.roles())
        raise ValidationError(f"Invalid role. Must be one of: {valid}") from None

    now = now or datetime.now(timezone.utc)
    with store.transaction() as tx:
        updated = tx.update("users", {"id": user_id}, {"role": new_role.value, "updated_at": now})
        if not updated:
            raise RecordNotFoundError("User not found")
        user = tx.get("users", {"id": user_id})

    assigned_by = actor_email or "admin"
    logger.info("Role %s assigned to %s by %s", new_role.value, user["email"], assigned_by)

    if auditor is not None:
        try:
            auditor.append(AuditEntry(
                action=ROLE_ASSIGNED,
                entity_id=user_id,
                description=f'Role "{new_role.value}" assigned to {user["email"]}',
                status="SUCCESS",
                severity="MEDIUM",
                detail=f"Assigned by: {assigned_by}",
                actor=assigned_by,
                module="RBAC",
                details={"new_role": new_role.value, "user_email": user["email"]},
                timestamp=now,
            ))
        except Exception as exc:
            logger.warning("Could not write audit entry for role change on %s: %s", user_id, exc)

    return {k: user.get(k) for k in ("id", "name", "email", "role")}
