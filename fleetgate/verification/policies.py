"""
Insurance policy registration.

A vehicle has at most one active policy. Registering a new current policy
supersedes the previous one, inserts the new record and copies its
provider, number and expiry onto the vehicle row, all in one transaction.
The dispatch chain reads those copied fields.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fleetgate.errors import RecordConflictError, RecordNotFoundError, ValidationError
from fleetgate.ledger.records import RecordStore
from fleetgate.ledger.service import DecisionAuditor
from fleetgate.policy.schema import AuditEntry, PolicyRegistration, PolicyStatus

logger = logging.getLogger(__name__)

POLICY_CREATED = "POLICY_CREATED"


def register_policy(
    store: RecordStore,
    policy: PolicyRegistration,
    make_current: bool = True,
    auditor: DecisionAuditor | None = None,
    actor: str = "api",
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Register ``policy`` as the vehicle's active insurance.

    Args:
        store: Record store holding vehicles and insurance_policies.
        policy: The policy to register.
        make_current: Supersede any existing active policy first. Without
            it, a vehicle that already has an active policy is a conflict.
        auditor: Optional sink for a POLICY_CREATED entry (best-effort).

    Returns:
        The inserted policy row.

    Raises:
        ValidationError: If ``valid_until`` is not after ``valid_from``.
        RecordNotFoundError: If the vehicle does not exist.
        RecordConflictError: On a duplicate policy number or a second
            active policy.
    """
    if policy.valid_until <= policy.valid_from:
        raise ValidationError("valid_until must be after valid_from")
    now = now or datetime.now(timezone.utc)

    with store.transaction() as tx:
        if tx.get("vehicles", {"id": policy.vehicle_id}) is None:
            raise RecordNotFoundError(f"Vehicle {policy.vehicle_id} not found")
        if tx.get("insurance_policies", {"policy_number": policy.policy_number}) is not None:
            raise RecordConflictError("A policy with this policy_number already exists.")

        active = {"vehicle_id": policy.vehicle_id, "status": PolicyStatus.ACTIVE.value}
        if make_current:
            superseded = tx.update(
                "insurance_policies", active,
                {"status": PolicyStatus.SUPERSEDED.value, "updated_at": now},
            )
            if superseded:
                logger.info("Superseded %d active policy(ies) for %s", superseded, policy.vehicle_id)
        elif tx.get("insurance_policies", active) is not None:
            raise RecordConflictError(f"Vehicle {policy.vehicle_id} already has an active policy")

        created = tx.insert("insurance_policies", {
            **policy.model_dump(),
            "status": PolicyStatus.ACTIVE.value,
            "created_at": now,
        })
        tx.update("vehicles", {"id": policy.vehicle_id}, {
            "insurance_provider": policy.provider,
            "policy_number": policy.policy_number,
            "insurance_expiry": policy.valid_until,
            "updated_at": now,
        })

    logger.info("Registered policy %s for %s", policy.policy_number, policy.vehicle_id)

    if auditor is not None:
        try:
            auditor.append(AuditEntry(
                action=POLICY_CREATED,
                entity_id=policy.vehicle_id,
                description=f"Insurance policy {policy.policy_number} issued for {policy.vehicle_id}",
                detail=f"{policy.provider} • {policy.policy_type} • expires {policy.valid_until.isoformat()}",
                actor=actor,
                module="INSURANCE",
                details={
                    "policy_id": created.get("id"),
                    "policy_number": policy.policy_number,
                    "provider": policy.provider,
                    "valid_until": policy.valid_until.isoformat(),
                },
                timestamp=now,
            ))
        except Exception as exc:
            logger.warning("Could not write audit entry for policy %s: %s", policy.policy_number, exc)
    return created
