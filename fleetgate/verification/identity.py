"""
Identity card and platform identity health.

Read-only views: neither function runs a verification chain or writes an
audit entry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fleetgate.errors import RecordNotFoundError
from fleetgate.ledger.records import RecordStore
from fleetgate.ledger.service import AuditLedgerService
from fleetgate.policy.schema import KycStatus, PolicyStatus, VehicleStatus
from fleetgate.verification.chain import IDENTITY_AUTHORIZED, IDENTITY_DENIED
from fleetgate.verification.expiry import (
    WARNING_DAYS,
    days_remaining,
    insurance_health_pct,
    risk_level,
)

logger = logging.getLogger(__name__)


def identity_card(store: RecordStore, vehicle_id: str, now: datetime | None = None) -> dict[str, Any]:
    """
    Vehicle, current owner, current policy and their histories.

    Raises:
        RecordNotFoundError: If the vehicle is not in the canonical registry.
    """
    now = now or datetime.now(timezone.utc)
    reference = (vehicle_id or "").strip()
    vehicle = store.get("vehicles", {"id__iexact": reference}) if reference else None
    if vehicle is None:
        raise RecordNotFoundError(f'Vehicle "{reference.upper()}" not found')

    vid = vehicle["id"]
    policies = store.list(
        "insurance_policies", {"vehicle_id": vid}, order_by="valid_from", descending=True
    )
    ownerships = store.list(
        "vehicle_ownership", {"vehicle_id": vid}, order_by="from_date", descending=True
    )

    owners: dict[str, dict[str, Any] | None] = {}
    for link in ownerships:
        if link["owner_id"] not in owners:
            owners[link["owner_id"]] = store.get("owners", {"id": link["owner_id"]})

    current_policy = next(
        (p for p in policies if p.get("status") == PolicyStatus.ACTIVE.value), None
    )
    days = days_remaining(now, current_policy["valid_until"]) if current_policy else None

    current_owner = None
    current_link = next((o for o in ownerships if o.get("is_current")), None)
    if current_link is not None and owners.get(current_link["owner_id"]) is not None:
        current_owner = {
            **owners[current_link["owner_id"]],
            "ownership_type": current_link.get("ownership_type"),
            "from_date": current_link.get("from_date"),
        }

    return {
        "vehicle": {
            **vehicle,
            "insurance_health_pct": insurance_health_pct(days),
            "days_until_expiry": days,
        },
        "current_owner": current_owner,
        "current_policy": (
            {**current_policy, "days_remaining": days, "risk_level": risk_level(days)}
            if current_policy else None
        ),
        "policy_history": [p for p in policies if p.get("status") != PolicyStatus.ACTIVE.value],
        "ownership_history": [
            {**link, "owner": _owner_brief(owners.get(link["owner_id"]))}
            for link in ownerships
        ],
    }


def _owner_brief(owner: dict[str, Any] | None) -> dict[str, Any] | None:
    if owner is None:
        return None
    return {k: owner.get(k) for k in ("id", "name", "email", "kyc_status")}


def identity_stats(
    store: RecordStore,
    ledger: AuditLedgerService,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Today's identity decisions plus registry-wide insurance and KYC counts."""
    now = now or datetime.now(timezone.utc)
    daily = ledger.daily_counts(IDENTITY_AUTHORIZED, IDENTITY_DENIED, now)

    active_policies = store.list(
        "insurance_policies", {"status": PolicyStatus.ACTIVE.value}
    )
    remaining = [days_remaining(now, p.get("valid_until")) for p in active_policies]
    owners = store.list("owners")

    return {
        "authorizedToday": daily["authorized"],
        "deniedToday": daily["denied"],
        "authRate": round(daily["authorized"] / daily["total"] * 100) if daily["total"] else 0,
        "expiredInsurance": sum(1 for d in remaining if d is not None and d < 0),
        "expiringInsurance": sum(1 for d in remaining if d is not None and 0 <= d <= WARNING_DAYS),
        "verifiedOwners": sum(
            1 for o in owners
            if o.get("active") and o.get("kyc_status") == KycStatus.VERIFIED.value
        ),
        "pendingKyc": sum(1 for o in owners if o.get("kyc_status") == KycStatus.PENDING.value),
        "blockedVehicles": store.count("vehicles", {"status__iexact": VehicleStatus.BLOCKED.value}),
        "totalVehicles": store.count("vehicles"),
        "totalOwners": sum(1 for o in owners if o.get("active")),
        "activePolicies": len(active_policies),
    }
