"""
Snapshot Loader — builds the read-only views the chains evaluate.

Vehicles may live in the canonical ``vehicles`` registry or in the
secondary ``fleet_vehicles`` registry, whose rows have a different shape.
Both are normalized into one ``VehicleSnapshot`` here so the chains never
see raw rows.

A lookup that finds nothing returns None (the chain turns that into a
DENIED verdict); a store that fails raises UpstreamError.
"""

from __future__ import annotations

import logging
from typing import Any

from fleetgate.ledger.records import RecordStore
from fleetgate.policy.schema import (
    InsurancePolicy,
    KycStatus,
    OwnerProfile,
    OwnershipRecord,
    PolicyStatus,
    VehicleSnapshot,
)
from fleetgate.verification.expiry import to_utc_date

logger = logging.getLogger(__name__)


def _kyc(raw: Any) -> KycStatus | None:
    try:
        return KycStatus(str(raw).strip().lower()) if raw else None
    except ValueError:
        return None


def vehicle_from_registry(row: dict[str, Any]) -> VehicleSnapshot:
    """Normalize a canonical ``vehicles`` row."""
    return VehicleSnapshot(
        id=row["id"],
        usage_type=row.get("vehicle_usage"),
        status=row.get("status"),
        insurance_expiry=to_utc_date(row.get("insurance_expiry")),
        insurance_provider=row.get("insurance_provider"),
        policy_number=row.get("policy_number"),
        make=row.get("make"),
        model=row.get("model"),
        vehicle_type=row.get("vehicle_type"),
        owner_name=row.get("owner"),
        vin=row.get("vin"),
        year=row.get("year"),
        source="vehicles",
    )


def vehicle_from_fleet(row: dict[str, Any]) -> VehicleSnapshot:
    """Normalize a secondary ``fleet_vehicles`` row."""
    return VehicleSnapshot(
        id=row["vehicle_number"],
        usage_type=row.get("vehicle_usage"),
        status=row.get("status"),
        insurance_expiry=to_utc_date(row.get("insurance_expiry")),
        make=row.get("make"),
        model=row.get("model"),
        vehicle_type=row.get("vehicle_type"),
        owner_name=row.get("owner_name"),
        vin=row.get("vin"),
        source="fleet_vehicles",
    )


class SnapshotLoader:
    """Reads point-in-time snapshots from a RecordStore."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def registry_vehicle(self, vehicle_id: str) -> VehicleSnapshot | None:
        """Case-insensitive lookup in the canonical registry only."""
        row = self.store.get("vehicles", {"id__iexact": vehicle_id.strip()})
        return vehicle_from_registry(row) if row else None

    def any_vehicle(self, reference: str) -> VehicleSnapshot | None:
        """
        Canonical registry first, then the fleet registry by vehicle number
        or VIN.
        """
        reference = reference.strip()
        snapshot = self.registry_vehicle(reference)
        if snapshot is not None:
            return snapshot

        row = self.store.get("fleet_vehicles", {"vehicle_number__iexact": reference})
        if row is None:
            row = self.store.get("fleet_vehicles", {"vin__iexact": reference})
        if row is None:
            return None
        logger.debug("Vehicle %s resolved from fleet registry", reference)
        return vehicle_from_fleet(row)

    def current_ownership(self, vehicle_id: str) -> OwnershipRecord | None:
        row = self.store.get(
            "vehicle_ownership", {"vehicle_id": vehicle_id, "is_current": True}
        )
        if row is None:
            return None
        return OwnershipRecord(
            vehicle_id=row["vehicle_id"],
            owner_id=row["owner_id"],
            ownership_type=row.get("ownership_type") or "individual",
            is_current=bool(row.get("is_current")),
            from_date=to_utc_date(row.get("from_date")),
        )

    def owner(self, owner_id: str) -> OwnerProfile | None:
        row = self.store.get("owners", {"id": owner_id})
        if row is None:
            return None
        return owner_from_row(row)

    def active_policy(self, vehicle_id: str) -> InsurancePolicy | None:
        """The dedicated active policy record with the latest expiry, if any."""
        rows = self.store.list(
            "insurance_policies",
            {"vehicle_id": vehicle_id, "status": PolicyStatus.ACTIVE.value},
            order_by="valid_until",
            descending=True,
            limit=1,
        )
        return policy_from_row(rows[0]) if rows else None

    def policies(self, vehicle_id: str) -> list[InsurancePolicy]:
        rows = self.store.list(
            "insurance_policies", {"vehicle_id": vehicle_id},
            order_by="valid_from", descending=True,
        )
        return [policy_from_row(r) for r in rows]

    @staticmethod
    def policy_from_vehicle(vehicle: VehicleSnapshot) -> InsurancePolicy | None:
        """Fallback policy from the vehicle's denormalized insurance fields."""
        if not (vehicle.insurance_provider and vehicle.policy_number and vehicle.insurance_expiry):
            return None
        return InsurancePolicy(
            vehicle_id=vehicle.id,
            provider=vehicle.insurance_provider,
            policy_number=vehicle.policy_number,
            valid_until=vehicle.insurance_expiry,
            source="vehicle_record",
        )


def owner_from_row(row: dict[str, Any]) -> OwnerProfile:
    return OwnerProfile(
        id=row["id"],
        name=row.get("name") or "Unknown",
        email=row.get("email"),
        active=bool(row.get("active")),
        kyc_status=_kyc(row.get("kyc_status")),
        license_type=row.get("license_type"),
    )


def policy_from_row(row: dict[str, Any]) -> InsurancePolicy:
    try:
        status = PolicyStatus(str(row.get("status") or "active").lower())
    except ValueError:
        status = PolicyStatus.CANCELLED
    return InsurancePolicy(
        vehicle_id=row["vehicle_id"],
        provider=row.get("provider"),
        policy_number=row.get("policy_number"),
        policy_type=row.get("policy_type"),
        status=status,
        valid_from=to_utc_date(row.get("valid_from")),
        valid_until=to_utc_date(row.get("valid_until")),
        source="insurance_policies",
    )
