"""Shared fixtures: a file-backed SQLite record store and row seeders."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest

from fleetgate.ledger.records import SqlRecordStore

NOW = datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc)
TODAY = NOW.date()


def days_from_today(days: int) -> date:
    return TODAY + timedelta(days=days)


@pytest.fixture
def store(tmp_path) -> SqlRecordStore:
    s = SqlRecordStore(f"sqlite:///{tmp_path}/fleetgate.db")
    s.initialize()
    return s


def add_vehicle(store: SqlRecordStore, vehicle_id: str = "AB12CDE", **fields: Any) -> dict:
    row = {
        "id": vehicle_id,
        "make": "Volvo",
        "model": "FH16",
        "vehicle_type": "Truck",
        "owner": "Northwind Haulage",
        "vehicle_usage": "commercial",
        "status": "Active",
        "insurance_provider": "Aviva",
        "policy_number": f"POL-{vehicle_id}",
        "insurance_expiry": days_from_today(90),
    }
    row.update(fields)
    return store.insert("vehicles", row)


def add_fleet_vehicle(store: SqlRecordStore, vehicle_number: str, **fields: Any) -> dict:
    row = {
        "vehicle_number": vehicle_number,
        "vin": f"VIN{vehicle_number}",
        "owner_name": "Fleet Ops",
        "vehicle_type": "Van",
        "vehicle_usage": "commercial",
        "status": "active",
        "insurance_expiry": days_from_today(60),
    }
    row.update(fields)
    return store.insert("fleet_vehicles", row)


def add_owner(store: SqlRecordStore, owner_id: str = "OWN-1", **fields: Any) -> dict:
    row = {
        "id": owner_id,
        "name": "Dana Reyes",
        "email": "dana@northwind.io",
        "active": True,
        "kyc_status": "verified",
        "license_type": "HGV",
    }
    row.update(fields)
    return store.insert("owners", row)


def link_owner(
    store: SqlRecordStore, vehicle_id: str = "AB12CDE", owner_id: str = "OWN-1", **fields: Any
) -> dict:
    row = {
        "vehicle_id": vehicle_id,
        "owner_id": owner_id,
        "ownership_type": "company",
        "is_current": True,
        "from_date": days_from_today(-400),
    }
    row.update(fields)
    return store.insert("vehicle_ownership", row)


def add_policy(store: SqlRecordStore, vehicle_id: str = "AB12CDE", **fields: Any) -> dict:
    row = {
        "vehicle_id": vehicle_id,
        "provider": "Aviva",
        "policy_number": f"AV-{vehicle_id}",
        "policy_type": "comprehensive",
        "status": "active",
        "valid_from": days_from_today(-275),
        "valid_until": days_from_today(90),
    }
    row.update(fields)
    return store.insert("insurance_policies", row)


def add_user(store: SqlRecordStore, email: str, role: str, user_id: str | None = None) -> dict:
    return store.insert("users", {
        "id": user_id or email.split("@")[0],
        "name": email.split("@")[0].title(),
        "email": email,
        "role": role,
    })


def seed_verified_vehicle(store: SqlRecordStore, vehicle_id: str = "AB12CDE") -> None:
    """A vehicle that passes every identity step."""
    add_vehicle(store, vehicle_id)
    add_owner(store, f"OWN-{vehicle_id}")
    link_owner(store, vehicle_id, f"OWN-{vehicle_id}")
    add_policy(store, vehicle_id)
