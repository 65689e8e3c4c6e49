"""
Record Store & Audit Log — SQLAlchemy models.

The platform tables (vehicles, owners, policies, users) are owned by the
rest of the fleet platform; FleetGate reads them as snapshots and only
writes the denormalized insurance sync fields and user roles.

Tables FleetGate owns:

1. ``audit_logs``        — append-only decision trail; no UPDATE or DELETE
2. ``sequence_counters`` — one row per (prefix, day), atomically incremented
3. ``keyed_entries``     — keyed values with expiry (attempt throttling)
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all FleetGate models."""
    pass


# ════════════════════════════════════════════════════════════════
# Platform records (read as snapshots)
# ════════════════════════════════════════════════════════════════


class VehicleDB(Base):
    """Canonical vehicle registry. ``id`` is the registration number."""

    __tablename__ = "vehicles"

    id = Column(String(32), primary_key=True)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)
    vehicle_type = Column(String(50), nullable=True)
    vin = Column(String(32), nullable=True)
    year = Column(Integer, nullable=True)
    owner = Column(String(200), nullable=True, comment="Denormalized owner name")
    vehicle_usage = Column(
        String(20), nullable=True, default="commercial",
        comment="commercial or personal",
    )
    status = Column(
        String(20), nullable=False, default="Active",
        comment="Active, Blocked, Maintenance, Inactive (case varies)",
    )

    # Denormalized from insurance_policies (kept in sync by register_policy)
    insurance_provider = Column(String(200), nullable=True)
    policy_number = Column(String(100), nullable=True)
    insurance_expiry = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class FleetVehicleDB(Base):
    """Secondary fleet registry with its own vehicle shape."""

    __tablename__ = "fleet_vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_number = Column(String(32), nullable=False, unique=True)
    vin = Column(String(32), nullable=True)
    owner_name = Column(String(200), nullable=True)
    vehicle_type = Column(String(50), nullable=True)
    vehicle_usage = Column(String(20), nullable=True)
    status = Column(String(20), nullable=True)
    insurance_expiry = Column(Date, nullable=True)
    make = Column(String(100), nullable=True)
    model = Column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_fleet_vehicle_vin", "vin"),
    )


class OwnerDB(Base):
    """Vehicle owners and their KYC state."""

    __tablename__ = "owners"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    kyc_status = Column(
        String(20), nullable=True,
        comment="pending, verified, or rejected",
    )
    license_type = Column(String(50), nullable=True)


class VehicleOwnershipDB(Base):
    """
    Ownership history. At most one row per vehicle may be current,
    enforced by a partial unique index.
    """

    __tablename__ = "vehicle_ownership"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(String(32), ForeignKey("vehicles.id"), nullable=False)
    owner_id = Column(String(64), ForeignKey("owners.id"), nullable=False)
    ownership_type = Column(String(30), nullable=False, default="individual")
    is_current = Column(Boolean, nullable=False, default=True)
    from_date = Column(Date, nullable=True)
    to_date = Column(Date, nullable=True)

    __table_args__ = (
        Index("ix_ownership_vehicle", "vehicle_id"),
        Index(
            "uq_ownership_current",
            "vehicle_id",
            unique=True,
            postgresql_where=is_current.is_(True),
            sqlite_where=is_current.is_(True),
        ),
    )


class InsurancePolicyDB(Base):
    """
    Dedicated insurance policy records. At most one active policy per
    vehicle; prior active policies are superseded on registration.
    """

    __tablename__ = "insurance_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(String(32), ForeignKey("vehicles.id"), nullable=False)
    provider = Column(String(200), nullable=False)
    policy_number = Column(String(100), nullable=False, unique=True)
    policy_type = Column(String(50), nullable=False, default="comprehensive")
    premium_amount = Column(Numeric(12, 2), nullable=True)
    status = Column(
        String(20), nullable=False, default="active",
        comment="active, cancelled, suspended, expired, superseded",
    )
    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False)
    nominee = Column(String(200), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_policy_vehicle_status", "vehicle_id", "status"),
        Index(
            "uq_policy_active",
            "vehicle_id",
            unique=True,
            postgresql_where=(status == "active"),
            sqlite_where=(status == "active"),
        ),
    )


class UserDB(Base):
    """Platform users. ``role`` is the trusted stored role."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=True)
    email = Column(String(200), nullable=False, unique=True)
    role = Column(String(50), nullable=False, default="viewer")
    initials = Column(String(4), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


# ════════════════════════════════════════════════════════════════
# FleetGate-owned tables
# ════════════════════════════════════════════════════════════════


class AuditLogDB(Base):
    """
    Append-only audit trail of every authorization decision and role change.

    The column set is shared with other platform services and must stay
    backward-compatible: add columns, never rename or drop them.
    """

    __tablename__ = "audit_logs"

    id = Column(String(64), primary_key=True)
    action = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="SUCCESS")
    severity = Column(String(10), nullable=False, default="LOW")
    detail = Column(Text, nullable=True)
    actor = Column(String(200), nullable=False, default="api")
    module = Column(String(50), nullable=False, default="SYSTEM")
    details = Column(JSONType, nullable=False, default=dict)
    timestamp = Column(
        DateTime(timezone=True), nullable=False, default=func.now(),
        comment="When the decision was recorded",
    )

    __table_args__ = (
        Index("ix_audit_action_timestamp", "action", "timestamp"),
        Index("ix_audit_entity", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.id} action={self.action} entity={self.entity_id}>"


class SequenceCounterDB(Base):
    """Per-day authorization code counters, one row per (prefix, day)."""

    __tablename__ = "sequence_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    prefix = Column(String(16), nullable=False)
    day = Column(Date, nullable=False)
    value = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("prefix", "day", name="uq_sequence_prefix_day"),
    )


class KeyedEntryDB(Base):
    """Keyed values with an absolute expiry. Expired rows read as absent."""

    __tablename__ = "keyed_entries"

    key = Column(String(200), primary_key=True)
    value = Column(JSONType, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
