"""
Authorization Schema — Pydantic models for every FleetGate decision entity.

These models are the canonical data structures shared by the role catalog,
the access gate, both verification chains, the audit ledger, and the HTTP
API. Record rows coming out of the store are normalized into these shapes
before any policy is evaluated.

Sections:
    Enumerations        — roles, vehicle/owner/policy states, step outcomes
    Role models         — Role, Actor
    Snapshot models     — VehicleSnapshot, OwnershipRecord, OwnerProfile, InsurancePolicy,
                          PolicyRegistration
    Decision models     — VerificationStep, VerificationResult, AuthorizationCode
    Audit models        — AuditEntry
    Role catalog data   — ROLE_DEFINITIONS, MODULE_ACCESS
"""

from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class RoleId(str, enum.Enum):
    """Canonical role identifiers. The only roles the platform knows."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    FLEET_MANAGER = "fleet_manager"
    DISPATCHER = "dispatcher"
    INSURANCE_AGENT = "insurance_agent"
    OWNER = "owner"
    VIEWER = "viewer"


class VehicleUsage(str, enum.Enum):
    """How a vehicle is registered to be used."""

    COMMERCIAL = "commercial"
    PERSONAL = "personal"


class VehicleStatus(str, enum.Enum):
    """Registry status of a vehicle (stored case-insensitively)."""

    ACTIVE = "active"
    BLOCKED = "blocked"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class KycStatus(str, enum.Enum):
    """Know-Your-Customer state of an owner."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class PolicyStatus(str, enum.Enum):
    """Lifecycle of an insurance policy record."""

    ACTIVE = "active"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class StepOutcome(str, enum.Enum):
    """Outcome of a single verification step."""

    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"
    SKIP = "SKIP"


class StepName(str, enum.Enum):
    """Named steps used by the identity and dispatch chains."""

    VEHICLE_REGISTRY = "VEHICLE_REGISTRY"
    VEHICLE_STATUS = "VEHICLE_STATUS"
    OWNERSHIP_RECORD = "OWNERSHIP_RECORD"
    OWNER_ACTIVE = "OWNER_ACTIVE"
    OWNER_KYC = "OWNER_KYC"
    INSURANCE_POLICY = "INSURANCE_POLICY"
    INSURANCE_VALIDITY = "INSURANCE_VALIDITY"

    # Dispatch-only
    USAGE_ELIGIBILITY = "USAGE_ELIGIBILITY"
    INSURANCE_EXPIRY = "INSURANCE_EXPIRY"


class Verdict(str, enum.Enum):
    """Terminal outcome of a chain run."""

    AUTHORIZED = "AUTHORIZED"
    DENIED = "DENIED"


class ChainKind(str, enum.Enum):
    """Which policy produced a result."""

    IDENTITY = "identity"
    DISPATCH = "dispatch"


# ════════════════════════════════════════════════════════════════
# Role Models
# ════════════════════════════════════════════════════════════════


class Role(BaseModel):
    """A catalog role with its rank and display metadata."""

    id: RoleId
    label: str
    hierarchy_level: int = Field(description="Higher = more privileged; unique per role")
    description: str = ""
    color: str = "#374151"
    bg: str = "#F3F4F6"
    modules: list[str] = Field(default_factory=list, description="Module labels for display")

    model_config = {"frozen": True}


class Actor(BaseModel):
    """The caller of a request: a self-declared role plus optional email and client address."""

    claimed_role: str = "viewer"
    verified_email: str | None = None
    client_host: str | None = None

    @property
    def display(self) -> str:
        return self.verified_email or self.claimed_role


# ════════════════════════════════════════════════════════════════
# Snapshot Models
# ════════════════════════════════════════════════════════════════


class VehicleSnapshot(BaseModel):
    """
    Read-only, point-in-time view of a vehicle.

    Built from either the canonical ``vehicles`` registry or the secondary
    ``fleet_vehicles`` registry; both shapes normalize into this one.
    """

    id: str
    usage_type: str | None = None
    status: str | None = None
    insurance_expiry: date | None = None
    insurance_provider: str | None = None
    policy_number: str | None = None
    make: str | None = None
    model: str | None = None
    vehicle_type: str | None = None
    owner_name: str | None = None
    vin: str | None = None
    year: int | None = None
    source: str = "vehicles"

    @property
    def is_blocked(self) -> bool:
        return (self.status or "").strip().lower() == VehicleStatus.BLOCKED.value

    @property
    def is_personal(self) -> bool:
        return (self.usage_type or "").strip().lower() == VehicleUsage.PERSONAL.value

    def summary(self) -> dict[str, Any]:
        """Public vehicle shape returned in decision responses."""
        return {
            "id": self.id,
            "owner": self.owner_name or "—",
            "vehicle_type": self.vehicle_type or "—",
            "make": self.make or "—",
            "model": self.model or "—",
            "status": self.status or "—",
            "insurance_expiry": self.insurance_expiry.isoformat() if self.insurance_expiry else None,
        }


class OwnershipRecord(BaseModel):
    """Link between a vehicle and its owner. At most one is current per vehicle."""

    vehicle_id: str
    owner_id: str
    ownership_type: str = "individual"
    is_current: bool = True
    from_date: date | None = None


class OwnerProfile(BaseModel):
    """An owner account as seen by the identity chain."""

    id: str
    name: str = "Unknown"
    email: str | None = None
    active: bool = False
    kyc_status: KycStatus | None = None
    license_type: str | None = None


class InsurancePolicy(BaseModel):
    """An insurance policy, either a dedicated record or derived from vehicle fields."""

    vehicle_id: str
    provider: str | None = None
    policy_number: str | None = None
    policy_type: str | None = None
    status: PolicyStatus = PolicyStatus.ACTIVE
    valid_from: date | None = None
    valid_until: date | None = None
    source: str = "insurance_policies"


class PolicyRegistration(BaseModel):
    """Request to register a new insurance policy for a vehicle."""

    vehicle_id: str
    provider: str
    policy_number: str
    policy_type: str = "comprehensive"
    premium_amount: Decimal | None = None
    valid_from: date
    valid_until: date
    nominee: str | None = None


# ════════════════════════════════════════════════════════════════
# Decision Models
# ════════════════════════════════════════════════════════════════


class VerificationStep(BaseModel):
    """One entry of a decision trace."""

    name: StepName = Field(serialization_alias="step")
    outcome: StepOutcome = Field(serialization_alias="status")
    note: str | None = None
    days_remaining: int | None = None

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuthorizationCode(BaseModel):
    """Human-readable receipt id ``PREFIX-YEAR-NNNNNN``."""

    prefix: str
    year: int
    sequence: int = Field(ge=1)

    @computed_field
    @property
    def code(self) -> str:
        return f"{self.prefix}-{self.year}-{self.sequence:06d}"

    def __str__(self) -> str:
        return self.code


class VerificationResult(BaseModel):
    """
    Verdict plus the full ordered trace of a chain run.

    ``denial_reason`` is the note of the first FAIL in chain order; later
    FAILs never replace it.
    """

    chain: ChainKind
    subject_id: str
    verdict: Verdict
    denial_reason: str | None = None
    steps: list[VerificationStep] = Field(default_factory=list)
    sequence_code: str | None = None
    evaluated_at: datetime
    actor: str = "api"

    vehicle: VehicleSnapshot | None = None
    owner: OwnerProfile | None = None
    policy: InsurancePolicy | None = None
    days_remaining: int | None = None

    @property
    def authorized(self) -> bool:
        return self.verdict == Verdict.AUTHORIZED

    def step(self, name: StepName) -> VerificationStep | None:
        for entry in self.steps:
            if entry.name == name:
                return entry
        return None

    def outcomes(self) -> list[tuple[str, str]]:
        return [(s.name.value, s.outcome.value) for s in self.steps]

    def public_steps(self) -> list[dict[str, Any]]:
        return [s.to_public() for s in self.steps]


# ════════════════════════════════════════════════════════════════
# Audit Models
# ════════════════════════════════════════════════════════════════


def _event_id() -> str:
    return f"EVT_{uuid4().hex[:20]}"


class AuditEntry(BaseModel):
    """
    A row of the append-only ``audit_logs`` table.

    The field set is an externally-owned format shared with the rest of
    the platform; new fields may be added, existing ones never renamed.
    """

    id: str = Field(default_factory=_event_id)
    action: str
    entity_id: str
    description: str
    status: str = "SUCCESS"
    severity: str = "LOW"
    detail: str | None = None
    actor: str = "api"
    module: str = "SYSTEM"
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ════════════════════════════════════════════════════════════════
# Role Catalog Data
# ════════════════════════════════════════════════════════════════

ROLE_DEFINITIONS: tuple[Role, ...] = (
    Role(
        id=RoleId.SUPER_ADMIN,
        label="Super Admin",
        hierarchy_level=100,
        description="Unrestricted access to all modules, settings, and user management.",
        color="#0F172A",
        bg="#E2E8F0",
        modules=["All"],
    ),
    Role(
        id=RoleId.ADMIN,
        label="Admin",
        hierarchy_level=90,
        description=(
            "Full access to all operational modules. Can manage email "
            "recipients and view audit logs."
        ),
        color="#1D4ED8",
        bg="#DBEAFE",
        modules=[
            "Dashboard", "Fleet Management", "Insurance", "Dispatch",
            "Identity", "Owner Portal", "Audit Log", "Email Config",
        ],
    ),
    Role(
        id=RoleId.FLEET_MANAGER,
        label="Fleet Manager",
        hierarchy_level=70,
        description="Manages the vehicle registry, owner profiles, and identity verification.",
        color="#065F46",
        bg="#D1FAE5",
        modules=["Dashboard", "Fleet Management", "Insurance Monitor", "Identity", "Owner Portal"],
    ),
    Role(
        id=RoleId.DISPATCHER,
        label="Dispatcher",
        hierarchy_level=60,
        description="Operates the dispatch control system to authorise or deny vehicle movements.",
        color="#92400E",
        bg="#FEF3C7",
        modules=["Dashboard", "Dispatch Control"],
    ),
    Role(
        id=RoleId.INSURANCE_AGENT,
        label="Insurance Agent",
        hierarchy_level=50,
        description="Manages insurance policies, views insurance monitor and identity records.",
        color="#6B21A8",
        bg="#F3E8FF",
        modules=["Dashboard", "Insurance Monitor", "Identity"],
    ),
    Role(
        id=RoleId.OWNER,
        label="Owner",
        hierarchy_level=40,
        description="Access to own fleet's Owner Portal and dashboard summary.",
        color="#0E7490",
        bg="#CFFAFE",
        modules=["Dashboard", "Owner Portal"],
    ),
    Role(
        id=RoleId.VIEWER,
        label="Viewer",
        hierarchy_level=10,
        description="Read-only access to the dashboard only.",
        color="#374151",
        bg="#F3F4F6",
        modules=["Dashboard"],
    ),
)

_ALL = frozenset(RoleId)
_ADMINS = frozenset({RoleId.SUPER_ADMIN, RoleId.ADMIN})

# module id -> (display label, allowed roles); None means public
MODULE_ACCESS: dict[str, tuple[str, frozenset[RoleId] | None]] = {
    "dashboard": ("Dashboard", _ALL),
    "vehicle_management": (
        "Fleet Management",
        _ADMINS | {RoleId.FLEET_MANAGER},
    ),
    "insurance_monitor": (
        "Insurance Monitor",
        _ADMINS | {RoleId.FLEET_MANAGER, RoleId.INSURANCE_AGENT},
    ),
    "dispatch": ("Dispatch Control", _ADMINS | {RoleId.DISPATCHER}),
    "identity": (
        "Identity Management",
        _ADMINS | {RoleId.FLEET_MANAGER, RoleId.INSURANCE_AGENT},
    ),
    "owner": ("Owner Portal", _ADMINS | {RoleId.FLEET_MANAGER, RoleId.OWNER}),
    "audits": ("Audit Log", _ADMINS),
    "email_recipients": ("Email Config", _ADMINS),
    "analytics": ("Analytics", _ALL),
    "home": ("Home", None),
}

# Server route names used by older clients
MODULE_ALIASES: dict[str, str] = {
    "vehicles": "vehicle_management",
    "insurance": "insurance_monitor",
    "owners": "owner",
}
