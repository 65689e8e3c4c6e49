"""
Verification Chains — ordered, auditable vehicle authorization decisions.

Two distinct policies run over the same snapshot data:

Identity chain (``verify``) — every step is recorded, failures do not stop
the walk except where later steps depend on the failed one:

    VEHICLE_REGISTRY → VEHICLE_STATUS → OWNERSHIP_RECORD → OWNER_ACTIVE
    → OWNER_KYC → INSURANCE_POLICY → INSURANCE_VALIDITY

Dispatch chain (``authorize_dispatch``) — stops at the first failure:

    VEHICLE_REGISTRY → USAGE_ELIGIBILITY → VEHICLE_STATUS → INSURANCE_EXPIRY

Rules common to both:

- the first FAIL in chain order is the denial reason; later FAILs never
  replace it
- steps that depend on a failed precondition are SKIP and never evaluated
- WARN is informational and never changes the verdict
- one ``now`` is captured per run, so re-running with the same ``now`` and
  snapshot yields the same trace
- an AUTHORIZED verdict gets a freshly reserved sequence code
- every verdict is handed to the auditor; audit failures are logged and
  never alter the verdict
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fleetgate.errors import ValidationError
from fleetgate.ledger.service import DecisionAuditor
from fleetgate.policy.schema import (
    AuditEntry,
    ChainKind,
    InsurancePolicy,
    KycStatus,
    OwnerProfile,
    StepName,
    StepOutcome,
    VehicleSnapshot,
    Verdict,
    VerificationResult,
    VerificationStep,
)
from fleetgate.verification.expiry import days_remaining
from fleetgate.verification.sequence import SequenceCodeGenerator
from fleetgate.verification.snapshots import SnapshotLoader

logger = logging.getLogger(__name__)

IDENTITY_AUTHORIZED = "IDENTITY_AUTHORIZED"
IDENTITY_DENIED = "IDENTITY_DENIED"
DISPATCH_AUTHORIZED = "DISPATCH_AUTHORIZED"
DISPATCH_DENIED = "DISPATCH_DENIED"

_IDENTITY_DOWNSTREAM = (
    StepName.VEHICLE_STATUS,
    StepName.OWNERSHIP_RECORD,
    StepName.OWNER_ACTIVE,
    StepName.OWNER_KYC,
    StepName.INSURANCE_POLICY,
    StepName.INSURANCE_VALIDITY,
)


class _Trace:
    """Accumulates steps and remembers the first failure."""

    def __init__(self) -> None:
        self.steps: list[VerificationStep] = []
        self.denial_reason: str | None = None

    @property
    def denied(self) -> bool:
        return self.denial_reason is not None

    def _add(self, name: StepName, outcome: StepOutcome, note: str | None, days: int | None) -> None:
        self.steps.append(
            VerificationStep(name=name, outcome=outcome, note=note, days_remaining=days)
        )

    def passed(self, name: StepName, note: str | None = None, days: int | None = None) -> None:
        self._add(name, StepOutcome.PASS, note, days)

    def failed(self, name: StepName, note: str, days: int | None = None) -> None:
        self._add(name, StepOutcome.FAIL, note, days)
        if self.denial_reason is None:
            self.denial_reason = note

    def warned(self, name: StepName, note: str, days: int | None = None) -> None:
        self._add(name, StepOutcome.WARN, note, days)

    def skipped(self, name: StepName, note: str) -> None:
        self._add(name, StepOutcome.SKIP, note, None)


def _capture_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def require_reference(vehicle_id: str | None) -> str:
    reference = (vehicle_id or "").strip()
    if not reference:
        raise ValidationError("vehicle_id is required")
    return reference


class VerificationChain:
    """
    Runs the identity and dispatch chains against record-store snapshots.

    Usage:
        chain = VerificationChain(
            loader=SnapshotLoader(store),
            codes=SequenceCodeGenerator(store),
            auditor=AuditLedgerService(store),
        )
        result = chain.authorize_dispatch("AB12CDE", actor="dispatcher@fleet.io")
        if result.authorized:
            print(result.sequence_code)
    """

    def __init__(
        self,
        loader: SnapshotLoader,
        codes: SequenceCodeGenerator | None = None,
        auditor: DecisionAuditor | None = None,
        identity_prefix: str = "IDV",
        dispatch_prefix: str = "AUTH",
        expiry_warning_days: int = 7,
        kyc_pending_denies: bool = False,
    ) -> None:
        self.loader = loader
        self.codes = codes
        self.auditor = auditor
        self.identity_prefix = identity_prefix
        self.dispatch_prefix = dispatch_prefix
        self.expiry_warning_days = expiry_warning_days
        self.kyc_pending_denies = kyc_pending_denies

    # ════════════════════════════════════════════════════════════
    # Identity chain
    # ════════════════════════════════════════════════════════════

    def verify(
        self,
        vehicle_id: str,
        actor: str = "api",
        now: datetime | None = None,
    ) -> VerificationResult:
        """
        Walk the full identity chain for one vehicle.

        Raises:
            ValidationError: If no vehicle id is given.
            UpstreamError: If the record store fails.
        """
        reference = require_reference(vehicle_id)
        now = _capture_now(now)
        trace = _Trace()

        # 1. Vehicle registry
        vehicle = self.loader.registry_vehicle(reference)
        if vehicle is None:
            trace.failed(StepName.VEHICLE_REGISTRY, f'Vehicle "{reference}" not found in registry')
            for name in _IDENTITY_DOWNSTREAM:
                trace.skipped(name, "Skipped — vehicle not found")
            return self._conclude(ChainKind.IDENTITY, reference, trace, now, actor)

        found = " ".join(p for p in (vehicle.make, vehicle.vehicle_type) if p) or vehicle.id
        trace.passed(StepName.VEHICLE_REGISTRY, f"Found: {found}")

        # 2. Vehicle status
        if vehicle.is_blocked:
            trace.failed(StepName.VEHICLE_STATUS, "Vehicle is administratively blocked")
        else:
            trace.passed(StepName.VEHICLE_STATUS, f"Status: {vehicle.status or 'unknown'}")

        # 3–5. Ownership, owner account, KYC
        owner = self._ownership_steps(trace, vehicle)

        # 6–7. Insurance
        policy, days = self._insurance_steps(trace, vehicle, now)

        return self._conclude(
            ChainKind.IDENTITY, vehicle.id, trace, now, actor,
            vehicle=vehicle, owner=owner, policy=policy, days=days,
        )

    def _ownership_steps(self, trace: _Trace, vehicle: VehicleSnapshot) -> OwnerProfile | None:
        ownership = self.loader.current_ownership(vehicle.id)
        if ownership is None:
            trace.failed(StepName.OWNERSHIP_RECORD, "No registered owner on file for this vehicle")
            trace.skipped(StepName.OWNER_ACTIVE, "Skipped — no ownership record")
            trace.skipped(StepName.OWNER_KYC, "Skipped — no ownership record")
            return None

        owner = self.loader.owner(ownership.owner_id)
        name = owner.name if owner is not None else "Unknown"
        trace.passed(StepName.OWNERSHIP_RECORD, f"Owner: {name} ({ownership.ownership_type})")

        if owner is None:
            trace.failed(StepName.OWNER_ACTIVE, f"Owner profile {ownership.owner_id} not found")
            trace.skipped(StepName.OWNER_KYC, "Skipped — no owner profile")
            return None

        if owner.active:
            trace.passed(StepName.OWNER_ACTIVE, f"{owner.name} — active")
        else:
            trace.failed(StepName.OWNER_ACTIVE, f'Owner "{owner.name}" account is deactivated')

        if owner.kyc_status == KycStatus.VERIFIED:
            trace.passed(StepName.OWNER_KYC, "KYC verified")
        elif owner.kyc_status == KycStatus.PENDING:
            if self.kyc_pending_denies:
                trace.failed(StepName.OWNER_KYC, "KYC verification pending — interaction not permitted")
            else:
                trace.warned(StepName.OWNER_KYC, "KYC verification pending — interaction flagged")
        elif owner.kyc_status == KycStatus.REJECTED:
            trace.failed(StepName.OWNER_KYC, "Owner KYC rejected — platform interaction not permitted")
        else:
            trace.skipped(StepName.OWNER_KYC, "Owner KYC status unknown")
        return owner

    def _insurance_steps(
        self,
        trace: _Trace,
        vehicle: VehicleSnapshot,
        now: datetime,
    ) -> tuple[InsurancePolicy | None, int | None]:
        policy = self.loader.active_policy(vehicle.id)
        if policy is not None:
            trace.passed(StepName.INSURANCE_POLICY, f"{policy.provider} — {policy.policy_number}")
        else:
            policy = self.loader.policy_from_vehicle(vehicle)
            if policy is None:
                trace.failed(StepName.INSURANCE_POLICY, "No active insurance policy found")
                trace.skipped(StepName.INSURANCE_VALIDITY, "Skipped — no policy")
                return None, None
            trace.passed(StepName.INSURANCE_POLICY, f"Policy {policy.policy_number} from vehicle record")

        days = days_remaining(now, policy.valid_until)
        if days is None:
            trace.failed(StepName.INSURANCE_VALIDITY, "Insurance expiry date is missing")
        elif days < 0:
            trace.failed(
                StepName.INSURANCE_VALIDITY,
                f"Insurance expired {abs(days)} day(s) ago ({policy.valid_until.isoformat()})",
                days=days,
            )
        elif days <= self.expiry_warning_days:
            trace.warned(
                StepName.INSURANCE_VALIDITY,
                f"Insurance expires in {days} day(s) — renewal required soon",
                days=days,
            )
        else:
            trace.passed(
                StepName.INSURANCE_VALIDITY,
                f"Valid for {days} more day(s) — expires {policy.valid_until.isoformat()}",
                days=days,
            )
        return policy, days

    # ════════════════════════════════════════════════════════════
    # Dispatch chain
    # ════════════════════════════════════════════════════════════

    def authorize_dispatch(
        self,
        vehicle_id: str,
        actor: str = "Dispatch System",
        now: datetime | None = None,
    ) -> VerificationResult:
        """
        Decide whether a vehicle may be dispatched.

        Personal-use vehicles are never eligible. Evaluation stops at the
        first failing step; later steps are absent from the trace.
        """
        reference = require_reference(vehicle_id)
        now = _capture_now(now)
        trace = _Trace()

        vehicle = self.loader.any_vehicle(reference)
        if vehicle is None:
            trace.failed(StepName.VEHICLE_REGISTRY, "Vehicle not found in registry")
            return self._conclude(ChainKind.DISPATCH, reference, trace, now, actor)
        trace.passed(StepName.VEHICLE_REGISTRY, f"Found in {vehicle.source}")

        if vehicle.is_personal:
            trace.failed(
                StepName.USAGE_ELIGIBILITY,
                "Personal vehicles are not eligible for dispatch authorization",
            )
            return self._conclude(ChainKind.DISPATCH, reference, trace, now, actor, vehicle=vehicle)
        trace.passed(StepName.USAGE_ELIGIBILITY, f"Usage: {vehicle.usage_type or 'commercial'}")

        if vehicle.is_blocked:
            trace.failed(StepName.VEHICLE_STATUS, "Vehicle is administratively blocked")
            return self._conclude(ChainKind.DISPATCH, reference, trace, now, actor, vehicle=vehicle)
        trace.passed(StepName.VEHICLE_STATUS, f"Status: {vehicle.status or 'unknown'}")

        days = days_remaining(now, vehicle.insurance_expiry)
        if days is None:
            trace.failed(StepName.INSURANCE_EXPIRY, "Insurance expiry date is missing")
        elif days < 0:
            trace.failed(
                StepName.INSURANCE_EXPIRY, f"Insurance expired {abs(days)} day(s) ago", days=days
            )
        else:
            trace.passed(
                StepName.INSURANCE_EXPIRY, f"Insurance valid for {days} more day(s)", days=days
            )
        return self._conclude(
            ChainKind.DISPATCH, reference, trace, now, actor, vehicle=vehicle, days=days
        )

    # ════════════════════════════════════════════════════════════
    # Verdict, code, audit
    # ════════════════════════════════════════════════════════════

    def _conclude(
        self,
        kind: ChainKind,
        subject_id: str,
        trace: _Trace,
        now: datetime,
        actor: str,
        vehicle: VehicleSnapshot | None = None,
        owner: OwnerProfile | None = None,
        policy: InsurancePolicy | None = None,
        days: int | None = None,
    ) -> VerificationResult:
        verdict = Verdict.DENIED if trace.denied else Verdict.AUTHORIZED

        code = None
        if verdict == Verdict.AUTHORIZED and self.codes is not None:
            prefix = self.identity_prefix if kind == ChainKind.IDENTITY else self.dispatch_prefix
            code = self.codes.next(prefix, now)

        result = VerificationResult(
            chain=kind,
            subject_id=subject_id,
            verdict=verdict,
            denial_reason=trace.denial_reason,
            steps=trace.steps,
            sequence_code=code,
            evaluated_at=now,
            actor=actor,
            vehicle=vehicle,
            owner=owner,
            policy=policy,
            days_remaining=days,
        )
        logger.info(
            "%s decision: subject=%s verdict=%s reason=%s code=%s",
            kind.value, subject_id, verdict.value, trace.denial_reason, code,
        )
        self._record(result)
        return result

    def _record(self, result: VerificationResult) -> None:
        if self.auditor is None:
            return
        entry = (
            identity_audit_entry(result)
            if result.chain == ChainKind.IDENTITY
            else dispatch_audit_entry(result)
        )
        try:
            self.auditor.append(entry)
        except Exception as exc:
            logger.warning(
                "Could not write audit entry for %s %s: %s",
                entry.action, entry.entity_id, exc,
            )


# ════════════════════════════════════════════════════════════════
# Response and audit shapes
# ════════════════════════════════════════════════════════════════


def dispatch_checks(result: VerificationResult) -> dict[str, Any]:
    """Flat ``checks`` dict for dispatch responses, up to the deciding step."""
    checks: dict[str, Any] = {}
    registry = result.step(StepName.VEHICLE_REGISTRY)
    checks["found"] = registry is not None and registry.outcome == StepOutcome.PASS

    usage = result.step(StepName.USAGE_ELIGIBILITY)
    if usage is not None:
        checks["personal"] = usage.outcome == StepOutcome.FAIL

    status = result.step(StepName.VEHICLE_STATUS)
    if status is not None:
        checks["not_blocked"] = status.outcome == StepOutcome.PASS

    expiry = result.step(StepName.INSURANCE_EXPIRY)
    if expiry is not None:
        checks["insurance_valid"] = expiry.outcome == StepOutcome.PASS
        checks["days_remaining"] = expiry.days_remaining
    return checks


def dispatch_audit_entry(result: VerificationResult) -> AuditEntry:
    authorized = result.authorized
    reason = result.denial_reason or "All checks passed"
    return AuditEntry(
        action=DISPATCH_AUTHORIZED if authorized else DISPATCH_DENIED,
        entity_id=result.subject_id,
        description="Dispatch authorized" if authorized else f"Dispatch denied — {reason}",
        status="AUTHORIZED" if authorized else "DENIED",
        severity="low" if authorized else "high",
        detail=reason,
        actor=result.actor,
        module="Dispatch",
        details={
            "code": result.sequence_code,
            "vehicle": result.vehicle.summary() if result.vehicle else None,
            "checks": dispatch_checks(result),
            "steps": result.public_steps(),
        },
        timestamp=result.evaluated_at,
    )


def identity_audit_entry(result: VerificationResult) -> AuditEntry:
    authorized = result.authorized
    return AuditEntry(
        action=IDENTITY_AUTHORIZED if authorized else IDENTITY_DENIED,
        entity_id=result.subject_id,
        description=f"Identity check for {result.subject_id}: {result.verdict.value}",
        status="SUCCESS" if authorized else "FAILURE",
        severity="LOW" if authorized else "HIGH",
        detail=result.denial_reason or "All checks passed",
        actor=result.actor,
        module="IDENTITY",
        details={
            "result": result.verdict.value,
            "code": result.sequence_code,
            "checks": result.public_steps(),
        },
        timestamp=result.evaluated_at,
    )
