"""
Tests for the dispatch authorization chain.

Validates:
- Hard short-circuits (not found, personal use, blocked)
- Insurance expiry as the only remaining check
- Fleet registry fallback
- Legacy ``checks`` dict and audit entry shape
"""

from __future__ import annotations

from fleetgate.ledger.service import AuditLedgerService
from fleetgate.policy.schema import StepName, StepOutcome, Verdict
from fleetgate.verification.chain import (
    DISPATCH_AUTHORIZED,
    DISPATCH_DENIED,
    VerificationChain,
    dispatch_checks,
)
from fleetgate.verification.sequence import SequenceCodeGenerator
from fleetgate.verification.snapshots import SnapshotLoader

from conftest import NOW, add_fleet_vehicle, add_vehicle, days_from_today


def make_chain(store) -> VerificationChain:
    return VerificationChain(
        loader=SnapshotLoader(store),
        codes=SequenceCodeGenerator(store),
        auditor=AuditLedgerService(store),
    )


class TestDispatchChain:
    """Test the narrow dispatch policy."""

    def test_vehicle_not_found(self, store):
        """Not in either registry: one FAIL step, nothing after it."""
        result = make_chain(store).authorize_dispatch("XX00XXX", now=NOW)

        assert result.verdict == Verdict.DENIED
        assert result.denial_reason == "Vehicle not found in registry"
        assert result.outcomes() == [("VEHICLE_REGISTRY", "FAIL")]
        assert dispatch_checks(result) == {"found": False}

    def test_personal_vehicle_denied_before_insurance(self, store):
        add_vehicle(store, vehicle_usage="Personal", insurance_expiry=days_from_today(200))
        result = make_chain(store).authorize_dispatch("AB12CDE", now=NOW)

        assert result.verdict == Verdict.DENIED
        assert "Personal vehicles are not eligible" in result.denial_reason
        assert result.step(StepName.INSURANCE_EXPIRY) is None
        assert result.step(StepName.VEHICLE_STATUS) is None
        assert dispatch_checks(result) == {"found": True, "personal": True}

    def test_blocked_vehicle_denied(self, store):
        add_vehicle(store, status="Blocked")
        result = make_chain(store).authorize_dispatch("AB12CDE", now=NOW)

        assert result.denial_reason == "Vehicle is administratively blocked"
        assert result.step(StepName.INSURANCE_EXPIRY) is None
        assert dispatch_checks(result)["not_blocked"] is False

    def test_expiring_in_ten_days_is_authorized(self, store):
        add_vehicle(store, insurance_expiry=days_from_today(10))
        result = make_chain(store).authorize_dispatch("AB12CDE", now=NOW)

        assert result.verdict == Verdict.AUTHORIZED
        assert result.days_remaining == 10
        assert result.sequence_code == f"AUTH-{NOW.year}-000001"
        assert result.step(StepName.INSURANCE_EXPIRY).outcome == StepOutcome.PASS
        assert dispatch_checks(result) == {
            "found": True,
            "personal": False,
            "not_blocked": True,
            "insurance_valid": True,
            "days_remaining": 10,
        }

    def test_expires_today_is_authorized(self, store):
        add_vehicle(store, insurance_expiry=days_from_today(0))
        result = make_chain(store).authorize_dispatch("AB12CDE", now=NOW)
        assert result.authorized
        assert result.days_remaining == 0

    def test_expired_three_days_ago(self, store):
        add_vehicle(store, insurance_expiry=days_from_today(-3))
        result = make_chain(store).authorize_dispatch("AB12CDE", now=NOW)

        assert result.verdict == Verdict.DENIED
        assert result.denial_reason == "Insurance expired 3 day(s) ago"
        assert result.sequence_code is None

    def test_missing_expiry_denied(self, store):
        add_vehicle(store, insurance_expiry=None)
        result = make_chain(store).authorize_dispatch("AB12CDE", now=NOW)
        assert result.denial_reason == "Insurance expiry date is missing"

    def test_fleet_registry_by_vehicle_number(self, store):
        add_fleet_vehicle(store, "FL-204", insurance_expiry=days_from_today(30))
        result = make_chain(store).authorize_dispatch("fl-204", now=NOW)

        assert result.authorized
        assert result.vehicle.source == "fleet_vehicles"
        assert result.vehicle.id == "FL-204"

    def test_fleet_registry_by_vin(self, store):
        add_fleet_vehicle(store, "FL-305", vin="1HGCM82633A004352")
        result = make_chain(store).authorize_dispatch("1HGCM82633A004352", now=NOW)
        assert result.authorized

    def test_codes_increase_through_the_day(self, store):
        add_vehicle(store, "AB12CDE")
        add_vehicle(store, "CD34EFG")
        chain = make_chain(store)

        codes = [
            chain.authorize_dispatch("AB12CDE", now=NOW).sequence_code,
            chain.authorize_dispatch("CD34EFG", now=NOW).sequence_code,
            chain.authorize_dispatch("AB12CDE", now=NOW).sequence_code,
        ]
        assert [int(c.rsplit("-", 1)[1]) for c in codes] == [1, 2, 3]


class TestDispatchAudit:
    """Test the audit entries written for dispatch decisions."""

    def test_every_verdict_is_audited(self, store):
        add_vehicle(store)
        chain = make_chain(store)
        chain.authorize_dispatch("AB12CDE", actor="dee@fleet.io", now=NOW)
        chain.authorize_dispatch("MISSING", now=NOW)

        ledger = AuditLedgerService(store)
        entries = {e.action: e for e in ledger.recent()}
        assert set(entries) == {DISPATCH_AUTHORIZED, DISPATCH_DENIED}

        ok = entries[DISPATCH_AUTHORIZED]
        assert ok.status == "AUTHORIZED"
        assert ok.severity == "low"
        assert ok.module == "Dispatch"
        assert ok.actor == "dee@fleet.io"
        assert ok.detail == "All checks passed"
        assert ok.details["code"] == f"AUTH-{NOW.year}-000001"
        assert ok.details["vehicle"]["make"] == "Volvo"

        denied = entries[DISPATCH_DENIED]
        assert denied.description == "Dispatch denied — Vehicle not found in registry"
        assert denied.actor == "Dispatch System"
        assert denied.severity == "high"
        assert denied.details["vehicle"] is None

    def test_daily_counts(self, store):
        add_vehicle(store)
        chain = make_chain(store)
        chain.authorize_dispatch("AB12CDE", now=NOW)
        chain.authorize_dispatch("AB12CDE", now=NOW)
        chain.authorize_dispatch("NOPE", now=NOW)

        counts = AuditLedgerService(store).daily_counts(DISPATCH_AUTHORIZED, DISPATCH_DENIED, NOW)
        assert counts == {"authorized": 2, "denied": 1, "total": 3}
