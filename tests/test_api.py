"""
Tests for the HTTP API.

Validates:
- Role claim sources (header, body, query) and the stored-role ceiling
- Status mapping: 400, 403, 404, 409, 429, 503
- Decision response shapes for dispatch and identity
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from fleetgate.api.app import app, state
from fleetgate.config import FleetGateSettings
from fleetgate.engine import AuthorizationEngine
from fleetgate.errors import AuthorizationError, ThrottledError, ValidationError
from fleetgate.ledger.keyed_store import InMemoryKeyedStore
from fleetgate.policy.schema import Actor, Verdict

from conftest import add_owner, add_policy, add_user, add_vehicle, link_owner

DISPATCHER = {"x-trufleet-role": "dispatcher"}
AGENT = {"x-trufleet-role": "insurance_agent"}
ADMIN = {"x-trufleet-role": "admin"}


def in_days(days: int):
    return datetime.now(timezone.utc).date() + timedelta(days=days)


@pytest.fixture
def engine(store):
    engine = AuthorizationEngine(
        store,
        keyed_store=InMemoryKeyedStore(),
        settings=FleetGateSettings(attempt_limit=5, attempt_window_seconds=60),
    )
    state.engine = engine
    yield engine
    state.engine = None


@pytest.fixture
def client(engine):
    return TestClient(app)


@pytest.fixture
def fleet(store):
    """One vehicle that passes everything, one personal vehicle."""
    add_vehicle(store, "AB12CDE", insurance_expiry=in_days(10))
    add_owner(store, "OWN-1", kyc_status="pending")
    link_owner(store, "AB12CDE", "OWN-1", from_date=in_days(-300))
    add_policy(store, "AB12CDE", valid_from=in_days(-355), valid_until=in_days(10))
    add_vehicle(store, "PV11AAA", vehicle_usage="personal", insurance_expiry=in_days(100))


class TestRoleRoutes:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["engine"] is True

    def test_roles(self, client):
        roles = client.get("/roles").json()
        assert [r["role"] for r in roles][:2] == ["super_admin", "admin"]
        assert roles[-1]["level"] == 10

    def test_matrix(self, client):
        matrix = client.get("/roles/matrix").json()
        assert {m["module"] for m in matrix["modules"]} >= {"dispatch", "identity", "audits"}

    def test_users_admin_only(self, client, store):
        add_user(store, "sam@fleet.io", "viewer")
        assert client.get("/roles/users", headers=ADMIN).status_code == 200
        denied = client.get("/roles/users", headers={"x-trufleet-role": "fleet_manager"})
        assert denied.status_code == 403
        assert denied.json()["required"] == ["super_admin", "admin"]

    def test_assign(self, client, store):
        add_user(store, "sam@fleet.io", "viewer", user_id="u-1")
        resp = client.post(
            "/roles/assign",
            json={"user_id": "u-1", "role": "dispatcher", "actor_email": "root@fleet.io"},
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "user": {"id": "u-1", "name": "Sam", "email": "sam@fleet.io", "role": "dispatcher"},
        }

    def test_assign_invalid_role(self, client, store):
        add_user(store, "sam@fleet.io", "viewer", user_id="u-1")
        resp = client.post("/roles/assign", json={"user_id": "u-1", "role": "boss"}, headers=ADMIN)
        assert resp.status_code == 400
        assert "Invalid role" in resp.json()["error"]

    def test_check(self, client, store):
        add_user(store, "dee@fleet.io", "Dispatcher")
        body = client.get("/roles/check", params={"email": "DEE@fleet.io", "module": "dispatch"}).json()
        assert body["role"] == "dispatcher"
        assert body["allowed"] is True
        assert body["required"] == ["super_admin", "admin", "dispatcher"]

    def test_check_unknown_user(self, client):
        resp = client.get("/roles/check", params={"email": "ghost@fleet.io", "module": "dispatch"})
        assert resp.status_code == 404

    def test_check_missing_params(self, client):
        assert client.get("/roles/check", params={"email": "a@b.c"}).status_code == 400


class TestDispatchRoutes:
    def test_authorized(self, client, fleet):
        resp = client.post("/dispatch/authorize", json={"vehicle_id": "ab12cde"}, headers=DISPATCHER)
        body = resp.json()

        assert resp.status_code == 200
        assert body["result"] == "AUTHORIZED"
        assert body["code"] == f"AUTH-{datetime.now(timezone.utc).year}-000001"
        assert "reason" not in body
        assert body["checks"]["days_remaining"] == 10
        assert body["vehicle"]["id"] == "AB12CDE"
        assert [s["step"] for s in body["steps"]] == [
            "VEHICLE_REGISTRY", "USAGE_ELIGIBILITY", "VEHICLE_STATUS", "INSURANCE_EXPIRY",
        ]

    def test_personal_denied(self, client, fleet):
        body = client.post("/dispatch/authorize", json={"vehicle_id": "PV11AAA"}, headers=DISPATCHER).json()
        assert body["result"] == "DENIED"
        assert "Personal" in body["reason"]
        assert "code" not in body

    def test_not_found_is_a_verdict(self, client, fleet):
        resp = client.post("/dispatch/authorize", json={"vehicle_id": "ZZ00ZZZ"}, headers=DISPATCHER)
        assert resp.status_code == 200
        assert resp.json()["checks"] == {"found": False}
        assert "vehicle" not in resp.json()

    def test_missing_vehicle_id(self, client):
        resp = client.post("/dispatch/authorize", json={}, headers=DISPATCHER)
        assert resp.status_code == 400

    def test_viewer_forbidden(self, client, fleet):
        resp = client.post("/dispatch/authorize", json={"vehicle_id": "AB12CDE"})
        assert resp.status_code == 403
        assert resp.json() == {
            "error": "Insufficient permissions",
            "required": ["super_admin", "admin", "dispatcher"],
            "current": "viewer",
        }

    def test_role_from_body(self, client, fleet):
        resp = client.post(
            "/dispatch/authorize", json={"vehicle_id": "AB12CDE", "actor_role": "Dispatch"}
        )
        assert resp.json()["result"] == "AUTHORIZED"

    def test_role_from_query(self, client, fleet):
        resp = client.get("/dispatch/stats", params={"role": "admin"})
        assert resp.status_code == 200

    def test_claim_capped_by_stored_role(self, client, store, fleet):
        """Claimed admin with stored viewer is treated as viewer."""
        add_user(store, "val@fleet.io", "viewer")
        resp = client.post(
            "/dispatch/authorize",
            json={"vehicle_id": "AB12CDE"},
            headers={"x-trufleet-role": "admin", "x-trufleet-email": "val@fleet.io"},
        )
        assert resp.status_code == 403
        assert resp.json()["current"] == "viewer"

    def test_stats_and_logs(self, client, fleet):
        client.post("/dispatch/authorize", json={"vehicle_id": "AB12CDE"}, headers=DISPATCHER)
        client.post("/dispatch/authorize", json={"vehicle_id": "PV11AAA"}, headers=DISPATCHER)

        stats = client.get("/dispatch/stats", headers=DISPATCHER).json()
        assert stats == {"authorized": 1, "denied": 1, "total": 2}

        logs = client.get("/dispatch/logs", params={"limit": 10}, headers=DISPATCHER).json()
        assert {entry["action"] for entry in logs} == {"DISPATCH_AUTHORIZED", "DISPATCH_DENIED"}

    def test_throttled(self, client, fleet):
        for _ in range(5):
            client.post("/dispatch/authorize", json={"vehicle_id": "AB12CDE"}, headers=DISPATCHER)
        resp = client.post("/dispatch/authorize", json={"vehicle_id": "AB12CDE"}, headers=DISPATCHER)
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "60"

    def test_rotating_unknown_emails_share_one_bucket(self, client, fleet):
        statuses = [
            client.post(
                "/dispatch/authorize",
                json={"vehicle_id": "AB12CDE"},
                headers={**DISPATCHER, "x-trufleet-email": f"x{i}@nowhere.io"},
            ).status_code
            for i in range(6)
        ]
        assert statuses == [200, 200, 200, 200, 200, 429]


class TestIdentityRoutes:
    def test_verify_with_pending_kyc(self, client, fleet):
        body = client.post(
            "/identity/verify", json={"vehicle_id": "AB12CDE", "actor": "desk-3"}, headers=AGENT
        ).json()

        assert body["result"] == "AUTHORIZED"
        assert body["code"].startswith("IDV-")
        assert body["owner"]["kyc_status"] == "pending"
        assert body["policy"]["days_remaining"] == 10
        outcomes = {c["step"]: c["status"] for c in body["checks"]}
        assert outcomes["OWNER_KYC"] == "WARN"
        assert len(body["checks"]) == 7

    def test_verify_dispatcher_forbidden(self, client, fleet):
        resp = client.post("/identity/verify", json={"vehicle_id": "AB12CDE"}, headers=DISPATCHER)
        assert resp.status_code == 403

    def test_card(self, client, fleet):
        body = client.get("/identity/AB12CDE", headers=AGENT).json()
        assert body["current_policy"]["risk_level"] == "warning"
        assert body["current_owner"]["id"] == "OWN-1"

    def test_card_unknown(self, client):
        assert client.get("/identity/NOPE", headers=AGENT).status_code == 404

    def test_stats(self, client, fleet):
        client.post("/identity/verify", json={"vehicle_id": "AB12CDE"}, headers=AGENT)
        client.post("/identity/verify", json={"vehicle_id": "NOPE"}, headers=AGENT)
        stats = client.get("/identity/stats", headers=AGENT).json()
        assert stats["authorizedToday"] == 1
        assert stats["deniedToday"] == 1
        assert stats["authRate"] == 50
        assert stats["pendingKyc"] == 1


class TestInsuranceRoutes:
    def test_register(self, client, fleet, store):
        resp = client.post(
            "/insurance",
            json={
                "vehicle_id": "AB12CDE",
                "provider": "Zurich",
                "policy_number": "ZU-77",
                "valid_from": in_days(0).isoformat(),
                "valid_until": in_days(365).isoformat(),
            },
            headers=AGENT,
        )
        assert resp.status_code == 201
        assert resp.json()["policy_number"] == "ZU-77"
        assert store.get("vehicles", {"id": "AB12CDE"})["policy_number"] == "ZU-77"

    def test_register_conflict(self, client, fleet, store):
        payload = {
            "vehicle_id": "AB12CDE",
            "provider": "Aviva",
            "policy_number": "AV-AB12CDE",
            "valid_from": in_days(0).isoformat(),
            "valid_until": in_days(365).isoformat(),
        }
        assert client.post("/insurance", json=payload, headers=AGENT).status_code == 409


class TestUnavailableEngine:
    def test_routes_report_503(self):
        state.engine = None
        client = TestClient(app)
        resp = client.post("/dispatch/authorize", json={"vehicle_id": "AB12CDE"}, headers=DISPATCHER)
        assert resp.status_code == 503
        assert client.get("/health").json()["status"] == "degraded"


class TestDecisionThrottling:
    """Attempts are counted per stored user or role, and per client address."""

    def test_spoofed_email_cannot_spend_a_users_quota(self, engine, store, fleet):
        add_user(store, "dee@fleet.io", "dispatcher")
        elsewhere = Actor(claimed_role="dispatcher", verified_email="dee@fleet.io", client_host="10.0.0.66")
        dee = Actor(claimed_role="dispatcher", verified_email="dee@fleet.io", client_host="10.0.0.5")

        for _ in range(5):
            engine.authorize_dispatch(elsewhere, "AB12CDE")
        with pytest.raises(ThrottledError):
            engine.authorize_dispatch(elsewhere, "AB12CDE")

        assert engine.authorize_dispatch(dee, "AB12CDE").verdict == Verdict.AUTHORIZED

    def test_unknown_emails_count_against_role_and_client(self, engine, fleet):
        for i in range(5):
            actor = Actor(claimed_role="dispatcher", verified_email=f"x{i}@nowhere.io", client_host="10.0.0.9")
            engine.authorize_dispatch(actor, "AB12CDE")
        with pytest.raises(ThrottledError):
            engine.authorize_dispatch(Actor(claimed_role="dispatcher", client_host="10.0.0.9"), "AB12CDE")

    def test_invalid_reference_does_not_use_an_attempt(self, engine, fleet):
        actor = Actor(claimed_role="dispatcher", client_host="10.0.0.7")
        for _ in range(10):
            with pytest.raises(ValidationError):
                engine.authorize_dispatch(actor, "  ")
        assert engine.authorize_dispatch(actor, "AB12CDE").verdict == Verdict.AUTHORIZED

    def test_forbidden_caller_does_not_use_an_attempt(self, engine, fleet):
        viewer = Actor(claimed_role="viewer", client_host="10.0.0.8")
        for _ in range(10):
            with pytest.raises(AuthorizationError):
                engine.authorize_dispatch(viewer, "AB12CDE")
        assert engine.throttle.store.get("attempts:dispatch:role:viewer@10.0.0.8") is None
