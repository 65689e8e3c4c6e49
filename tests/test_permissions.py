"""
Tests for the Access Gate.

Validates:
- Membership-based module decisions
- Public modules
- Fail-closed unknown modules
- Required role sets carried by denials
"""

from __future__ import annotations

import pytest

from fleetgate.errors import AuthorizationError
from fleetgate.governance.permissions import AccessGate, access_gate
from fleetgate.governance.roles import RoleCatalog, role_catalog
from fleetgate.policy.schema import MODULE_ACCESS, ROLE_DEFINITIONS, RoleId


class TestAccessGate:
    """Test module-level permission enforcement."""

    def setup_method(self):
        self.gate = AccessGate()

    def test_dispatcher_allowed_dispatch(self):
        decision = self.gate.check(RoleId.DISPATCHER, "dispatch")
        assert decision.allowed
        assert decision.module == "dispatch"

    def test_viewer_denied_dispatch(self):
        decision = self.gate.check(RoleId.VIEWER, "dispatch")
        assert not decision.allowed
        assert decision.required_list() == ["super_admin", "admin", "dispatcher"]

    def test_insurance_agent_allowed_identity(self):
        assert self.gate.check(RoleId.INSURANCE_AGENT, "identity").allowed

    def test_dispatcher_denied_identity(self):
        assert not self.gate.check(RoleId.DISPATCHER, "identity").allowed

    def test_public_module_allows_everyone(self):
        for role in RoleId:
            decision = self.gate.check(role, "home")
            assert decision.allowed
            assert decision.public
            assert decision.required_list() == []

    def test_unknown_module_fails_closed(self):
        for role in RoleId:
            decision = self.gate.check(role, "payroll")
            assert not decision.allowed, f"{role.value} should not reach an unknown module"
            assert decision.required_list() == []

    def test_alias_module(self):
        assert self.gate.check(RoleId.FLEET_MANAGER, "vehicles").allowed
        assert not self.gate.check(RoleId.DISPATCHER, "vehicles").allowed

    def test_decisions_match_matrix(self):
        """Every (role, module) decision is plain membership in the matrix."""
        for module, (_, allowed) in MODULE_ACCESS.items():
            for role in RoleId:
                expected = allowed is None or role in allowed
                assert self.gate.check(role, module).allowed == expected

    def test_require_raises_with_required_set(self):
        with pytest.raises(AuthorizationError) as excinfo:
            self.gate.require(RoleId.OWNER, "audits")
        assert excinfo.value.current_role == "owner"
        assert excinfo.value.required_roles == ["super_admin", "admin"]
        assert excinfo.value.module == "audits"

    def test_require_returns_decision_when_allowed(self):
        decision = self.gate.require(RoleId.ADMIN, "audits")
        assert decision.allowed

    def test_admin_only_preset(self):
        self.gate.require_roles(RoleId.SUPER_ADMIN, role_catalog.admin_only)
        with pytest.raises(AuthorizationError):
            self.gate.require_roles(RoleId.FLEET_MANAGER, role_catalog.admin_only)

    def test_global_gate_uses_global_catalog(self):
        assert access_gate.catalog is role_catalog


class TestCustomCatalogGate:
    """A gate ranks required roles by its own catalog, not the global one."""

    def setup_method(self):
        roles = [
            r.model_copy(update={"hierarchy_level": 95}) if r.id == RoleId.DISPATCHER else r
            for r in ROLE_DEFINITIONS
        ]
        self.gate = AccessGate(catalog=RoleCatalog(roles=roles))

    def test_required_list_uses_gate_catalog(self):
        decision = self.gate.check(RoleId.VIEWER, "dispatch")
        assert decision.required_list() == ["super_admin", "dispatcher", "admin"]

    def test_denial_carries_gate_ordering(self):
        with pytest.raises(AuthorizationError) as excinfo:
            self.gate.require(RoleId.OWNER, "dispatch")
        assert excinfo.value.required_roles == ["super_admin", "dispatcher", "admin"]
