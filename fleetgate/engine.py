"""
FleetGate — Authorization Engine.

Wires the role catalog, resolver, access gate, attempt throttle,
verification chains, sequence codes and audit ledger into the operations a
request needs:

1. resolve the actor's claimed role (capped at their stored role)
2. gate the module
3. validate the vehicle reference, then count the attempt against the
   stored user (or resolved role) at the client address
4. run the chain, reserve a code on success, audit the trace

The engine holds no per-request state. Everything mutable lives in the
injected record store and keyed store.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from fleetgate.config import FleetGateSettings, settings as default_settings
from fleetgate.errors import RecordNotFoundError, ValidationError
from fleetgate.governance.assignment import assign_role, list_users
from fleetgate.governance.permissions import AccessDecision, AccessGate, access_gate
from fleetgate.governance.resolver import RoleResolver, role_resolver
from fleetgate.governance.roles import RoleCatalog, role_catalog
from fleetgate.governance.throttle import AttemptThrottle, throttle_subject
from fleetgate.ledger.keyed_store import InMemoryKeyedStore, KeyedStore, SqlKeyedStore
from fleetgate.ledger.records import RecordStore, SqlRecordStore
from fleetgate.ledger.service import AuditLedgerService, DecisionAuditor
from fleetgate.policy.schema import Actor, AuditEntry, PolicyRegistration, RoleId, VerificationResult
from fleetgate.verification.chain import (
    DISPATCH_AUTHORIZED,
    DISPATCH_DENIED,
    IDENTITY_AUTHORIZED,
    VerificationChain,
    require_reference,
)
from fleetgate.verification.identity import identity_card, identity_stats
from fleetgate.verification.policies import register_policy
from fleetgate.verification.sequence import SequenceCodeGenerator
from fleetgate.verification.snapshots import SnapshotLoader

logger = logging.getLogger(__name__)


class AuthorizationEngine:
    """
    Request-facing facade over the decision components.

    Usage:
        engine = build_engine()
        actor = Actor(claimed_role="Dispatcher", verified_email="d@fleet.io")
        result = engine.authorize_dispatch(actor, "AB12CDE")
    """

    def __init__(
        self,
        store: RecordStore,
        keyed_store: KeyedStore | None = None,
        settings: FleetGateSettings | None = None,
        catalog: RoleCatalog | None = None,
        resolver: RoleResolver | None = None,
        gate: AccessGate | None = None,
        auditor: DecisionAuditor | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.store = store
        self.catalog = catalog or role_catalog
        self.resolver = resolver or role_resolver
        self.gate = gate or access_gate
        self.ledger = AuditLedgerService(store)
        self.auditor = auditor or self.ledger
        self.throttle = AttemptThrottle(
            keyed_store or InMemoryKeyedStore(),
            limit=self.settings.attempt_limit,
            window_seconds=self.settings.attempt_window_seconds,
        )
        self.codes = SequenceCodeGenerator(store, issued_today=self._issued_today)
        self.chain = VerificationChain(
            loader=SnapshotLoader(store),
            codes=self.codes,
            auditor=self.auditor,
            identity_prefix=self.settings.identity_code_prefix,
            dispatch_prefix=self.settings.dispatch_code_prefix,
            expiry_warning_days=self.settings.expiry_warning_days,
            kyc_pending_denies=self.settings.kyc_pending_denies,
        )

    def _issued_today(self, prefix: str, now: datetime) -> int:
        """Authorized decisions already audited today under ``prefix``."""
        if prefix == self.settings.dispatch_code_prefix.upper():
            return self.ledger.count_today(DISPATCH_AUTHORIZED, now)
        if prefix == self.settings.identity_code_prefix.upper():
            return self.ledger.count_today(IDENTITY_AUTHORIZED, now)
        return 0

    # ── Access ─────────────────────────────────────────────────

    def resolve(self, actor: Actor) -> RoleId:
        return self.resolver.resolve_actor(actor, self.store)

    def authorize_module(self, actor: Actor, module_id: str) -> AccessDecision:
        """Resolve the actor and require access to ``module_id``."""
        return self.gate.require(self.resolve(actor), module_id)

    def authorize_roles(
        self, actor: Actor, roles: Iterable[RoleId], module: str | None = None
    ) -> AccessDecision:
        """Resolve the actor and require one of ``roles`` (a preset)."""
        return self.gate.require_roles(self.resolve(actor), roles, module=module)

    def check_user_access(self, email: str | None, module_id: str | None) -> dict[str, Any]:
        """
        Whether a stored user may access a module, judged by their stored role.

        Raises:
            ValidationError: If either argument is missing.
            RecordNotFoundError: If no user has that email.
        """
        if not email or not module_id:
            raise ValidationError("email and module are required")
        user = self.store.get("users", {"email__iexact": email.strip()})
        if user is None:
            raise RecordNotFoundError("User not found")
        decision = self.gate.check(self.resolver.normalize(user.get("role")), module_id)
        return {
            "email": user["email"],
            "role": decision.role.value,
            "module": module_id,
            "allowed": decision.allowed,
            "required": decision.required_list(),
        }

    # ── Decisions ──────────────────────────────────────────────

    def _admit(
        self, actor: Actor, module_id: str, vehicle_id: str | None, now: datetime | None
    ) -> str:
        """Gate the module, validate the reference, then count the attempt."""
        user = self.resolver.stored_user(actor, self.store)
        role = self.resolver.resolve_actor(actor, user=user)
        self.gate.require(role, module_id)
        reference = require_reference(vehicle_id)
        self.throttle.hit(module_id, throttle_subject(role, user, actor.client_host), now=now)
        return reference

    def authorize_dispatch(
        self, actor: Actor, vehicle_id: str, now: datetime | None = None
    ) -> VerificationResult:
        reference = self._admit(actor, "dispatch", vehicle_id, now)
        return self.chain.authorize_dispatch(
            reference, actor=actor.verified_email or "Dispatch System", now=now
        )

    def verify_identity(
        self,
        actor: Actor,
        vehicle_id: str,
        performed_by: str | None = None,
        now: datetime | None = None,
    ) -> VerificationResult:
        reference = self._admit(actor, "identity", vehicle_id, now)
        return self.chain.verify(
            reference, actor=performed_by or actor.verified_email or "api", now=now
        )

    # ── Read-only views ────────────────────────────────────────

    def identity_card(self, actor: Actor, vehicle_id: str) -> dict[str, Any]:
        self.authorize_module(actor, "identity")
        return identity_card(self.store, vehicle_id)

    def identity_stats(self, actor: Actor) -> dict[str, Any]:
        self.authorize_module(actor, "identity")
        return identity_stats(self.store, self.ledger)

    def dispatch_stats(self, actor: Actor) -> dict[str, int]:
        self.authorize_module(actor, "dispatch")
        return self.ledger.daily_counts(DISPATCH_AUTHORIZED, DISPATCH_DENIED)

    def dispatch_logs(self, actor: Actor, limit: int = 50) -> list[AuditEntry]:
        self.authorize_module(actor, "dispatch")
        return self.ledger.recent([DISPATCH_AUTHORIZED, DISPATCH_DENIED], limit=limit)

    # ── Administration ─────────────────────────────────────────

    def list_users(self, actor: Actor) -> list[dict[str, Any]]:
        self.authorize_roles(actor, self.catalog.admin_only)
        return list_users(self.store, self.resolver)

    def assign_role(
        self, actor: Actor, user_id: str, role: str, actor_email: str | None = None
    ) -> dict[str, Any]:
        self.authorize_roles(actor, self.catalog.admin_only)
        return assign_role(
            self.store, self.auditor, user_id, role,
            actor_email=actor_email or actor.verified_email,
        )

    def register_policy(
        self, actor: Actor, policy: PolicyRegistration, make_current: bool = True
    ) -> dict[str, Any]:
        self.authorize_module(actor, "insurance_monitor")
        return register_policy(
            self.store, policy, make_current=make_current,
            auditor=self.auditor, actor=actor.display,
        )


def build_engine(settings: FleetGateSettings | None = None) -> AuthorizationEngine:
    """Engine over the configured database, with tables created if missing."""
    settings = settings or default_settings
    store = SqlRecordStore(settings.database_url_sync)
    store.initialize()
    logger.info("FleetGate engine ready (database: %s)", store.engine.url.render_as_string())
    return AuthorizationEngine(
        store,
        keyed_store=SqlKeyedStore(engine=store.engine),
        settings=settings,
    )
