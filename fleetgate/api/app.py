"""
FleetGate — HTTP API.

FastAPI application providing:
- Role catalog and permission matrix (single source for every UI)
- User role administration (admin only)
- Dispatch authorization, daily stats and decision log
- Identity verification, identity card and identity health stats
- Insurance policy registration

The caller's role claim comes from the ``x-trufleet-role`` header, the
body field ``actor_role`` or the ``role`` query parameter, in that order.
A verified email (``x-trufleet-email`` or body ``actor_email``) caps the
claim at the user's stored role.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fleetgate.config import settings
from fleetgate.engine import AuthorizationEngine
from fleetgate.errors import (
    AuthorizationError,
    RecordConflictError,
    RecordNotFoundError,
    ThrottledError,
    UpstreamError,
    ValidationError,
)
from fleetgate.governance.roles import role_catalog
from fleetgate.policy.schema import Actor, PolicyRegistration, VerificationResult
from fleetgate.verification.chain import dispatch_checks

logger = logging.getLogger(__name__)


# ── Pydantic request models ────────────────────────────────────


class ActorFields(BaseModel):
    actor_role: str | None = None
    actor_email: str | None = None


class DispatchRequest(ActorFields):
    vehicle_id: str | None = None


class IdentityRequest(ActorFields):
    vehicle_id: str | None = None
    actor: str | None = None


class AssignRoleRequest(ActorFields):
    user_id: str | None = None
    role: str | None = None


class PolicyRequest(ActorFields, PolicyRegistration):
    make_current: bool = True


class ApiState:
    """Mutable application state injected at startup."""

    def __init__(self) -> None:
        self.engine: AuthorizationEngine | None = None
        self.startup_time: datetime = datetime.now(timezone.utc)


state = ApiState()


# ── Application lifecycle ──────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup & shutdown lifecycle — connect the engine to the record store."""
    if state.engine is None:
        try:
            from fleetgate.engine import build_engine

            state.engine = build_engine(settings)
            logger.info("FleetGate API connected to record store")
        except Exception as exc:
            logger.warning("FleetGate API could not connect to record store: %s", exc)

    yield

    logger.info("FleetGate API shut down")


app = FastAPI(
    title="FleetGate — Authorization Decision Engine",
    description="Role-based access and vehicle verification for the fleet platform",
    version="0.1.0",
    lifespan=lifespan,
)


# ── Error mapping ──────────────────────────────────────────────


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(RequestValidationError)
async def _request_shape_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {"error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
        status_code=400,
    )


@app.exception_handler(RecordConflictError)
async def _conflict_error(request: Request, exc: RecordConflictError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(AuthorizationError)
async def _authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Insufficient permissions",
            "required": exc.required_roles,
            "current": exc.current_role,
        },
        status_code=403,
    )


@app.exception_handler(RecordNotFoundError)
async def _not_found_error(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=404)


@app.exception_handler(ThrottledError)
async def _throttled_error(request: Request, exc: ThrottledError) -> JSONResponse:
    return JSONResponse(
        {"error": str(exc)},
        status_code=429,
        headers={"Retry-After": str(exc.window_seconds)},
    )


@app.exception_handler(UpstreamError)
async def _upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "Record store unavailable"}, status_code=503)


# ── Helpers ────────────────────────────────────────────────────


def _engine() -> AuthorizationEngine:
    if state.engine is None:
        raise UpstreamError("Authorization engine not initialized")
    return state.engine


def _actor(request: Request, body: ActorFields | None = None) -> Actor:
    """Build the caller from headers, then body, then query string."""
    role = (
        request.headers.get("x-trufleet-role")
        or (body.actor_role if body else None)
        or request.query_params.get("role")
    )
    email = request.headers.get("x-trufleet-email") or (body.actor_email if body else None)
    host = request.client.host if request.client else None
    return Actor(claimed_role=role or "", verified_email=email or None, client_host=host)


def _decision_body(result: VerificationResult) -> dict[str, Any]:
    body: dict[str, Any] = {"result": result.verdict.value}
    if result.denial_reason:
        body["reason"] = result.denial_reason
    if result.sequence_code:
        body["code"] = result.sequence_code
    return body


# ── Routes: Health ─────────────────────────────────────────────


@app.get("/health")
def health():
    """Liveness plus whether the engine is connected."""
    uptime = datetime.now(timezone.utc) - state.startup_time
    return {
        "status": "ok" if state.engine is not None else "degraded",
        "engine": state.engine is not None,
        "uptime_seconds": int(uptime.total_seconds()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Routes: Roles ──────────────────────────────────────────────


@app.get("/roles")
def list_roles():
    return [
        {
            "role": r.id.value,
            "label": r.label,
            "level": r.hierarchy_level,
            "description": r.description,
            "color": r.color,
            "bg": r.bg,
            "modules": r.modules,
        }
        for r in role_catalog.roles()
    ]


@app.get("/roles/matrix")
def role_matrix():
    return role_catalog.matrix()


@app.get("/roles/users")
def role_users(request: Request):
    return _engine().list_users(_actor(request))


@app.post("/roles/assign")
def role_assign(payload: AssignRoleRequest, request: Request):
    user = _engine().assign_role(
        _actor(request, payload), payload.user_id, payload.role,
        actor_email=payload.actor_email,
    )
    return {"success": True, "user": user}


@app.get("/roles/check")
def role_check(email: str | None = None, module: str | None = None):
    return _engine().check_user_access(email, module)


# ── Routes: Dispatch ───────────────────────────────────────────


@app.post("/dispatch/authorize")
def dispatch_authorize(payload: DispatchRequest, request: Request):
    result = _engine().authorize_dispatch(_actor(request, payload), payload.vehicle_id)
    body = _decision_body(result)
    body["timestamp"] = result.evaluated_at.isoformat()
    if result.vehicle is not None:
        body["vehicle"] = result.vehicle.summary()
    body["checks"] = dispatch_checks(result)
    body["steps"] = result.public_steps()
    return body


@app.get("/dispatch/stats")
def dispatch_stats(request: Request):
    return _engine().dispatch_stats(_actor(request))


@app.get("/dispatch/logs")
def dispatch_logs(request: Request, limit: int = 50):
    entries = _engine().dispatch_logs(_actor(request), limit=max(1, min(limit, 500)))
    return [e.model_dump(mode="json") for e in entries]


# ── Routes: Identity ───────────────────────────────────────────


@app.post("/identity/verify")
def identity_verify(payload: IdentityRequest, request: Request):
    result = _engine().verify_identity(
        _actor(request, payload), payload.vehicle_id, performed_by=payload.actor
    )
    body = _decision_body(result)
    body["vehicle"] = result.vehicle.model_dump(mode="json") if result.vehicle else None
    body["owner"] = result.owner.model_dump(mode="json") if result.owner else None
    body["policy"] = (
        {**result.policy.model_dump(mode="json"), "days_remaining": result.days_remaining}
        if result.policy else None
    )
    body["checks"] = result.public_steps()
    body["timestamp"] = result.evaluated_at.isoformat()
    return body


# Must be registered before /identity/{vehicle_id}
@app.get("/identity/stats")
def identity_stats(request: Request):
    return _engine().identity_stats(_actor(request))


@app.get("/identity/{vehicle_id}")
def identity_card(vehicle_id: str, request: Request):
    return _engine().identity_card(_actor(request), vehicle_id)


# ── Routes: Insurance ──────────────────────────────────────────


@app.post("/insurance", status_code=201)
def insurance_register(payload: PolicyRequest, request: Request):
    policy = PolicyRegistration.model_validate(
        payload.model_dump(include=set(PolicyRegistration.model_fields))
    )
    return _engine().register_policy(
        _actor(request, payload), policy, make_current=payload.make_current
    )
