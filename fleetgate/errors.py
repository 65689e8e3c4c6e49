"""
FleetGate error taxonomy.

Policy denials caused by missing records are NOT errors: they come back as
DENIED verdicts with a full trace. The exceptions here cover everything
that must stay distinguishable from a verdict.
"""

from __future__ import annotations

from typing import Iterable


class FleetGateError(Exception):
    """Base class for all FleetGate errors."""


class ValidationError(FleetGateError):
    """Required input is missing or malformed. Raised before any evaluation."""


class RecordNotFoundError(FleetGateError):
    """A read-only lookup (identity card, user) found nothing."""


class AuthorizationError(FleetGateError):
    """The access gate denied the actor's resolved role for a module."""

    def __init__(
        self,
        current_role: str,
        required_roles: Iterable[str],
        module: str | None = None,
    ) -> None:
        self.current_role = current_role
        self.required_roles = list(required_roles)
        self.module = module
        super().__init__(
            f"Insufficient permissions: role '{current_role}' not in {self.required_roles}"
        )


class UpstreamError(FleetGateError):
    """The record store is unreachable or failed. Never reported as a DENIED verdict."""


class AuditWriteFailure(FleetGateError):
    """An audit entry could not be persisted. Always non-fatal to the caller."""


class ThrottledError(FleetGateError):
    """Too many decision requests from one actor inside the throttle window."""

    def __init__(self, key: str, limit: int, window_seconds: int) -> None:
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds
        super().__init__(
            f"Too many requests: limit {limit} per {window_seconds}s exceeded"
        )


class RecordConflictError(ValidationError):
    """A write collided with a uniqueness rule (duplicate policy number, etc.)."""
