"""
Decision Audit Ledger — append-only trail of authorization decisions.

Every chain run and every role change is recorded here as an
``audit_logs`` row. The service provides:

- ``append``       — the only write; there is no update and no delete
- ``count_since``  — counts by action since a point in time (daily stats)
- ``recent``       — latest entries, optionally filtered by action

Callers treat ``append`` as best-effort: a write failure raises
AuditWriteFailure, which the engine logs and ignores. A decision already
computed is never altered by the audit trail.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import Iterable, Protocol

from fleetgate.errors import AuditWriteFailure, FleetGateError
from fleetgate.ledger.records import RecordStore
from fleetgate.policy.schema import AuditEntry

logger = logging.getLogger(__name__)

TABLE = "audit_logs"


class DecisionAuditor(Protocol):
    """Append-only sink for decision traces."""

    def append(self, entry: AuditEntry) -> AuditEntry: ...


def start_of_day(now: datetime) -> datetime:
    """Midnight UTC of the day containing ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    day = now.astimezone(timezone.utc).date()
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class AuditLedgerService:
    """
    Record-store-backed DecisionAuditor.

    Usage:
        ledger = AuditLedgerService(store)
        ledger.append(AuditEntry(
            action="DISPATCH_DENIED",
            entity_id="AB12CDE",
            description="Dispatch denied — Vehicle is administratively blocked",
            status="DENIED",
            severity="high",
            module="Dispatch",
        ))
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def append(self, entry: AuditEntry) -> AuditEntry:
        """
        Append a new entry to the audit trail.

        Raises:
            AuditWriteFailure: If the store rejects or cannot take the write.
        """
        try:
            self.store.insert(TABLE, entry.model_dump(mode="python"))
        except FleetGateError as exc:
            raise AuditWriteFailure(f"Could not append {entry.action}: {exc}") from exc

        logger.info(
            "Audit entry appended: action=%s entity=%s status=%s",
            entry.action, entry.entity_id, entry.status,
        )
        return entry

    def count_since(self, actions: Iterable[str], since: datetime) -> int:
        """Number of entries with any of ``actions`` at or after ``since``."""
        return self.store.count(
            TABLE, {"action__in": list(actions), "timestamp__gte": since}
        )

    def count_today(self, action: str, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        return self.count_since([action], start_of_day(now))

    def recent(
        self,
        actions: Iterable[str] | None = None,
        limit: int = 50,
    ) -> list[AuditEntry]:
        """Most recent entries first."""
        filters = {"action__in": list(actions)} if actions else None
        rows = self.store.list(
            TABLE, filters, order_by="timestamp", descending=True, limit=limit
        )
        return [AuditEntry.model_validate(row) for row in rows]

    def daily_counts(
        self,
        authorized_action: str,
        denied_action: str,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Today's authorized / denied / total counts for one decision type."""
        now = now or datetime.now(timezone.utc)
        authorized = self.count_today(authorized_action, now)
        denied = self.count_today(denied_action, now)
        return {"authorized": authorized, "denied": denied, "total": authorized + denied}
