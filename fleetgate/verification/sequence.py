"""
Sequence Code Generator — human-readable authorization receipts.

Codes look like ``AUTH-2026-000042``: prefix, UTC year, and a six-digit
per-day sequence. The counter lives in the record store and is reserved
atomically, so two simultaneous authorizations never share a code. On the
first reservation of a day the counter is seeded from the number of
matching decisions already in the audit trail.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Callable

from fleetgate.ledger.records import RecordStore
from fleetgate.policy.schema import AuthorizationCode

logger = logging.getLogger(__name__)


class SequenceCodeGenerator:
    """Issues ``PREFIX-YEAR-NNNNNN`` codes from a per-(prefix, day) counter."""

    def __init__(
        self,
        store: RecordStore,
        issued_today: Callable[[str, datetime], int] | None = None,
    ) -> None:
        """
        Args:
            store: Record store holding the ``sequence_counters`` table.
            issued_today: Optional ``(prefix, now) -> count`` used to seed a
                day's counter from codes issued before the counter existed.
        """
        self.store = store
        self.issued_today = issued_today

    def reserve(self, prefix: str, now: datetime | None = None) -> AuthorizationCode:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        now = now.astimezone(timezone.utc)
        prefix = prefix.strip().upper()

        seed = None
        if self.issued_today is not None:
            seed = partial(self.issued_today, prefix, now)

        sequence = self.store.reserve_sequence(prefix, now.date(), seed=seed)
        code = AuthorizationCode(prefix=prefix, year=now.year, sequence=sequence)
        logger.debug("Reserved authorization code %s", code.code)
        return code

    def next(self, prefix: str, now: datetime | None = None) -> str:
        """Reserve and format the next code for ``prefix``."""
        return self.reserve(prefix, now).code
