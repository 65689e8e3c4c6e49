"""
Attempt Throttle — caps how many decisions one actor may request per window.

Counters live in an injected KeyedStore, never in process memory, so the
limit holds across workers that share a store.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from fleetgate.errors import ThrottledError
from fleetgate.ledger.keyed_store import KeyedStore
from fleetgate.policy.schema import RoleId

logger = logging.getLogger(__name__)


def throttle_subject(
    role: RoleId, user: Mapping[str, Any] | None, client_host: str | None
) -> str:
    """
    Counter identity for a caller.

    Only an email found in ``users`` names a subject; a claimed but unknown
    email is ignored, so rotating it never opens a fresh bucket. Every subject
    is scoped to the client address, so a caller elsewhere sending a known
    user's email cannot spend that user's quota.
    """
    host = (client_host or "unknown").strip().lower()
    if user is not None and user.get("email"):
        return f"user:{str(user['email']).strip().lower()}@{host}"
    return f"role:{role.value}@{host}"


class AttemptThrottle:
    """Fixed-window counter per (scope, actor). A limit of 0 disables it."""

    def __init__(self, store: KeyedStore, limit: int = 30, window_seconds: int = 60) -> None:
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    @property
    def enabled(self) -> bool:
        return self.limit > 0

    def key_for(self, scope: str, actor: str) -> str:
        return f"attempts:{scope}:{actor.strip().lower()}"

    def hit(self, scope: str, actor: str, now: datetime | None = None) -> int:
        """
        Record one attempt and return the count inside the current window.

        Raises:
            ThrottledError: when the count exceeds the limit.
        """
        if not self.enabled:
            return 0
        key = self.key_for(scope, actor)
        count = self.store.incr(key, self.window_seconds, now=now)
        if count > self.limit:
            logger.warning(
                "Throttled %s: %d attempts in %ds (limit %d)",
                key, count, self.window_seconds, self.limit,
            )
            raise ThrottledError(key, self.limit, self.window_seconds)
        return count

    def reset(self, scope: str, actor: str) -> None:
        self.store.delete(self.key_for(scope, actor))
