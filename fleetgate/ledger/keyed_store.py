"""
Keyed Store — keyed values with TTL semantics, owned outside the engine.

Used for short-lived counters such as per-actor attempt throttling. The
engine never keeps such maps as process globals; a store is injected.

Two implementations:

- ``SqlKeyedStore``       — ``keyed_entries`` table, shared by every process
- ``InMemoryKeyedStore``  — single-process, for development and tests

Expired keys read as absent and are overwritten on the next write.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleetgate.errors import UpstreamError
from fleetgate.ledger.models import KeyedEntryDB

logger = logging.getLogger(__name__)


class KeyedStore(Protocol):
    """Keyed values with expiry."""

    def get(self, key: str, now: datetime | None = None) -> Any | None: ...

    def put(self, key: str, value: Any, ttl_seconds: int, now: datetime | None = None) -> None: ...

    def incr(self, key: str, ttl_seconds: int, now: datetime | None = None) -> int: ...

    def delete(self, key: str) -> None: ...


def _utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is not None and _utc(expires_at) <= now


class InMemoryKeyedStore:
    """Thread-safe dictionary store. Holds no state beyond its own instance."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[Any, datetime | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, now: datetime | None = None) -> Any | None:
        now = _utc(now)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if _expired(expires_at, now):
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl_seconds: int, now: datetime | None = None) -> None:
        now = _utc(now)
        with self._lock:
            self._entries[key] = (value, now + timedelta(seconds=ttl_seconds))

    def incr(self, key: str, ttl_seconds: int, now: datetime | None = None) -> int:
        """Increment a counter; a fresh window starts when the key is absent or expired."""
        now = _utc(now)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or _expired(entry[1], now):
                self._entries[key] = (1, now + timedelta(seconds=ttl_seconds))
                return 1
            value, expires_at = entry
            self._entries[key] = (int(value) + 1, expires_at)
            return int(value) + 1

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self, now: datetime | None = None) -> int:
        now = _utc(now)
        with self._lock:
            stale = [k for k, (_, exp) in self._entries.items() if _expired(exp, now)]
            for key in stale:
                del self._entries[key]
        return len(stale)


class SqlKeyedStore:
    """``keyed_entries``-backed store shared across processes."""

    max_attempts = 3

    def __init__(self, database_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if database_url is None:
                raise ValueError("database_url or engine is required")
            engine = create_engine(database_url, echo=False)
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=self.engine)

    def get(self, key: str, now: datetime | None = None) -> Any | None:
        now = _utc(now)
        try:
            with self.SessionLocal() as session:
                entry = session.get(KeyedEntryDB, key)
                if entry is None or _expired(entry.expires_at, now):
                    return None
                return entry.value
        except SQLAlchemyError as exc:
            raise UpstreamError("Keyed store read failed") from exc

    def put(self, key: str, value: Any, ttl_seconds: int, now: datetime | None = None) -> None:
        now = _utc(now)
        try:
            with self.SessionLocal() as session:
                session.merge(KeyedEntryDB(
                    key=key, value=value,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                ))
                session.commit()
        except SQLAlchemyError as exc:
            raise UpstreamError("Keyed store write failed") from exc

    def incr(self, key: str, ttl_seconds: int, now: datetime | None = None) -> int:
        """
        Increment a counter inside one transaction.

        The row is locked for update where the backend supports it; the
        first writer of a fresh key may race another and retries.
        """
        now = _utc(now)
        for _ in range(self.max_attempts):
            try:
                with self.SessionLocal() as session:
                    entry = session.execute(
                        select(KeyedEntryDB)
                        .where(KeyedEntryDB.key == key)
                        .with_for_update()
                    ).scalar_one_or_none()

                    if entry is None:
                        session.add(KeyedEntryDB(
                            key=key, value=1,
                            expires_at=now + timedelta(seconds=ttl_seconds),
                        ))
                        value = 1
                    elif _expired(entry.expires_at, now):
                        entry.value = 1
                        entry.expires_at = now + timedelta(seconds=ttl_seconds)
                        value = 1
                    else:
                        value = int(entry.value or 0) + 1
                        entry.value = value
                    session.commit()
                    return value
            except IntegrityError:
                logger.debug("Keyed entry %s created concurrently; retrying", key)
            except SQLAlchemyError as exc:
                raise UpstreamError("Keyed store increment failed") from exc
        raise UpstreamError(f"Could not increment keyed entry {key}")

    def delete(self, key: str) -> None:
        try:
            with self.SessionLocal() as session:
                session.execute(delete(KeyedEntryDB).where(KeyedEntryDB.key == key))
                session.commit()
        except SQLAlchemyError as exc:
            raise UpstreamError("Keyed store delete failed") from exc
