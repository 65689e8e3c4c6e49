"""
Record Store — table/filter access to the platform's relational records.

FleetGate never owns vehicles, owners or policies; it reads them through
this narrow interface (``get/list/count/insert/update/delete`` by table
name and filter dict) and the verification chains only ever see the
snapshots built from its rows.

Filter keys are column names with an optional operator suffix::

    {"id__iexact": "ab12cde"}                 case-insensitive equality
    {"status": "active"}                      equality (None -> IS NULL)
    {"timestamp__gte": start_of_day}          >=, also __gt, __lt, __lte
    {"action__in": ["A", "B"]}                membership
    {"status__ne": "active"}                  inequality

Every database failure is raised as UpstreamError so that a broken store
is never mistaken for a policy denial.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, ContextManager, Iterator, Mapping, Protocol

from sqlalchemy import create_engine, delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fleetgate.errors import RecordConflictError, UpstreamError
from fleetgate.ledger.models import Base

logger = logging.getLogger(__name__)

Filters = Mapping[str, Any]
Row = dict[str, Any]


class RecordStore(Protocol):
    """The external record collaborator consumed by the engine."""

    def get(self, table: str, filters: Filters) -> Row | None: ...

    def list(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    def count(self, table: str, filters: Filters | None = None) -> int: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    def update(self, table: str, filters: Filters, values: Mapping[str, Any]) -> int: ...

    def delete(self, table: str, filters: Filters) -> int: ...

    def reserve_sequence(
        self, prefix: str, day: date, seed: Callable[[], int] | None = None
    ) -> int: ...

    def transaction(self) -> ContextManager["RecordStore"]: ...


class SqlRecordStore:
    """
    SQLAlchemy-backed RecordStore.

    Usage:
        store = SqlRecordStore(settings.database_url_sync)
        store.initialize()
        vehicle = store.get("vehicles", {"id__iexact": "ab12cde"})

        with store.transaction() as tx:
            tx.update("insurance_policies", {...}, {"status": "superseded"})
            tx.insert("insurance_policies", {...})
    """

    max_reservation_attempts = 5

    def __init__(
        self,
        database_url: str | None = None,
        engine: Engine | None = None,
        _connection: Connection | None = None,
    ) -> None:
        if engine is None:
            if database_url is None:
                raise ValueError("database_url or engine is required")
            engine = create_engine(database_url, echo=False)
        self.engine = engine
        self._bound = _connection

    def initialize(self) -> None:
        """Create any missing tables."""
        with self._guard("initialize"):
            Base.metadata.create_all(self.engine)

    # ── Transactions ────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator["SqlRecordStore"]:
        """Run several operations atomically through a bound store."""
        if self._bound is not None:
            yield self
            return
        with self._guard("transaction"):
            with self.engine.begin() as conn:
                yield SqlRecordStore(engine=self.engine, _connection=conn)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        if self._bound is not None:
            yield self._bound
        else:
            with self.engine.begin() as conn:
                yield conn

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise RecordConflictError(f"{operation}: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.error("Record store %s failed: %s", operation, exc)
            raise UpstreamError(f"Record store {operation} failed") from exc

    # ── Reads ───────────────────────────────────────────────────

    def get(self, table: str, filters: Filters) -> Row | None:
        rows = self.list(table, filters, limit=1)
        return rows[0] if rows else None

    def list(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        tbl = self._table(table)
        stmt = select(tbl).where(*self._clauses(tbl, filters))
        if order_by is not None:
            col = tbl.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._guard(f"list {table}"):
            with self._connect() as conn:
                return [dict(r._mapping) for r in conn.execute(stmt)]

    def count(self, table: str, filters: Filters | None = None) -> int:
        tbl = self._table(table)
        stmt = select(func.count()).select_from(tbl).where(*self._clauses(tbl, filters))
        with self._guard(f"count {table}"):
            with self._connect() as conn:
                return conn.execute(stmt).scalar() or 0

    # ── Writes ──────────────────────────────────────────────────

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        tbl = self._table(table)
        with self._guard(f"insert {table}"):
            with self._connect() as conn:
                result = conn.execute(insert(tbl).values(**row))
                pk = result.inserted_primary_key
                key_filter = [col == value for col, value in zip(tbl.primary_key.columns, pk)]
                created = conn.execute(select(tbl).where(*key_filter)).first()
        return dict(created._mapping) if created is not None else dict(row)

    def update(self, table: str, filters: Filters, values: Mapping[str, Any]) -> int:
        tbl = self._table(table)
        stmt = update(tbl).where(*self._clauses(tbl, filters)).values(**values)
        with self._guard(f"update {table}"):
            with self._connect() as conn:
                return conn.execute(stmt).rowcount

    def delete(self, table: str, filters: Filters) -> int:
        tbl = self._table(table)
        if not filters:
            raise ValueError("Refusing to delete without a filter")
        stmt = delete(tbl).where(*self._clauses(tbl, filters))
        with self._guard(f"delete {table}"):
            with self._connect() as conn:
                return conn.execute(stmt).rowcount

    # ── Sequence reservation ────────────────────────────────────

    def reserve_sequence(
        self, prefix: str, day: date, seed: Callable[[], int] | None = None
    ) -> int:
        """
        Atomically reserve the next sequence value for (prefix, day).

        The counter row is incremented in a single UPDATE, so concurrent
        callers always receive distinct values. When no row exists yet for
        the day, it is created at ``seed() + 1``; a concurrent creator wins
        the unique constraint and this caller retries the increment.
        """
        tbl = self._table("sequence_counters")
        match = (tbl.c.prefix == prefix, tbl.c.day == day)

        for attempt in range(self.max_reservation_attempts):
            with self._guard("reserve sequence"):
                with self._connect() as conn:
                    bumped = conn.execute(
                        update(tbl).where(*match).values(value=tbl.c.value + 1)
                    )
                    if bumped.rowcount:
                        return conn.execute(select(tbl.c.value).where(*match)).scalar_one()

            start = (seed() if seed is not None else 0) + 1
            try:
                with self._connect() as conn:
                    conn.execute(insert(tbl).values(prefix=prefix, day=day, value=start))
                return start
            except IntegrityError:
                logger.debug(
                    "Sequence row %s/%s created concurrently (attempt %d)",
                    prefix, day, attempt + 1,
                )
            except SQLAlchemyError as exc:
                raise UpstreamError("Record store reserve sequence failed") from exc

        raise UpstreamError(f"Could not reserve a sequence value for {prefix} on {day}")

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _table(name: str):
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}") from None

    @staticmethod
    def _clauses(tbl, filters: Filters | None) -> list[Any]:
        clauses = []
        for key, value in (filters or {}).items():
            name, _, op = key.partition("__")
            if name not in tbl.c:
                raise ValueError(f"Unknown column {tbl.name}.{name}")
            col = tbl.c[name]
            if op == "":
                clauses.append(col.is_(None) if value is None else col == value)
            elif op == "iexact":
                clauses.append(func.lower(col) == str(value).lower())
            elif op == "ne":
                clauses.append(col.is_not(None) if value is None else col != value)
            elif op == "in":
                clauses.append(col.in_(list(value)))
            elif op == "gte":
                clauses.append(col >= value)
            elif op == "gt":
                clauses.append(col > value)
            elif op == "lte":
                clauses.append(col <= value)
            elif op == "lt":
                clauses.append(col < value)
            else:
                raise ValueError(f"Unknown filter operator: {op}")
        return clauses
