"""
statrank.database.store — Narrow Table Store over SQLAlchemy
=============================================================

The engine never touches ORM objects directly.  It talks to
:class:`SqlStore`, which exposes a small, dict-in / dict-out surface over
four logical tables:

=====================  =========================
Logical name           ORM model
=====================  =========================
``counters``           :class:`ActivityCounter`
``snapshots``          :class:`RankSnapshot`
``legacy_commands``    :class:`LegacyCommandRecord`
``bindings``           :class:`AccountBinding`
=====================  =========================

Queries are plain dicts.  A bare value means equality; a dict value holds
operators::

    store.get("counters", {
        "platform": "discord",
        "activity": {"$neq": "_message"},
        "count": {"$gte": 10},
    })

Supported operators: ``$in``, ``$nin``, ``$neq``, ``$gt``, ``$gte``,
``$lt``, ``$lte``.  ``set`` patches additionally accept ``{"$inc": n}`` and
``{"$max": v}``, which keeps the larger of the stored value and *v*
(``NULL`` counts as smaller).

Driver failures are translated into the engine taxonomy:
``IntegrityError`` / ``DataError`` → :class:`ConflictError`,
``OperationalError`` / ``InterfaceError`` → :class:`FatalError`.

All methods are synchronous — call via ``await run_db(store.get, ...)``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine, case, delete, func, inspect, insert, literal, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError

from statrank.database.engine import get_session
from statrank.database.models import (
    AccountBinding,
    ActivityCounter,
    LegacyCommandRecord,
    RankSnapshot,
)
from statrank.errors import ConflictError, FatalError

logger = logging.getLogger(__name__)

TABLES: dict[str, type] = {
    "counters": ActivityCounter,
    "snapshots": RankSnapshot,
    "legacy_commands": LegacyCommandRecord,
    "bindings": AccountBinding,
}

_OPERATORS = {
    "$in": lambda col, v: col.in_(list(v)),
    "$nin": lambda col, v: col.not_in(list(v)),
    "$neq": lambda col, v: col.is_not(None) if v is None else col != v,
    "$gt": lambda col, v: col > v,
    "$gte": lambda col, v: col >= v,
    "$lt": lambda col, v: col < v,
    "$lte": lambda col, v: col <= v,
}

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# ---------------------------------------------------------------------------
# Value normalisation
# ---------------------------------------------------------------------------
def _to_utc(value: Any) -> Any:
    """Make datetimes timezone-aware UTC; leave everything else alone.

    SQLite hands back naive datetimes even for ``timezone=True`` columns.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return value


def _row_dict(row: Mapping[str, Any]) -> dict[str, Any]:
    return {k: _to_utc(v) for k, v in row.items()}


class SqlStore:
    """Dict-based table store backed by a SQLAlchemy :class:`Engine`."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -- introspection -------------------------------------------------------
    def _model(self, table: str) -> type:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table {table!r}") from None

    def _column(self, model: type, name: str):
        try:
            return model.__table__.c[name]
        except KeyError:
            raise ValueError(
                f"Unknown field {name!r} on {model.__tablename__}"
            ) from None

    def _where(self, model: type, query: Mapping[str, Any] | None) -> list:
        clauses = []
        for name, cond in (query or {}).items():
            col = self._column(model, name)
            if isinstance(cond, Mapping):
                for op, value in cond.items():
                    try:
                        build = _OPERATORS[op]
                    except KeyError:
                        raise ValueError(f"Unknown query operator {op!r}") from None
                    if op in ("$in", "$nin"):
                        value = [_to_utc(v) for v in value]
                    else:
                        value = _to_utc(value)
                    clauses.append(build(col, value))
            elif cond is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == _to_utc(cond))
        return clauses

    @contextmanager
    def _session(self, action: str, table: str):
        """Open a session and translate driver errors for *action* on *table*."""
        try:
            with get_session(self.engine) as session:
                yield session
        except (IntegrityError, DataError) as exc:
            raise ConflictError(f"{action} on {table} conflicted: {exc.orig}") from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error("Store %s on %s failed: %s", action, table, exc.orig)
            raise FatalError(f"{action} on {table} failed: {exc.orig}") from exc

    # -- reads ---------------------------------------------------------------
    def get(
        self,
        table: str,
        query: Mapping[str, Any] | None = None,
        *,
        fields: Sequence[str] | None = None,
        sort: Mapping[str, str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching *query* as plain dicts.

        ``sort`` maps field names to ``"asc"`` or ``"desc"`` and is applied
        in insertion order of the mapping.
        """
        model = self._model(table)
        if fields:
            stmt = select(*(self._column(model, f) for f in fields))
        else:
            stmt = select(*model.__table__.c)
        stmt = stmt.where(*self._where(model, query))
        for name, direction in (sort or {}).items():
            col = self._column(model, name)
            stmt = stmt.order_by(col.desc() if direction == "desc" else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._session("get", table) as session:
            rows = session.execute(stmt).mappings().all()
            return [_row_dict(r) for r in rows]

    def count(self, table: str, query: Mapping[str, Any] | None = None) -> int:
        """Number of rows matching *query*."""
        model = self._model(table)
        stmt = select(func.count()).select_from(model).where(*self._where(model, query))
        with self._session("count", table) as session:
            return int(session.execute(stmt).scalar_one())

    def has_table(self, table: str) -> bool:
        model = self._model(table)
        try:
            return inspect(self.engine).has_table(model.__tablename__)
        except (OperationalError, InterfaceError) as exc:
            raise FatalError(f"Cannot inspect {table}: {exc.orig}") from exc

    # -- writes --------------------------------------------------------------
    def create(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored (generated id included)."""
        model = self._model(table)
        for name in row:
            self._column(model, name)
        with self._session("create", table) as session:
            obj = model(**{k: _to_utc(v) for k, v in row.items()})
            session.add(obj)
            session.flush()
            return _row_dict(
                {c.key: getattr(obj, c.key) for c in model.__table__.c}
            )

    def set(
        self,
        table: str,
        query: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> int:
        """Update rows matching *query*; returns the number of rows touched."""
        model = self._model(table)
        values: dict[str, Any] = {}
        for name, value in patch.items():
            col = self._column(model, name)
            if isinstance(value, Mapping) and "$inc" in value:
                values[name] = col + int(value["$inc"])
            elif isinstance(value, Mapping) and "$max" in value:
                bound = literal(_to_utc(value["$max"]), col.type)
                values[name] = case((or_(col.is_(None), col < bound), bound), else_=col)
            else:
                values[name] = _to_utc(value)
        stmt = update(model).where(*self._where(model, query)).values(values)
        with self._session("set", table) as session:
            return session.execute(stmt).rowcount or 0

    def remove(self, table: str, query: Mapping[str, Any] | None = None) -> int:
        """Delete rows matching *query*; returns the number removed."""
        model = self._model(table)
        stmt = delete(model).where(*self._where(model, query))
        with self._session("remove", table) as session:
            return session.execute(stmt).rowcount or 0

    def upsert(
        self,
        table: str,
        rows: Iterable[Mapping[str, Any]],
        keys: Sequence[str],
        *,
        on_conflict: str = "update",
    ) -> int:
        """Insert *rows*, resolving clashes on *keys*.

        ``on_conflict="update"`` overwrites the non-key fields of the
        existing row; ``"ignore"`` leaves it untouched.  Returns the
        number of rows inserted or updated.  The whole call is one
        transaction: either every row lands or none do.
        """
        if on_conflict not in ("update", "ignore"):
            raise ValueError(f"Unknown on_conflict mode {on_conflict!r}")
        model = self._model(table)
        key_cols = [self._column(model, k).name for k in keys]
        rows = [{k: _to_utc(v) for k, v in r.items()} for r in rows]
        if not rows:
            return 0

        dialect_insert = _DIALECT_INSERTS.get(self.engine.dialect.name)
        written = 0
        with self._session("upsert", table) as session:
            for row in rows:
                if dialect_insert is not None:
                    stmt = dialect_insert(model).values(row)
                    patch = {k: v for k, v in row.items() if k not in key_cols}
                    if on_conflict == "ignore" or not patch:
                        stmt = stmt.on_conflict_do_nothing(index_elements=key_cols)
                    else:
                        stmt = stmt.on_conflict_do_update(
                            index_elements=key_cols,
                            set_={k: stmt.excluded[k] for k in patch},
                        )
                    written += session.execute(stmt).rowcount or 0
                else:
                    written += self._upsert_generic(session, model, row, key_cols, on_conflict)
        return written

    def _upsert_generic(self, session, model, row, key_cols, on_conflict) -> int:
        """Select-then-write fallback for dialects without ON CONFLICT."""
        where = [model.__table__.c[k] == row[k] for k in key_cols]
        exists = session.execute(
            select(func.count()).select_from(model).where(*where)
        ).scalar_one()
        if not exists:
            session.execute(insert(model).values(row))
            return 1
        if on_conflict == "ignore":
            return 0
        patch = {k: v for k, v in row.items() if k not in key_cols}
        if patch:
            session.execute(update(model).where(*where).values(patch))
        return 1

    def drop(self, table: str) -> None:
        """Drop *table* and recreate it empty."""
        model = self._model(table)
        try:
            model.__table__.drop(self.engine, checkfirst=True)
            model.__table__.create(self.engine, checkfirst=True)
        except (OperationalError, InterfaceError) as exc:
            raise FatalError(f"drop on {table} failed: {exc.orig}") from exc
        logger.info("Dropped and recreated table %s", model.__tablename__)
