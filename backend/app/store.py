from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.types.json import Jsonb

from .db import get_conn


Row = Dict[str, Any]
Where = Dict[str, Any]


class StoreError(Exception):
    """
    A failed round-trip against the backing store.

    `status_code` maps well-known constraint failures to 4xx so the HTTP layer
    can answer with something actionable instead of a generic 500.
    """

    def __init__(self, table: str, op: str, message: str, *, sqlstate: Optional[str] = None, status_code: int = 500):
        super().__init__(message)
        self.table = table
        self.op = op
        self.message = message
        self.sqlstate = sqlstate
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


def _status_for(exc: Exception) -> int:
    if isinstance(exc, pg_errors.UniqueViolation):
        return 409
    if isinstance(exc, (pg_errors.ForeignKeyViolation, pg_errors.CheckViolation, pg_errors.InvalidTextRepresentation)):
        return 400
    return 500


def _where_clause(where: Optional[Where]):
    """
    Equality filters only: `None` means IS NULL, a list/tuple/set means IN.
    """
    if not where:
        return sql.SQL(""), []
    parts = []
    params: List[Any] = []
    for col, val in where.items():
        ident = sql.Identifier(col)
        if val is None:
            parts.append(sql.SQL("{} IS NULL").format(ident))
        elif isinstance(val, (list, tuple, set)):
            parts.append(sql.SQL("{}::text = ANY(%s)").format(ident))
            params.append([str(v) for v in val])
        else:
            parts.append(sql.SQL("{} = %s").format(ident))
            params.append(val)
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(parts), params


def _order_clause(order_by: Optional[Sequence[str]]):
    # "bill_date" sorts ascending, "-created_at" descending.
    if not order_by:
        return sql.SQL("")
    parts = []
    for raw in order_by:
        desc = raw.startswith("-")
        col = raw[1:] if desc else raw
        parts.append(sql.SQL("{} {}").format(sql.Identifier(col), sql.SQL("DESC" if desc else "ASC")))
    return sql.SQL(" ORDER BY ") + sql.SQL(", ").join(parts)


def _columns_clause(columns: Optional[Iterable[str]]):
    if not columns:
        return sql.SQL("*")
    return sql.SQL(", ").join(sql.Identifier(c) for c in columns)


def _plain_row(row: Row) -> Row:
    # uuid columns come back as uuid.UUID; callers compare them with ids from JSON bodies.
    return {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in row.items()}


def _adapt(value: Any) -> Any:
    # json/jsonb columns (financial_breakdown, attachments, metadata...).
    if isinstance(value, (dict, list)):
        return Jsonb(value)
    return value


class Store:
    """
    Table-oriented access to Postgres: select/select_one/insert/update/delete/count
    keyed by table name and an equality filter.

    Every call runs in its own pooled connection (and therefore its own
    transaction). A multi-row insert is one transaction: a failing row rolls
    back the whole batch. Multi-step invoice saves are sequences of independent
    round-trips.
    """

    def __init__(self, conn_factory=get_conn):
        self._conn_factory = conn_factory

    def _run(self, table: str, op: str, query, params, fetch: bool = True) -> List[Row]:
        return self._run_all(table, op, [(query, params)], fetch=fetch)

    def _run_all(self, table: str, op: str, statements, fetch: bool = True) -> List[Row]:
        # All statements share one connection, so they commit or roll back together.
        out: List[Row] = []
        try:
            with self._conn_factory() as conn:
                with conn.cursor() as cur:
                    for query, params in statements:
                        cur.execute(query, params)
                        if fetch:
                            out.extend(_plain_row(r) for r in cur.fetchall())
            return out
        except psycopg.Error as exc:
            raise StoreError(
                table,
                op,
                str(exc).strip() or exc.__class__.__name__,
                sqlstate=getattr(exc, "sqlstate", None),
                status_code=_status_for(exc),
            ) from exc

    def select(
        self,
        table: str,
        where: Optional[Where] = None,
        *,
        columns: Optional[Iterable[str]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Row]:
        where_sql, params = _where_clause(where)
        query = sql.SQL("SELECT {} FROM {}{}{}").format(
            _columns_clause(columns), sql.Identifier(table), where_sql, _order_clause(order_by)
        )
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(int(limit))
        if offset:
            query += sql.SQL(" OFFSET %s")
            params.append(int(offset))
        return self._run(table, "select", query, params)

    def select_one(self, table: str, where: Where, *, columns: Optional[Iterable[str]] = None) -> Optional[Row]:
        rows = self.select(table, where, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, rows: List[Row]) -> List[Row]:
        if not rows:
            return []
        cols: List[str] = []
        for r in rows:
            for c in r.keys():
                if c not in cols:
                    cols.append(c)
        statements = []
        # One statement per row keeps column defaults working for keys a row omits.
        for r in rows:
            present = [c for c in cols if c in r]
            query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                sql.Identifier(table),
                sql.SQL(", ").join(sql.Identifier(c) for c in present),
                sql.SQL(", ").join(sql.Placeholder() for _ in present),
            )
            statements.append((query, [_adapt(r[c]) for c in present]))
        return self._run_all(table, "insert", statements)

    def update(self, table: str, where: Where, patch: Row) -> List[Row]:
        if not patch:
            return self.select(table, where)
        where_sql, where_params = _where_clause(where)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(c)) for c in patch.keys()
        )
        query = sql.SQL("UPDATE {} SET {}{} RETURNING *").format(sql.Identifier(table), assignments, where_sql)
        params = [_adapt(v) for v in patch.values()] + where_params
        return self._run(table, "update", query, params)

    def delete(self, table: str, where: Where) -> None:
        if not where:
            # Refuse to wipe a table through a missing filter.
            raise StoreError(table, "delete", "delete requires a filter")
        where_sql, params = _where_clause(where)
        query = sql.SQL("DELETE FROM {}{}").format(sql.Identifier(table), where_sql)
        self._run(table, "delete", query, params, fetch=False)

    def count(self, table: str, where: Optional[Where] = None) -> int:
        where_sql, params = _where_clause(where)
        query = sql.SQL("SELECT COUNT(*) AS n FROM {}{}").format(sql.Identifier(table), where_sql)
        rows = self._run(table, "count", query, params)
        return int(rows[0]["n"]) if rows else 0
