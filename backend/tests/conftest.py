import copy
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.store import StoreError  # noqa: E402


def _matches(row, where):
    for col, val in (where or {}).items():
        have = row.get(col)
        if val is None:
            if have is not None:
                return False
        elif isinstance(val, (list, tuple, set)):
            if have is None or str(have) not in {str(v) for v in val}:
                return False
        elif have != val:
            return False
    return True


def _sort_key(col):
    # Postgres: NULLS LAST ascending.
    return lambda r: (r.get(col) is None, r.get(col) if r.get(col) is not None else "")


class MemoryStore:
    """
    In-memory stand-in for `backend.app.store.Store`: same method surface and
    filter semantics, plus `fail(table, op)` to make a call raise StoreError.
    """

    def __init__(self):
        self.tables = {}
        self.calls = []
        self._failures = set()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def fail(self, table, op):
        self._failures.add((table, op))

    def heal(self, table, op):
        self._failures.discard((table, op))

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def seed(self, table, *rows):
        return self.insert(table, list(rows))

    def _check(self, table, op):
        self.calls.append((table, op))
        if (table, op) in self._failures:
            raise StoreError(table, op, f"{op} on {table} failed")

    def _tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def select(self, table, where=None, *, columns=None, order_by=None, limit=None, offset=None):
        self._check(table, "select")
        rows = [r for r in self.rows(table) if _matches(r, where)]
        for raw in reversed(list(order_by or [])):
            desc = raw.startswith("-")
            rows.sort(key=_sort_key(raw.lstrip("-")), reverse=desc)
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        if columns:
            rows = [{c: r.get(c) for c in columns} for r in rows]
        return copy.deepcopy(rows)

    def select_one(self, table, where, *, columns=None):
        rows = self.select(table, where, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table, rows):
        self._check(table, "insert")
        out = []
        for r in rows:
            row = copy.deepcopy(r)
            row.setdefault("uuid", str(uuid.uuid4()))
            row.setdefault("created_at", self._tick())
            row.setdefault("is_active", True)
            self.rows(table).append(row)
            out.append(copy.deepcopy(row))
        return out

    def update(self, table, where, patch):
        if not patch:
            return self.select(table, where)
        self._check(table, "update")
        out = []
        for r in self.rows(table):
            if _matches(r, where):
                r.update(copy.deepcopy(patch))
                out.append(copy.deepcopy(r))
        return out

    def delete(self, table, where):
        self._check(table, "delete")
        if not where:
            raise StoreError(table, "delete", "delete requires a filter")
        self.tables[table] = [r for r in self.rows(table) if not _matches(r, where)]

    def count(self, table, where=None):
        self._check(table, "count")
        return sum(1 for r in self.rows(table) if _matches(r, where))


@pytest.fixture
def store():
    return MemoryStore()
