#!/usr/bin/env python3
"""
Load cost-code divisions from a CSV into one corporation.

Run from the repo root:
  python -m backend.scripts.import_cost_code_divisions --corporation-uuid <uuid> --csv divisions.csv
"""
import argparse
import csv
import json
import os

import psycopg
from psycopg.rows import dict_row

from backend.app.cost_code_divisions import import_cost_code_divisions
from backend.app.store import Store

DB_URL_DEFAULT = os.getenv("DATABASE_URL", "postgresql://localhost/payables")


def read_divisions(path: str):
    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    out = []
    for r in rows:
        number = (r.get("division_number") or "").strip()
        if not number and not any((v or "").strip() for v in r.values()):
            continue
        out.append(
            {
                "division_number": number,
                "division_name": (r.get("division_name") or "").strip(),
                "division_order": (r.get("division_order") or "").strip(),
                "description": (r.get("description") or "").strip() or None,
            }
        )
    return out


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    parser.add_argument("--corporation-uuid", required=True)
    parser.add_argument("--csv", required=True)
    args = parser.parse_args()

    # One short-lived connection per statement, committed on exit.
    store = Store(conn_factory=lambda: psycopg.connect(args.db, row_factory=dict_row))
    result = import_cost_code_divisions(store, args.corporation_uuid, read_divisions(args.csv))
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
