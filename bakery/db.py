from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterable

import streamlit as st

from bakery.schema import SCHEMA_SQL


def _connect(db_path: Path | str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    return _connect(db_path)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    cols = [r["name"] for r in rows]
    return column in cols


def ensure_schema(conn: sqlite3.Connection) -> None:
    # Create base schema (for new installs)
    conn.executescript(SCHEMA_SQL)

    # ---- migrations for existing installs ----
    # Opt-out flag for recipe-driven raw consumption
    if not _column_exists(conn, "products", "sales_based_raw_calc"):
        conn.execute("ALTER TABLE products ADD COLUMN sales_based_raw_calc INTEGER NOT NULL DEFAULT 1;")

    # Products-required credit, needed to restore a cleared date
    if not _column_exists(conn, "sales_deductions", "prods_req_credited"):
        conn.execute("ALTER TABLE sales_deductions ADD COLUMN prods_req_credited REAL NOT NULL DEFAULT 0;")

    # Sales and raw-material deductions are keyed separately
    if not _column_exists(conn, "sales_deductions", "source"):
        conn.commit()
        _rebuild_sales_deductions(conn)

    conn.commit()


def _rebuild_sales_deductions(conn: sqlite3.Connection) -> None:
    # SQLite cannot alter a UNIQUE constraint: copy into a new table and swap
    conn.execute("PRAGMA foreign_keys = OFF;")
    try:
        conn.executescript(
            """
            BEGIN;
            CREATE TABLE sales_deductions_new (
              id TEXT PRIMARY KEY,
              outlet_name TEXT NOT NULL,
              product_id TEXT NOT NULL,
              sales_date TEXT NOT NULL,
              whole_deducted REAL NOT NULL DEFAULT 0,
              slices_deducted REAL NOT NULL DEFAULT 0,
              ledger TEXT NOT NULL DEFAULT 'fifo',
              source TEXT NOT NULL DEFAULT 'sales',
              prods_req_credited REAL NOT NULL DEFAULT 0,
              updated_at TEXT NOT NULL,
              UNIQUE (outlet_name, product_id, sales_date, source)
            );
            INSERT INTO sales_deductions_new (
              id, outlet_name, product_id, sales_date,
              whole_deducted, slices_deducted, ledger, prods_req_credited, updated_at
            )
            SELECT id, outlet_name, product_id, sales_date,
                   whole_deducted, slices_deducted, ledger, prods_req_credited, updated_at
            FROM sales_deductions;
            DROP TABLE sales_deductions;
            ALTER TABLE sales_deductions_new RENAME TO sales_deductions;
            COMMIT;
            """
        )
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.execute("PRAGMA foreign_keys = ON;")


def q(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    cur = conn.execute(sql, tuple(params))
    rows = cur.fetchall()
    cur.close()
    return rows


def x(conn: sqlite3.Connection, sql: str, params: Iterable[Any] = ()) -> int:
    cur = conn.execute(sql, tuple(params))
    conn.commit()
    last = cur.lastrowid
    cur.close()
    return int(last or 0)


def xmany(conn: sqlite3.Connection, statements: Iterable[tuple[str, Iterable[Any]]]) -> None:
    """Run a small group of statements and commit once (one persistence call)."""
    try:
        for sql, params in statements:
            conn.execute(sql, tuple(params))
    except sqlite3.Error:
        conn.rollback()
        raise
    conn.commit()
