"""Connections for SQLite (default) and Postgres.

Service code is written once against the sqlite3 interface: `?` placeholders,
`conn.execute(...).fetchone()` and rows that support `row["col"]`. On Postgres the
psycopg2 connection is wrapped so it answers the same calls.
"""

from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from tailor_platform.schema import get_schema_sql
from tailor_platform.util.time import utcnow_iso


_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA foreign_keys=ON;",
)

# Quoted literals are matched first so a '?' inside them is left alone.
_PLACEHOLDER_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\?")

# Schema lock key for pg_advisory_lock, shared by every process that runs init_db.
_SCHEMA_LOCK_KEY = 7231001


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def dialect_of(dsn: str) -> str:
    """'postgres' for postgres:// or postgresql:// URLs, otherwise 'sqlite'."""
    scheme = (dsn or "").strip().split("://", 1)[0].lower() if "://" in (dsn or "") else ""
    return "postgres" if scheme in ("postgres", "postgresql") else "sqlite"


def to_pyformat(sql: str) -> str:
    """Rewrite `?` placeholders as psycopg2's `%s`. Literal percent signs are doubled."""
    sql = sql.replace("%", "%%")
    return _PLACEHOLDER_RE.sub(lambda m: "%s" if m.group(0) == "?" else m.group(0), sql)


class PGConnection:
    """psycopg2 connection with the slice of the sqlite3 API this codebase calls."""

    dialect = "postgres"

    def __init__(self, raw: Any):
        self._raw = raw

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        cur = self._raw.cursor()
        if params:
            cur.execute(to_pyformat(sql), tuple(params))
        else:
            # No params: psycopg2 sends the text untouched.
            cur.execute(sql)
        return cur

    def commit(self) -> None:
        self._raw.commit()

    def rollback(self) -> None:
        self._raw.rollback()

    def close(self) -> None:
        self._raw.close()


def _open_postgres(dsn: str) -> PGConnection:
    import psycopg2
    import psycopg2.extras

    # RealDictCursor rows answer row["col"] like sqlite3.Row.
    return PGConnection(psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor))


def _open_sqlite(dsn: str) -> sqlite3.Connection:
    path = dsn[len("sqlite:///") :] if dsn.lower().startswith("sqlite:///") else dsn
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in _SQLITE_PRAGMAS:
        conn.execute(pragma)
    return conn


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """One transaction: commit when the block exits cleanly, roll back when it raises."""
    dsn = (db_dsn or "").strip()
    conn = _open_postgres(dsn) if dialect_of(dsn) == "postgres" else _open_sqlite(dsn)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_dsn: str) -> None:
    """Create missing tables and add columns introduced after a database was first created."""
    dialect = dialect_of(db_dsn)
    _debug(f"init_db dialect={dialect} dsn={db_dsn}")
    ddl = get_schema_sql(dialect)
    with connect(db_dsn) as conn:
        if dialect == "postgres":
            conn.execute("SELECT pg_advisory_lock(?)", (_SCHEMA_LOCK_KEY,))
            try:
                for stmt in (s.strip() for s in ddl.split(";")):
                    if stmt:
                        conn.execute(stmt)
                _add_missing_columns(conn, dialect)
            finally:
                conn.execute("SELECT pg_advisory_unlock(?)", (_SCHEMA_LOCK_KEY,))
        else:
            conn.executescript(ddl)
            _add_missing_columns(conn, dialect)


def table_columns(conn: Any, table: str, dialect: str) -> List[str]:
    if dialect == "postgres":
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_schema='public' AND table_name=?",
            (table,),
        ).fetchall()
        return [str(r["column_name"]) for r in rows]
    return [str(r["name"]) for r in conn.execute(f"PRAGMA table_info({table})").fetchall()]


# (table, column, DDL type) for columns added after the first release.
_ADDED_COLUMNS = (
    ("users", "email_verified", "INTEGER NOT NULL DEFAULT 0"),
    ("users", "has_completed_setup", "INTEGER NOT NULL DEFAULT 0"),
    ("users", "onboarding_step", "TEXT NOT NULL DEFAULT 'verification'"),
    ("users", "onboarding_completed_at", "TEXT"),
    ("users", "subscription_status", "TEXT"),
    ("plans", "max_styles", "INTEGER NOT NULL DEFAULT -1"),
    ("plans", "max_storage", "INTEGER NOT NULL DEFAULT 100"),
    ("orders", "measurement_id", "INTEGER"),
)


def _add_missing_columns(conn: Any, dialect: str) -> None:
    cache: dict[str, List[str]] = {}
    for table, col, ddl in _ADDED_COLUMNS:
        if table not in cache:
            cache[table] = table_columns(conn, table, dialect)
        if col not in cache[table]:
            _debug(f"Adding column {table}.{col}")
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {ddl}")
            cache[table].append(col)


def upsert_app_config(conn: Any, key: str, value: str) -> None:
    conn.execute(
        "INSERT INTO app_config (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )


def get_app_config(conn: Any, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM app_config WHERE key=?", (key,)).fetchone()
    return None if row is None else str(row["value"])


def touch_app_config(conn: Any, key: str) -> str:
    """Store the current UTC time under `key` and return it."""
    now = utcnow_iso()
    upsert_app_config(conn, key, now)
    return now
