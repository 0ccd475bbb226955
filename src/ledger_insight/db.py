# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for Ledger Insight.

This module provides all low-level accessors for the SQLite ledger store.
It is responsible for:

- Initializing the database schema.
- Importing batches of ledger entries (CSV, manual, API sources).
- Flagging opening / closing balance rows once, at ingestion time.
- Answering the aggregate queries of the analytics layer in a single SQL
  statement each (signed sums, monthly sums, distinct counts).
- Scanning ledger rows and resolving counterparties by protocol.

The ledger is append-only from the point of view of the analytics layer.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) import_batches
   One row per import batch.

   Columns:
   - id             INTEGER PRIMARY KEY AUTOINCREMENT
   - created_at     TEXT    NOT NULL (ISO datetime, UTC)
   - source_type    TEXT    NOT NULL  -- "csv" | "manual" | "api"
   - source_label   TEXT    NOT NULL  -- file path, connector name, etc.
   - rows_inserted  INTEGER NOT NULL

2) ledger_entries
   One row per journal line.

   Columns:
   - id                  INTEGER PRIMARY KEY AUTOINCREMENT
   - date                TEXT    NOT NULL  -- ISO date "YYYY-MM-DD"
   - code                TEXT    NOT NULL  -- account code
   - debit_cents         INTEGER NOT NULL DEFAULT 0
   - credit_cents        INTEGER NOT NULL DEFAULT 0
   - protocol            TEXT              -- business document key
   - annotation          TEXT              -- free text (counterparty, ...)
   - description         TEXT
   - causale             TEXT              -- transaction reason code/label
   - registration_number TEXT              -- journal registration number
   - is_opening          INTEGER NOT NULL DEFAULT 0
   - is_closing          INTEGER NOT NULL DEFAULT 0
   - import_batch_id     INTEGER NOT NULL  -- foreign key to import_batches.id

   Amounts are stored as integer cents. Credit notes may appear as
   negative amounts on either side; the store keeps them as given.

------------------------------------------------------------------------------
Balance flags
------------------------------------------------------------------------------

Opening and closing carry-forward rows are excluded from flow metrics.
They are detected once, when importing, by ``flag_balance_rows``: a row is
an opening row when the opening keyword appears in its description, causale
or annotation and its date is January 1st; a closing row likewise with the
closing keyword and December 31st. Input columns ``is_opening`` /
``is_closing`` override the heuristic.

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- All timestamps are stored as ISO-8601 text (UTC).
- Account predicates are compiled to parameterized SQL; no configuration
  value is ever interpolated into the query text.
- Every sqlite3.Error is re-raised as StoreError.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Literal

import pandas as pd

from .errors import StoreError
from .predicates import AccountPredicate

logger = logging.getLogger(__name__)

ENTRY_COLUMNS: list[str] = [
    "date",
    "code",
    "debit",
    "credit",
    "protocol",
    "annotation",
    "description",
    "causale",
    "registration_number",
    "is_opening",
    "is_closing",
]

# SQLite limits the number of bound parameters per statement.
_PROTOCOL_CHUNK = 500

# ---------------------------------------------------------------------------
# Dataclasses and enums
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for Ledger Insight.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class ImportStats:
    """
    Summary of an import of ledger entries into the database.

    Attributes
    ----------
    batch_id:
        Identifier of the batch row in `import_batches`.
    rows_inserted:
        Number of rows inserted into `ledger_entries`.
    opening_rows, closing_rows:
        Number of inserted rows flagged as opening / closing balances.
    """

    batch_id: int
    rows_inserted: int
    opening_rows: int
    closing_rows: int


SourceType = Literal["csv", "manual", "api"]


class SignExpr(str, Enum):
    """Signed expression summed over matching rows."""

    DEBIT_MINUS_CREDIT = "debit-credit"
    CREDIT_MINUS_DEBIT = "credit-debit"
    ABS_DEBIT_MINUS_CREDIT = "|debit-credit|"

    def sql(self) -> str:
        if self is SignExpr.DEBIT_MINUS_CREDIT:
            return "debit_cents - credit_cents"
        if self is SignExpr.CREDIT_MINUS_DEBIT:
            return "credit_cents - debit_cents"
        return "ABS(debit_cents - credit_cents)"


class ExclusionMode(str, Enum):
    """Which carry-forward rows are left out of an aggregation."""

    NONE = "none"
    OPENING = "opening"
    CLOSING = "closing"
    BOTH = "both"

    def sql(self) -> str:
        if self is ExclusionMode.OPENING:
            return " AND is_opening = 0"
        if self is ExclusionMode.CLOSING:
            return " AND is_closing = 0"
        if self is ExclusionMode.BOTH:
            return " AND is_opening = 0 AND is_closing = 0"
        return ""


Side = Literal["debit", "credit"]

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they do not exist yet (idempotent)."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS import_batches (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at    TEXT    NOT NULL,
            source_type   TEXT    NOT NULL,
            source_label  TEXT    NOT NULL,
            rows_inserted INTEGER NOT NULL DEFAULT 0
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ledger_entries (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            date                TEXT    NOT NULL,  -- ISO date 'YYYY-MM-DD'
            code                TEXT    NOT NULL,
            debit_cents         INTEGER NOT NULL DEFAULT 0,
            credit_cents        INTEGER NOT NULL DEFAULT 0,
            protocol            TEXT,
            annotation          TEXT,
            description         TEXT,
            causale             TEXT,
            registration_number TEXT,
            is_opening          INTEGER NOT NULL DEFAULT 0,
            is_closing          INTEGER NOT NULL DEFAULT 0,
            import_batch_id     INTEGER NOT NULL,

            FOREIGN KEY (import_batch_id) REFERENCES import_batches(id)
        );
        """
    )

    for column in ("date", "code", "protocol"):
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_ledger_entries_{column} "
            f"ON ledger_entries({column});"
        )

    conn.commit()


def _to_iso_date(value) -> str:
    """Convert a date-like value to ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, pd.Timestamp):
        return value.date().isoformat()
    return date.fromisoformat(str(value)[:10]).isoformat()


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _text_or_none(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def _to_cents(value) -> int:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return 0
    return int(round(float(value) * 100))


def _bounds(start: date | None, end: date) -> tuple[str, list[str]]:
    """Return the date filter for [start, end]; start=None means inception."""
    if start is None:
        return "date <= ?", [end.isoformat()]
    return "date BETWEEN ? AND ?", [start.isoformat(), end.isoformat()]


def _run(cfg: DatabaseConfig, sql: str, params: list) -> list[tuple]:
    """Execute a read query and return all rows, wrapping sqlite errors."""
    try:
        conn = _connect(cfg)
    except sqlite3.Error as exc:
        raise StoreError(f"Cannot open ledger store {cfg.path}: {exc}") from exc
    try:
        return conn.execute(sql, params).fetchall()
    except sqlite3.Error as exc:
        raise StoreError(f"Ledger query failed: {exc}") from exc
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Schema and ingestion
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file if it does not exist.
    - Creates tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


def _contains_keyword(row: pd.Series, keyword: str) -> bool:
    needle = keyword.lower()
    for column in ("description", "causale", "annotation"):
        text = _text_or_none(row.get(column))
        if text and needle in text.lower():
            return True
    return False


def _as_flag(value) -> bool | None:
    """Interpret an explicit flag cell; None means 'not given'."""
    text = _text_or_none(value)
    if text is None:
        return None
    return text.lower() not in {"0", "false", "no", "n"}


def flag_balance_rows(
    df: pd.DataFrame,
    opening_keyword: str = "APERTURA",
    closing_keyword: str = "CHIUSURA",
) -> pd.DataFrame:
    """
    Return a copy of ``df`` with boolean ``is_opening`` / ``is_closing`` columns.

    A row is an opening row when the opening keyword occurs (case-insensitive)
    in its description, causale or annotation and it is dated January 1st.
    A closing row uses the closing keyword and December 31st. Values already
    present in ``is_opening`` / ``is_closing`` columns are kept as given.
    """
    out = df.copy()
    dates = pd.to_datetime(out["date"])

    for flag, keyword, month, day in (
        ("is_opening", opening_keyword, 1, 1),
        ("is_closing", closing_keyword, 12, 31),
    ):
        heuristic = [
            bool(d.month == month and d.day == day and _contains_keyword(row, keyword))
            for d, (_, row) in zip(dates, out.iterrows())
        ]
        if flag in out.columns:
            given = [_as_flag(g) for g in out[flag]]
            out[flag] = [h if g is None else g for g, h in zip(given, heuristic)]
        else:
            out[flag] = heuristic

    return out


def import_entries(
    df: pd.DataFrame,
    cfg: DatabaseConfig,
    *,
    source_type: SourceType = "csv",
    source_label: str,
    opening_keyword: str = "APERTURA",
    closing_keyword: str = "CHIUSURA",
    imported_at: datetime | None = None,
) -> ImportStats:
    """
    Import a batch of ledger entries into the database.

    Parameters
    ----------
    df:
        Ledger entries with at least the columns date, code, debit, credit.
        Optional columns: protocol, annotation, description, causale,
        registration_number, is_opening, is_closing.

    cfg:
        Database configuration.

    source_type, source_label:
        Origin of the batch, stored in import_batches.

    opening_keyword, closing_keyword:
        Keywords used by ``flag_balance_rows``.

    imported_at:
        Timestamp of the import. If None, uses the current UTC time.

    Returns
    -------
    ImportStats

    Raises
    ------
    ValueError
        If df does not contain required columns.
    StoreError
        If database operations fail.
    """
    required = {"date", "code", "debit", "credit"}
    missing = required.difference(df.columns)
    if missing:
        cols = ", ".join(sorted(missing))
        raise ValueError(f"DataFrame is missing required column(s): {cols}")

    init_database(cfg)
    flagged = flag_balance_rows(df, opening_keyword, closing_keyword)

    if imported_at is None:
        imported_at_iso = _now_utc_iso()
    else:
        imported_at_iso = imported_at.isoformat(timespec="seconds")

    rows = []
    for _, row in flagged.iterrows():
        rows.append(
            (
                _to_iso_date(row["date"]),
                str(row["code"]).strip(),
                _to_cents(row["debit"]),
                _to_cents(row["credit"]),
                _text_or_none(row.get("protocol")),
                _text_or_none(row.get("annotation")),
                _text_or_none(row.get("description")),
                _text_or_none(row.get("causale")),
                _text_or_none(row.get("registration_number")),
                int(bool(row["is_opening"])),
                int(bool(row["is_closing"])),
            )
        )

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO import_batches (created_at, source_type, source_label,
                                        rows_inserted)
            VALUES (?, ?, ?, ?);
            """,
            (imported_at_iso, source_type, source_label, len(rows)),
        )
        batch_id = cur.lastrowid

        cur.executemany(
            """
            INSERT INTO ledger_entries (
                date, code, debit_cents, credit_cents, protocol, annotation,
                description, causale, registration_number, is_opening,
                is_closing, import_batch_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [r + (batch_id,) for r in rows],
        )
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreError(f"Import of {source_label!r} failed: {exc}") from exc
    finally:
        conn.close()

    stats = ImportStats(
        batch_id=batch_id,
        rows_inserted=len(rows),
        opening_rows=sum(r[9] for r in rows),
        closing_rows=sum(r[10] for r in rows),
    )
    logger.info(
        "Imported batch #%d from %s: %d rows (%d opening, %d closing)",
        stats.batch_id,
        source_label,
        stats.rows_inserted,
        stats.opening_rows,
        stats.closing_rows,
    )
    return stats


_SELECT_ENTRY = """
    SELECT date, code, debit_cents, credit_cents, protocol, annotation,
           description, causale, registration_number, is_opening, is_closing
      FROM ledger_entries
"""


def _rows_to_frame(rows: list[tuple]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=ENTRY_COLUMNS)

    df = pd.DataFrame(rows, columns=ENTRY_COLUMNS)
    df["date"] = pd.to_datetime(df["date"], format="%Y-%m-%d")
    df["debit"] = df["debit"].astype(float) / 100.0
    df["credit"] = df["credit"].astype(float) / 100.0
    df["is_opening"] = df["is_opening"].astype(bool)
    df["is_closing"] = df["is_closing"].astype(bool)
    return df


def load_entries(cfg: DatabaseConfig, start: date, end: date) -> pd.DataFrame:
    """
    Load all ledger entries of a period, ordered by date.

    Returns
    -------
    pandas.DataFrame
        Columns: date (datetime64), code, debit, credit (floats), protocol,
        annotation, description, causale, registration_number, is_opening,
        is_closing. Empty periods give an empty DataFrame with these columns.
    """
    init_database(cfg)
    rows = _run(
        cfg,
        _SELECT_ENTRY + " WHERE date BETWEEN ? AND ? ORDER BY date, id;",
        [start.isoformat(), end.isoformat()],
    )
    return _rows_to_frame(rows)


def has_entries(cfg: DatabaseConfig) -> bool:
    """Return True if the database contains at least one ledger entry."""
    init_database(cfg)
    return bool(_run(cfg, "SELECT 1 FROM ledger_entries LIMIT 1;", []))


def list_import_batches(cfg: DatabaseConfig) -> pd.DataFrame:
    """
    Return the list of import batches stored in the database.

    Columns: id, created_at, source_type, source_label, rows_inserted.
    """
    init_database(cfg)
    rows = _run(
        cfg,
        """
        SELECT id, created_at, source_type, source_label, rows_inserted
          FROM import_batches
         ORDER BY id;
        """,
        [],
    )
    return pd.DataFrame(
        rows,
        columns=["id", "created_at", "source_type", "source_label", "rows_inserted"],
    )


# ---------------------------------------------------------------------------
# Analytics queries
# ---------------------------------------------------------------------------


def sum_amounts(
    cfg: DatabaseConfig,
    predicate: AccountPredicate,
    start: date | None,
    end: date,
    sign: SignExpr,
    exclusion: ExclusionMode,
) -> float:
    """
    Sum a signed expression over the rows matching a predicate.

    One aggregate statement is executed. ``start=None`` aggregates from the
    first ledger row up to ``end`` (cumulative-to-date balances).

    Returns
    -------
    float
        The sum in currency units (cents / 100). 0.0 for an empty predicate.
    """
    if predicate.is_empty:
        return 0.0

    clause, params = predicate.to_sql("code")
    date_clause, date_params = _bounds(start, end)
    sql = (
        f"SELECT COALESCE(SUM({sign.sql()}), 0) FROM ledger_entries "
        f"WHERE {date_clause} AND {clause}{exclusion.sql()};"
    )
    rows = _run(cfg, sql, date_params + params)
    return rows[0][0] / 100.0


def monthly_amounts(
    cfg: DatabaseConfig,
    predicate: AccountPredicate,
    start: date,
    end: date,
    sign: SignExpr,
    exclusion: ExclusionMode,
) -> pd.DataFrame:
    """
    Sum a signed expression per calendar month, grouped in SQL.

    Returns
    -------
    pandas.DataFrame
        Columns ``month`` ('YYYY-MM') and ``amount``; months without rows
        are absent.
    """
    if predicate.is_empty:
        return pd.DataFrame(columns=["month", "amount"])

    clause, params = predicate.to_sql("code")
    sql = (
        f"SELECT substr(date, 1, 7) AS month, SUM({sign.sql()}) "
        f"FROM ledger_entries WHERE date BETWEEN ? AND ? AND {clause}"
        f"{exclusion.sql()} GROUP BY month ORDER BY month;"
    )
    rows = _run(cfg, sql, [start.isoformat(), end.isoformat()] + params)
    df = pd.DataFrame(rows, columns=["month", "amount"])
    df["amount"] = df["amount"].astype(float) / 100.0
    return df


def count_distinct(
    cfg: DatabaseConfig,
    predicate: AccountPredicate,
    start: date,
    end: date,
    column: Literal["protocol", "registration_number", "date"],
    *,
    side: Side | None = None,
    exclusion: ExclusionMode = ExclusionMode.BOTH,
    by_month: bool = False,
) -> int | pd.DataFrame:
    """
    Count distinct values of ``column`` over the rows matching a predicate.

    Parameters
    ----------
    column:
        'protocol', 'registration_number' or 'date'. NULL / empty values are
        not counted.
    side:
        When given, only rows with a strictly positive amount on that side
        are counted.
    by_month:
        When True, return a DataFrame (month, count) instead of an int.
    """
    if column not in {"protocol", "registration_number", "date"}:
        raise ValueError(f"Unsupported distinct column: {column!r}")

    if predicate.is_empty:
        return pd.DataFrame(columns=["month", "count"]) if by_month else 0

    clause, params = predicate.to_sql("code")
    side_clause = f" AND {side}_cents > 0" if side else ""
    where = (
        f"WHERE date BETWEEN ? AND ? AND {clause}{side_clause}{exclusion.sql()} "
        f"AND {column} IS NOT NULL AND {column} != ''"
    )
    bound = [start.isoformat(), end.isoformat()] + params

    if by_month:
        sql = (
            f"SELECT substr(date, 1, 7) AS month, COUNT(DISTINCT {column}) "
            f"FROM ledger_entries {where} GROUP BY month ORDER BY month;"
        )
        return pd.DataFrame(_run(cfg, sql, bound), columns=["month", "count"])

    sql = f"SELECT COUNT(DISTINCT {column}) FROM ledger_entries {where};"
    return int(_run(cfg, sql, bound)[0][0])


def scan_entries(
    cfg: DatabaseConfig,
    predicate: AccountPredicate,
    start: date,
    end: date,
    exclusion: ExclusionMode = ExclusionMode.BOTH,
) -> pd.DataFrame:
    """Return the ledger rows matching a predicate within [start, end]."""
    if predicate.is_empty:
        return _rows_to_frame([])

    clause, params = predicate.to_sql("code")
    sql = (
        _SELECT_ENTRY
        + f" WHERE date BETWEEN ? AND ? AND {clause}{exclusion.sql()}"
        + " ORDER BY date, id;"
    )
    return _rows_to_frame(_run(cfg, sql, [start.isoformat(), end.isoformat()] + params))


def annotations_by_protocol(
    cfg: DatabaseConfig,
    protocols: Iterable[str],
    predicate: AccountPredicate,
) -> dict[str, str]:
    """
    Resolve the first non-empty annotation of each protocol.

    Only rows matching ``predicate`` (typically receivables or payables) are
    considered; the earliest row (by date, then id) wins. Protocols are
    resolved in chunks, one query per chunk.

    Returns
    -------
    dict[str, str]
        Mapping protocol → annotation. Unresolved protocols are absent.
    """
    wanted = sorted({p for p in protocols if p})
    if not wanted or predicate.is_empty:
        return {}

    clause, params = predicate.to_sql("code")
    resolved: dict[str, str] = {}
    for i in range(0, len(wanted), _PROTOCOL_CHUNK):
        chunk = wanted[i : i + _PROTOCOL_CHUNK]
        marks = ", ".join("?" for _ in chunk)
        sql = (
            "SELECT protocol, annotation FROM ledger_entries "
            f"WHERE protocol IN ({marks}) AND {clause} "
            "AND annotation IS NOT NULL AND TRIM(annotation) != '' "
            "ORDER BY date, id;"
        )
        for protocol, annotation in _run(cfg, sql, chunk + params):
            resolved.setdefault(protocol, annotation.strip())
    return resolved
