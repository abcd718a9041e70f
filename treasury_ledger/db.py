"""SQLite store for ledger entries, the emergency running balance and report history.

Amounts are stored as text so ``Decimal`` values round-trip exactly.  Every
write commits on its own; callers that need several writes to behave as one
unit (a rent payment and its replenishment) handle partial failure
themselves, see ``service.TreasuryService.record_entry``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .config import DB_PATH
from .models import (
    ZERO,
    LedgerEntry,
    ReportSnapshot,
    Statistics,
    parse_amount,
    parse_date,
)
from .transfers import has_transfer_marker

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    entry_date TEXT NOT NULL,
    description TEXT NOT NULL,
    amount TEXT NOT NULL,
    direction TEXT NOT NULL,
    category TEXT NOT NULL,
    fund_allocations TEXT,
    invoice_ref TEXT,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS ix_entries_date ON entries (entry_date);
CREATE INDEX IF NOT EXISTS ix_entries_category ON entries (category);

CREATE TABLE IF NOT EXISTS emergency_fund (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    balance TEXT NOT NULL,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS report_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issued_at TEXT NOT NULL,
    generated_by TEXT,
    statistics TEXT NOT NULL
);
"""

ENTRY_COLUMNS = (
    "id, entry_date, description, amount, direction, category, fund_allocations, "
    "invoice_ref, internal_transfer, cash_count, created_at"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ensure_dirs(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    # Resolve DB_PATH at call time so tests can monkeypatch it.
    path = Path(DB_PATH)
    _ensure_dirs(path)
    conn = sqlite3.connect(str(path))
    try:
        yield conn
    finally:
        conn.close()


def init_db() -> None:
    with connect() as conn:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        # Run migrations to add new columns if they don't exist
        _migrate_database(conn)


def _migrate_database(conn: sqlite3.Connection) -> None:
    """Add columns introduced after the first schema and flag legacy transfers."""
    cursor = conn.cursor()
    cursor.execute("PRAGMA table_info(entries)")
    existing_columns = [row[1] for row in cursor.fetchall()]

    new_columns = [
        ('internal_transfer', 'INTEGER NOT NULL DEFAULT 0'),
        ('cash_count', 'TEXT'),
    ]
    for column_name, column_type in new_columns:
        if column_name not in existing_columns:
            cursor.execute(f"ALTER TABLE entries ADD COLUMN {column_name} {column_type}")
            logger.info("Added column %s to entries table", column_name)

    # Older ledgers marked transfers only in the description text.
    rows = cursor.execute(
        "SELECT id, description FROM entries WHERE internal_transfer = 0"
    ).fetchall()
    legacy = [(entry_id,) for entry_id, description in rows if has_transfer_marker(description)]
    if legacy:
        cursor.executemany("UPDATE entries SET internal_transfer = 1 WHERE id = ?", legacy)
        logger.info("Flagged %d legacy entries as internal transfers", len(legacy))

    cursor.execute(
        "INSERT OR IGNORE INTO emergency_fund (id, balance, updated_at) VALUES (1, '0', ?)",
        (_now_iso(),),
    )
    conn.commit()


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


def _entry_params(entry: LedgerEntry) -> tuple:
    record = entry.to_record()
    return (
        record['id'],
        record['date'],
        record['description'],
        record['amount'],
        record['direction'],
        record['category'],
        json.dumps(record['fund_allocations'], sort_keys=True),
        record['invoice_ref'],
        1 if record['internal_transfer'] else 0,
        json.dumps(record['cash_count']) if record['cash_count'] else None,
        record['created_at'],
    )


def _row_to_entry(row: Sequence[Any]) -> LedgerEntry:
    (entry_id, entry_date, description, amount, direction, category,
     allocations, invoice_ref, internal_transfer, cash_count, created_at) = row
    return LedgerEntry.from_record({
        'id': entry_id,
        'date': entry_date,
        'description': description,
        'amount': amount,
        'direction': direction,
        'category': category,
        'fund_allocations': json.loads(allocations) if allocations else {},
        'invoice_ref': invoice_ref,
        'internal_transfer': bool(internal_transfer),
        'cash_count': json.loads(cash_count) if cash_count else None,
        'created_at': created_at,
    })


def insert_entry(entry: LedgerEntry) -> None:
    """Persist one entry.  ``sqlite3.IntegrityError`` is raised for a reused id."""
    sql = f"INSERT INTO entries ({ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
    with connect() as conn:
        conn.execute(sql, _entry_params(entry))
        conn.commit()
    logger.debug("Stored entry %s (%s %s)", entry.id, entry.direction.value, entry.amount)


def fetch_entries(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    categories: Optional[Sequence[str]] = None,
) -> List[LedgerEntry]:
    """Load entries in storage order (date, then insertion)."""
    where: List[str] = []
    params: List[Any] = []

    if start_date:
        where.append("entry_date >= ?")
        params.append(parse_date(start_date).isoformat())
    if end_date:
        where.append("entry_date <= ?")
        params.append(parse_date(end_date).isoformat())
    if categories:
        where.append("category IN ({})".format(",".join(["?" for _ in categories])))
        params.extend(str(c.value if hasattr(c, 'value') else c) for c in categories)

    sql = f"SELECT {ENTRY_COLUMNS} FROM entries"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY entry_date ASC, seq ASC"

    with connect() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_entry(row) for row in rows]


def update_fund_allocations(entries: Iterable[LedgerEntry]) -> int:
    """Overwrite the stored allocations of ``entries`` in one transaction."""
    params = [
        (json.dumps({f.value: str(v) for f, v in e.fund_allocations.items()}, sort_keys=True), e.id)
        for e in entries
    ]
    if not params:
        return 0
    with connect() as conn:
        before_changes = conn.total_changes
        conn.executemany("UPDATE entries SET fund_allocations = ? WHERE id = ?", params)
        conn.commit()
        return conn.total_changes - before_changes


def delete_entry(entry_id: str) -> bool:
    with connect() as conn:
        cursor = conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
        conn.commit()
        return cursor.rowcount > 0


def delete_entries(entry_ids: Iterable[str]) -> int:
    params = [(entry_id,) for entry_id in entry_ids]
    if not params:
        return 0
    with connect() as conn:
        before_changes = conn.total_changes
        conn.executemany("DELETE FROM entries WHERE id = ?", params)
        conn.commit()
        return conn.total_changes - before_changes


def clear_ledger() -> bool:
    """Remove all entries.  The emergency balance and report history are kept."""
    with connect() as conn:
        conn.execute("DELETE FROM entries")
        conn.commit()
    logger.warning("Ledger cleared")
    return True


# ---------------------------------------------------------------------------
# Emergency running balance
# ---------------------------------------------------------------------------


def get_emergency_balance() -> Decimal:
    with connect() as conn:
        row = conn.execute("SELECT balance FROM emergency_fund WHERE id = 1").fetchone()
    return parse_amount(row[0]) if row else ZERO


def set_emergency_balance(value: Any) -> Decimal:
    """Overwrite the running balance, e.g. with the figure from the last report."""
    balance = parse_amount(value, 'emergency balance')
    with connect() as conn:
        conn.execute(
            "INSERT INTO emergency_fund (id, balance, updated_at) VALUES (1, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET balance = excluded.balance, updated_at = excluded.updated_at",
            (str(balance), _now_iso()),
        )
        conn.commit()
    logger.info("Emergency balance set to %s", balance)
    return balance


def increment_emergency_balance(delta: Any) -> Decimal:
    """Add ``delta`` to the running balance and return the new value."""
    amount = parse_amount(delta, 'emergency delta')
    with connect() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            row = conn.execute("SELECT balance FROM emergency_fund WHERE id = 1").fetchone()
            balance = (parse_amount(row[0]) if row else ZERO) + amount
            conn.execute(
                "INSERT INTO emergency_fund (id, balance, updated_at) VALUES (1, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET balance = excluded.balance, updated_at = excluded.updated_at",
                (str(balance), _now_iso()),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    logger.debug("Emergency balance incremented by %s to %s", amount, balance)
    return balance


# ---------------------------------------------------------------------------
# Report history
# ---------------------------------------------------------------------------


def save_report_snapshot(snapshot: ReportSnapshot) -> int:
    with connect() as conn:
        cursor = conn.execute(
            "INSERT INTO report_history (issued_at, generated_by, statistics) VALUES (?, ?, ?)",
            (
                snapshot.issued_at.isoformat(),
                snapshot.generated_by,
                json.dumps(snapshot.statistics.to_dict(), sort_keys=True),
            ),
        )
        conn.commit()
        return int(cursor.lastrowid)


def fetch_report_history() -> List[ReportSnapshot]:
    """Stored report snapshots, most recent first."""
    with connect() as conn:
        rows = conn.execute(
            "SELECT id, issued_at, generated_by, statistics FROM report_history "
            "ORDER BY issued_at DESC, id DESC"
        ).fetchall()
    history: List[ReportSnapshot] = []
    for report_id, issued_at, generated_by, statistics in rows:
        data: Dict[str, Any] = json.loads(statistics)
        history.append(ReportSnapshot(
            id=report_id,
            issued_at=parse_date(issued_at),
            generated_by=generated_by,
            statistics=Statistics.from_dict(data),
        ))
    return history
