"""
db.py
SQLite helpers + snapshot loading (members, plans, payments, history for one gym).
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

import config
from models import HistoryEvent, Member, Payment, Plan, Snapshot

logger = logging.getLogger(__name__)


@contextmanager
def get_conn(db_file: Path | None = None):
    conn = sqlite3.connect(db_file or config.DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = (), db_file: Path | None = None) -> int:
    with get_conn(db_file) as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def executemany(sql: str, seq_of_params: list[tuple], db_file: Path | None = None) -> None:
    with get_conn(db_file) as conn:
        conn.executemany(sql, seq_of_params)


def fetch_one(sql: str, params: tuple = (), db_file: Path | None = None):
    with get_conn(db_file) as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = (), db_file: Path | None = None) -> list[sqlite3.Row]:
    with get_conn(db_file) as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def _create_tables(db_file: Path | None = None) -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS gyms (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL
        )
        """,
        db_file=db_file,
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS membership_plans (
            id TEXT PRIMARY KEY,
            gym_id TEXT NOT NULL,
            name TEXT NOT NULL,
            price REAL,
            final_price REAL,
            duration_months INTEGER,
            base_duration_months INTEGER,
            bonus_duration_months INTEGER,
            FOREIGN KEY(gym_id) REFERENCES gyms(id) ON DELETE CASCADE
        )
        """,
        db_file=db_file,
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id TEXT PRIMARY KEY,
            gym_id TEXT NOT NULL,
            full_name TEXT NOT NULL,
            phone TEXT,
            photo_url TEXT,
            status TEXT NOT NULL CHECK(status IN ('active','inactive','expired')),
            gender TEXT,
            joining_date TEXT NOT NULL,
            plan_id TEXT,
            plan_amount REAL,
            membership_end_date TEXT,
            next_payment_due_date TEXT,
            created_at TEXT,
            updated_at TEXT,
            FOREIGN KEY(gym_id) REFERENCES gyms(id) ON DELETE CASCADE
        )
        """,
        db_file=db_file,
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id TEXT PRIMARY KEY,
            gym_id TEXT NOT NULL,
            member_id TEXT NOT NULL,
            payment_date TEXT NOT NULL,
            amount REAL NOT NULL,
            payment_method TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """,
        db_file=db_file,
    )

    # new_value holds the changed fields as JSON text
    execute(
        """
        CREATE TABLE IF NOT EXISTS member_history (
            id TEXT PRIMARY KEY,
            gym_id TEXT NOT NULL,
            member_id TEXT NOT NULL,
            change_type TEXT NOT NULL,
            created_at TEXT NOT NULL,
            new_value TEXT,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """,
        db_file=db_file,
    )


def init_db(db_file: Path | None = None) -> None:
    """Create the snapshot tables if they do not exist yet."""
    _create_tables(db_file)


def load_snapshot(gym_id: str, db_file: Path | None = None) -> Snapshot:
    """
    Read one gym's records into a Snapshot.

    Plan durations are normalized here (see Plan.from_row) so the replay
    only ever sees a total month count. Raises ValidationError on rows with
    unparsable dates or non-numeric amounts and durations. `db_file` defaults
    to config.DB_FILE.
    """
    gym = fetch_one("SELECT name FROM gyms WHERE id = ?", (gym_id,), db_file=db_file)
    members = fetch_all("SELECT * FROM members WHERE gym_id = ? ORDER BY full_name", (gym_id,), db_file=db_file)
    plans = fetch_all("SELECT * FROM membership_plans WHERE gym_id = ?", (gym_id,), db_file=db_file)
    payments = fetch_all(
        "SELECT * FROM payments WHERE gym_id = ? ORDER BY payment_date ASC",
        (gym_id,),
        db_file=db_file,
    )
    history = fetch_all("SELECT * FROM member_history WHERE gym_id = ?", (gym_id,), db_file=db_file)

    snapshot = Snapshot(
        gym_name=gym["name"] if gym else "",
        members=[Member.from_row(r) for r in members],
        plans=[Plan.from_row(r) for r in plans],
        payments=[Payment.from_row(r) for r in payments],
        history=[HistoryEvent.from_row(r) for r in history],
    )
    logger.info(
        "Loaded snapshot (gym_id=%s members=%d plans=%d payments=%d history=%d)",
        gym_id,
        len(snapshot.members),
        len(snapshot.plans),
        len(snapshot.payments),
        len(snapshot.history),
    )
    return snapshot
