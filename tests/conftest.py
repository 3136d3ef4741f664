from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config  # noqa: E402
import db  # noqa: E402
from models import HistoryEvent, Member, Payment, Plan, Snapshot  # noqa: E402


# One gym, March 2024 as the "current" month in most tests.
#   m1 two monthly payments, stored due date correct
#   m2 joined on the 31st, stored due date lost the day (mismatch)
#   m3 joined this month, paid, but has no plan
#   m4 expired, plan but no payments
#   m5 made inactive this month, no payments
#   m6 reactivated on 2024-03-10 with a payment the same day

PLAN_ROWS: list[dict[str, Any]] = [
    {"id": "p1", "gym_id": "g1", "name": "Monthly", "price": 1000.0, "duration_months": 1},
    {
        "id": "p3",
        "gym_id": "g1",
        "name": "Quarterly + 1",
        "price": 2500.0,
        "final_price": 2200.0,
        "duration_months": 3,
        "base_duration_months": 3,
        "bonus_duration_months": 1,
    },
]

MEMBER_ROWS: list[dict[str, Any]] = [
    {
        "id": "m1", "gym_id": "g1", "full_name": "Asha Rao", "phone": "9800000001",
        "status": "active", "joining_date": "2024-01-15", "plan_id": "p1", "plan_amount": 1000.0,
        "next_payment_due_date": "2024-03-15", "membership_end_date": "2024-03-15",
        "updated_at": "2024-02-15T10:00:00+00:00",
    },
    {
        "id": "m2", "gym_id": "g1", "full_name": "Bilal Khan", "phone": "9800000002",
        "status": "active", "joining_date": "2024-01-31", "plan_id": "p1", "plan_amount": 1000.0,
        "next_payment_due_date": "2024-03-29", "membership_end_date": "2024-03-29",
        "updated_at": "2024-02-29T10:00:00+00:00",
    },
    {
        "id": "m3", "gym_id": "g1", "full_name": "Chitra Das", "phone": "9800000003",
        "status": "active", "joining_date": "2024-03-05", "plan_id": None, "plan_amount": 1500.0,
        "next_payment_due_date": None, "membership_end_date": None,
        "updated_at": "2024-03-05T10:00:00+00:00",
    },
    {
        "id": "m4", "gym_id": "g1", "full_name": "Dev Patel", "phone": "9800000004",
        "status": "expired", "joining_date": "2023-10-10", "plan_id": "p3", "plan_amount": 2200.0,
        "next_payment_due_date": None, "membership_end_date": "2024-02-10",
        "updated_at": "2024-02-10T10:00:00+00:00",
    },
    {
        "id": "m5", "gym_id": "g1", "full_name": "Esha Menon", "phone": "9800000005",
        "status": "inactive", "joining_date": "2023-12-01", "plan_id": "p1", "plan_amount": 1000.0,
        "next_payment_due_date": None, "membership_end_date": None,
        "updated_at": "2024-03-02T08:00:00+00:00",
    },
    {
        "id": "m6", "gym_id": "g1", "full_name": "Farhan Ali", "phone": "9800000006",
        "status": "active", "joining_date": "2024-01-01", "plan_id": "p1", "plan_amount": 1000.0,
        "next_payment_due_date": "2024-04-10", "membership_end_date": "2024-04-10",
        "updated_at": "2024-03-10T10:00:00+00:00",
    },
]

PAYMENT_ROWS: list[dict[str, Any]] = [
    {"id": "pay1", "gym_id": "g1", "member_id": "m1", "payment_date": "2024-01-15", "amount": 1000.0,
     "payment_method": "cash", "created_at": "2024-01-15T10:00:00+00:00"},
    {"id": "pay2", "gym_id": "g1", "member_id": "m1", "payment_date": "2024-02-15", "amount": 1000.0,
     "payment_method": "upi", "created_at": "2024-02-15T10:00:00+00:00"},
    {"id": "pay3", "gym_id": "g1", "member_id": "m2", "payment_date": "2024-01-31", "amount": 1000.0,
     "payment_method": "cash", "created_at": "2024-01-31T10:00:00+00:00"},
    {"id": "pay4", "gym_id": "g1", "member_id": "m2", "payment_date": "2024-02-29", "amount": 1000.0,
     "payment_method": "cash", "created_at": "2024-02-29T10:00:00+00:00"},
    {"id": "pay5", "gym_id": "g1", "member_id": "m3", "payment_date": "2024-03-05", "amount": 1500.0,
     "payment_method": "card", "created_at": "2024-03-05T10:00:00+00:00"},
    {"id": "pay6", "gym_id": "g1", "member_id": "m6", "payment_date": "2024-01-01", "amount": 1000.0,
     "payment_method": "cash", "created_at": "2024-01-01T10:00:00+00:00"},
    {"id": "pay7", "gym_id": "g1", "member_id": "m6", "payment_date": "2024-02-01", "amount": 1000.0,
     "payment_method": "cash", "created_at": "2024-02-01T10:00:00+00:00"},
    {"id": "pay8", "gym_id": "g1", "member_id": "m6", "payment_date": "2024-03-10", "amount": 1000.0,
     "payment_method": "cash", "created_at": "2024-03-10T10:05:00+00:00"},
]

HISTORY_ROWS: list[dict[str, Any]] = [
    {"id": "h1", "gym_id": "g1", "member_id": "m5", "change_type": "status_change",
     "created_at": "2024-03-02T08:00:00+00:00", "new_value": {"status": "inactive"}},
    {"id": "h2", "gym_id": "g1", "member_id": "m6", "change_type": "member_reactivated",
     "created_at": "2024-03-10T10:00:00+00:00",
     "new_value": {"joining_date": "2024-03-10", "status": "active"}},
    {"id": "h3", "gym_id": "g1", "member_id": "m1", "change_type": "plan_change",
     "created_at": "2024-01-20T09:00:00+00:00", "new_value": {"plan": "Monthly"}},
]


@pytest.fixture
def snapshot() -> Snapshot:
    return Snapshot(
        gym_name="Iron Temple",
        members=[Member.from_row(r) for r in MEMBER_ROWS],
        plans=[Plan.from_row(r) for r in PLAN_ROWS],
        payments=[Payment.from_row(r) for r in PAYMENT_ROWS],
        history=[HistoryEvent.from_row(r) for r in HISTORY_ROWS],
    )


def insert_rows(table: str, rows: list[dict[str, Any]]) -> None:
    cols = sorted({k for r in rows for k in r})
    values = [
        tuple(json.dumps(r.get(c)) if isinstance(r.get(c), dict) else r.get(c) for c in cols)
        for r in rows
    ]
    placeholders = ",".join("?" for _ in cols)
    db.executemany(f"INSERT INTO {table}({','.join(cols)}) VALUES({placeholders})", values)


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "gym.db"
    monkeypatch.setattr(config, "DB_FILE", path)
    db.init_db()
    return path


@pytest.fixture
def gym_db(db_path: Path) -> Path:
    db.execute("INSERT INTO gyms(id, name) VALUES(?, ?)", ("g1", "Iron Temple"))
    insert_rows("membership_plans", PLAN_ROWS)
    # Reversed so the loader's ordering is what puts members in name order
    insert_rows("members", list(reversed(MEMBER_ROWS)))
    insert_rows("payments", PAYMENT_ROWS)
    insert_rows("member_history", HISTORY_ROWS)
    return db_path


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers[:]:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
