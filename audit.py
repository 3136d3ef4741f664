"""
audit.py
Payment due-date audit: one row per member comparing the stored
next_payment_due_date with the replayed one.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

import pandas as pd

import db
from errors import DueDateError, ValidationError
from models import AuditRow, Member, Payment, Snapshot
from replay import replay_due_date
import utils

logger = logging.getLogger(__name__)

AUDIT_STATUSES = ("active", "expired", "inactive")
FILTERS = ("all", "correct", "mismatch")
UNVERIFIABLE_NOTE = "Unable to verify due date for this member"

CSV_HEADERS = [
    "Name", "Phone", "Status", "Plan", "Duration (months)", "Joining Date",
    "Joining Day", "Payments", "Last Paid", "Last Amount",
    "Stored Next Due", "Expected Next Due", "Result", "Notes",
]


def _unaudited_row(m: Member, plan_name: str, total_months: int, payment_count: int) -> AuditRow:
    return AuditRow(
        member_id=m.id,
        full_name=m.full_name,
        phone=m.phone,
        status=m.status,
        joining_date=m.joining_date,
        joining_day=m.joining_date.day,
        plan_name=plan_name,
        total_months=total_months,
        payment_count=payment_count,
        last_payment_date=None,
        last_payment_amount=None,
        stored_next_due=m.next_payment_due_date,
        stored_end_date=m.membership_end_date,
        expected_next_due=None,
        # Nothing to verify without payments
        is_correct=payment_count == 0,
        note="No payments recorded" if payment_count == 0 else "No plan assigned",
    )


def build_audit_rows(snapshot: Snapshot) -> list[AuditRow]:
    plans = snapshot.plan_map()
    payments_by_member = snapshot.payments_by_member()
    history_by_member = snapshot.history_by_member()

    rows: list[AuditRow] = []
    for m in snapshot.members:
        if m.status not in AUDIT_STATUSES:
            continue

        plan = plans.get(m.plan_id) if m.plan_id else None
        member_payments: list[Payment] = payments_by_member.get(m.id, [])

        if plan is None or not member_payments:
            if m.status in ("active", "expired"):
                rows.append(
                    _unaudited_row(
                        m,
                        plan.name if plan else "No plan",
                        plan.total_months if plan else 0,
                        len(member_payments),
                    )
                )
            continue

        try:
            result = replay_due_date(
                m.joining_date,
                plan.total_months,
                member_payments,
                history_by_member.get(m.id, []),
            ).require()
        except DueDateError:
            logger.exception("Due date replay failed (member_id=%s)", m.id)
            expected, note, is_correct = None, UNVERIFIABLE_NOTE, False
        else:
            expected, note = result.expected_next_due, result.note
            is_correct = m.next_payment_due_date == expected

        last_payment = sorted(member_payments, key=lambda p: p.payment_date)[-1]

        rows.append(
            AuditRow(
                member_id=m.id,
                full_name=m.full_name,
                phone=m.phone,
                status=m.status,
                joining_date=m.joining_date,
                joining_day=m.joining_date.day,
                plan_name=plan.name,
                total_months=plan.total_months,
                payment_count=len(member_payments),
                last_payment_date=last_payment.payment_date,
                last_payment_amount=last_payment.amount,
                stored_next_due=m.next_payment_due_date,
                stored_end_date=m.membership_end_date,
                expected_next_due=expected,
                is_correct=is_correct,
                note=note,
            )
        )

    return rows


def filter_rows(rows: list[AuditRow], status: str = "all", query: str = "") -> list[AuditRow]:
    """Narrow rows by result (all/correct/mismatch) and a name or phone search."""
    if status not in FILTERS:
        raise ValidationError(f"status filter must be one of {FILTERS}, got {status!r}")

    result = rows
    if status == "correct":
        result = [r for r in result if r.is_correct]
    elif status == "mismatch":
        result = [r for r in result if not r.is_correct]

    q = (query or "").strip()
    if q:
        needle = q.lower()
        result = [r for r in result if needle in r.full_name.lower() or q in r.phone]
    return result


def summarize(rows: list[AuditRow]) -> tuple[int, int]:
    """Return (correct_count, mismatch_count)."""
    correct = sum(1 for r in rows if r.is_correct)
    return correct, len(rows) - correct


def rows_to_dataframe(rows: list[AuditRow]) -> pd.DataFrame:
    records = [
        [
            r.full_name,
            r.phone,
            r.status,
            r.plan_name,
            r.total_months,
            r.joining_date.isoformat(),
            r.joining_day,
            r.payment_count,
            utils.iso_or_none(r.last_payment_date) or "",
            r.last_payment_amount if r.last_payment_amount is not None else "",
            utils.iso_or_none(r.stored_next_due) or "",
            utils.iso_or_none(r.expected_next_due) or "",
            "CORRECT" if r.is_correct else "MISMATCH",
            r.note,
        ]
        for r in rows
    ]
    return pd.DataFrame(records, columns=CSV_HEADERS)


def rows_to_csv_bytes(rows: list[AuditRow]) -> bytes:
    return utils.to_csv_bytes(rows_to_dataframe(rows))


def export_filename(today: date | None = None) -> str:
    return f"payment-audit-{(today or date.today()).isoformat()}.csv"


def run_audit(gym_id: str, db_file: Path | None = None) -> list[AuditRow]:
    """Load a gym's snapshot and audit every member."""
    rows = build_audit_rows(db.load_snapshot(gym_id, db_file=db_file))
    correct, mismatch = summarize(rows)
    logger.info("Audit finished (gym_id=%s rows=%d correct=%d mismatch=%d)", gym_id, len(rows), correct, mismatch)
    return rows
