"""
monthly.py
Monthly overview: per-member flags and categories for one calendar month,
the same due-date audit as audit.py, and aggregate stats.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

import pandas as pd

import db
from errors import DueDateError, ValidationError
from models import (
    REACTIVATION,
    STATUS_CHANGE,
    HistoryEvent,
    Member,
    MonthlyMemberRow,
    MonthlyOverview,
    MonthlyStats,
    Payment,
    Plan,
    Snapshot,
)
from replay import replay_due_date
import utils

logger = logging.getLogger(__name__)

CATEGORIES = (
    "new_join",
    "inactive",
    "reactivated",
    "paid",
    "unpaid",
    "due_date_issue",
    "no_plan",
    "no_payment",
    "overdue",
)

UNVERIFIABLE_NOTE = "Unable to verify due date for this member"


def _due_date_audit(
    m: Member,
    plan: Plan | None,
    payments: list[Payment],
    history: list[HistoryEvent],
) -> tuple[date | None, bool, str]:
    """Return (expected_next_due, correct, note) for one member."""
    if plan is None:
        # An active member without a plan is an issue
        return None, m.status != "active", "No plan assigned"
    if not payments:
        return None, m.status != "active", "No payments recorded"

    try:
        result = replay_due_date(m.joining_date, plan.total_months, payments, history).require()
    except DueDateError:
        logger.exception("Due date replay failed (member_id=%s)", m.id)
        return None, False, UNVERIFIABLE_NOTE
    return result.expected_next_due, m.next_payment_due_date == result.expected_next_due, result.note


def _made_inactive(m: Member, month_history: list[HistoryEvent], start: date, end: date) -> bool:
    for h in month_history:
        if h.change_type == STATUS_CHANGE and (h.new_value or {}).get("status") == "inactive":
            return True
    return m.status == "inactive" and m.updated_at is not None and start <= m.updated_at.date() <= end


def build_monthly_overview(snapshot: Snapshot, month: date, today: date | None = None) -> MonthlyOverview:
    today = today or date.today()
    month_start, month_end = utils.month_bounds(month)

    def in_month(d: date | None) -> bool:
        return d is not None and month_start <= d <= month_end

    plans = snapshot.plan_map()
    payments_by_member = snapshot.payments_by_member()
    history_by_member = snapshot.history_by_member()

    stats = MonthlyStats()
    members: list[MonthlyMemberRow] = []

    for m in snapshot.members:
        plan = plans.get(m.plan_id) if m.plan_id else None
        member_payments = payments_by_member.get(m.id, [])
        member_history = history_by_member.get(m.id, [])
        month_payments = [p for p in member_payments if in_month(p.payment_date)]
        month_history = [h for h in member_history if in_month(h.event_date)]

        active = m.status == "active"
        joined_this_month = in_month(m.joining_date)
        made_inactive_this_month = _made_inactive(m, month_history, month_start, month_end)
        reactivated_this_month = any(h.change_type == REACTIVATION for h in month_history)
        paid_this_month = bool(month_payments)
        amount_paid_this_month = sum(p.amount for p in month_payments)

        expected, due_date_correct, due_date_note = _due_date_audit(m, plan, member_payments, member_history)
        overdue = active and m.next_payment_due_date is not None and m.next_payment_due_date < today

        flags = {
            "new_join": joined_this_month,
            "inactive": made_inactive_this_month,
            "reactivated": reactivated_this_month,
            "paid": paid_this_month,
            "unpaid": active and not paid_this_month,
            "due_date_issue": active and not due_date_correct,
            "no_plan": active and plan is None,
            "no_payment": active and not member_payments,
            "overdue": overdue,
        }
        categories = tuple(c for c in CATEGORIES if flags[c])

        # Newest first for display
        records = tuple(sorted(member_payments, key=lambda p: p.payment_date, reverse=True))
        last_payment = records[0] if records else None

        members.append(
            MonthlyMemberRow(
                id=m.id,
                full_name=m.full_name,
                phone=m.phone,
                photo_url=m.photo_url,
                status=m.status,
                gender=m.gender,
                joining_date=m.joining_date,
                joining_day=m.joining_date.day,
                membership_end_date=m.membership_end_date,
                plan_id=m.plan_id,
                plan_name=plan.name if plan else "No plan",
                plan_total_months=plan.total_months if plan else 0,
                plan_amount=plan.price if plan else (m.plan_amount or 0.0),
                payments=records,
                payment_count=len(records),
                total_paid=sum(p.amount for p in records),
                last_payment_date=last_payment.payment_date if last_payment else None,
                last_payment_amount=last_payment.amount if last_payment and last_payment.amount else None,
                paid_this_month=paid_this_month,
                amount_paid_this_month=amount_paid_this_month,
                stored_next_due=m.next_payment_due_date,
                expected_next_due=expected,
                due_date_correct=due_date_correct,
                due_date_note=due_date_note,
                joined_this_month=joined_this_month,
                made_inactive_this_month=made_inactive_this_month,
                reactivated_this_month=reactivated_this_month,
                categories=categories,
            )
        )

        if active:
            stats.total_active += 1
        if m.status == "inactive":
            stats.total_inactive += 1
        if joined_this_month:
            stats.new_joins += 1
        if made_inactive_this_month:
            stats.made_inactive += 1
        if reactivated_this_month:
            stats.reactivated += 1
        if paid_this_month:
            stats.members_paid += 1
            stats.total_collected += amount_paid_this_month
        if flags["unpaid"]:
            stats.members_unpaid += 1
        if flags["due_date_issue"]:
            stats.due_date_issues += 1
        if flags["no_plan"]:
            stats.no_plan += 1
        if flags["no_payment"]:
            stats.no_payments += 1
        if overdue:
            stats.overdue += 1

    return MonthlyOverview(
        stats=stats,
        members=members,
        gym_name=snapshot.gym_name,
        month_label=f"{month_start:%B %Y}",
    )


def filter_by_category(overview: MonthlyOverview, category: str) -> list[MonthlyMemberRow]:
    if category not in CATEGORIES:
        raise ValidationError(f"category must be one of {CATEGORIES}, got {category!r}")
    return [r for r in overview.members if category in r.categories]


def revenue_by_month(payments: list[Payment]) -> pd.DataFrame:
    """Total collected per YYYY-MM, newest month first."""
    if not payments:
        return pd.DataFrame(columns=["month", "revenue"])
    df = pd.DataFrame(
        {
            "month": [p.payment_date.strftime("%Y-%m") for p in payments],
            "revenue": [p.amount for p in payments],
        }
    )
    return (
        df.groupby("month", as_index=False)["revenue"]
        .sum()
        .sort_values("month", ascending=False)
        .reset_index(drop=True)
    )


def fetch_monthly_overview(
    gym_id: str,
    month: date,
    today: date | None = None,
    db_file: Path | None = None,
) -> MonthlyOverview:
    """Load a gym's snapshot and build the overview for `month`."""
    overview = build_monthly_overview(db.load_snapshot(gym_id, db_file=db_file), month, today=today)
    logger.info(
        "Monthly overview built (gym_id=%s month=%s members=%d due_date_issues=%d)",
        gym_id,
        overview.month_label,
        len(overview.members),
        overview.stats.due_date_issues,
    )
    return overview
