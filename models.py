"""
models.py
Domain records (plans, members, payments, history) and audit results.
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from errors import ComputationInvariantError, ValidationError
import utils

# History change types the audit cares about
REACTIVATION = "member_reactivated"
STATUS_CHANGE = "status_change"

# Replay notes
NO_PAYMENTS = "No payments"
SINGLE_PAYMENT = "Single payment"
CALCULATION_FAILED = "Calculation failed"


def _first_not_none(*values):
    for v in values:
        if v is not None:
            return v
    return None


def _number(value, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field}: expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field}: expected a number, got {value!r}") from exc


def _whole_number(value, field: str) -> int:
    """Accept 3, 3.0 or "3"; reject 1.5 rather than truncating it."""
    n = _number(value, field)
    if not n.is_integer():
        raise ValidationError(f"{field}: expected a whole number, got {value!r}")
    return int(n)


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    base_months: int
    bonus_months: int = 0
    price: float = 0.0

    @property
    def total_months(self) -> int:
        return self.base_months + self.bonus_months

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Plan":
        """
        Normalize a plan row. Older plans only carry `duration_months`;
        newer ones split it into base + bonus.
        """
        row = dict(row)
        base = _first_not_none(row.get("base_duration_months"), row.get("duration_months"), 1)
        bonus = _first_not_none(row.get("bonus_duration_months"), 0)
        price = _first_not_none(row.get("final_price"), row.get("price"), 0)
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            base_months=_whole_number(base, "base_duration_months"),
            bonus_months=_whole_number(bonus, "bonus_duration_months"),
            price=_number(price, "price"),
        )


@dataclass(frozen=True)
class Member:
    id: str
    full_name: str
    joining_date: date
    status: str = "active"  # 'active', 'inactive' or 'expired'
    phone: str = ""
    plan_id: str | None = None
    plan_amount: float | None = None
    next_payment_due_date: date | None = None
    membership_end_date: date | None = None
    gender: str | None = None
    photo_url: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Member":
        row = dict(row)

        def opt_date(key: str) -> date | None:
            v = row.get(key)
            return utils.parse_iso(v, key) if v else None

        plan_amount = row.get("plan_amount")
        return cls(
            id=str(row["id"]),
            full_name=row.get("full_name") or "",
            joining_date=utils.parse_iso(row.get("joining_date"), "joining_date"),
            status=row.get("status") or "active",
            phone=row.get("phone") or "",
            plan_id=str(row["plan_id"]) if row.get("plan_id") else None,
            plan_amount=_number(plan_amount, "plan_amount") if plan_amount is not None else None,
            next_payment_due_date=opt_date("next_payment_due_date"),
            membership_end_date=opt_date("membership_end_date"),
            gender=row.get("gender"),
            photo_url=row.get("photo_url"),
            updated_at=utils.parse_timestamp(row["updated_at"], "updated_at") if row.get("updated_at") else None,
        )


@dataclass(frozen=True)
class Payment:
    payment_date: date
    created_at: datetime | None = None  # tie-break for same-day payments
    id: str | None = None
    member_id: str | None = None
    amount: float = 0.0
    method: str = "unknown"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Payment":
        row = dict(row)
        created = row.get("created_at")
        return cls(
            payment_date=utils.parse_iso(row.get("payment_date"), "payment_date"),
            created_at=utils.parse_timestamp(created) if created else None,
            id=str(row["id"]) if row.get("id") is not None else None,
            member_id=str(row["member_id"]) if row.get("member_id") is not None else None,
            amount=_number(row.get("amount") or 0, "amount"),
            method=row.get("payment_method") or row.get("method") or "unknown",
        )


@dataclass(frozen=True)
class HistoryEvent:
    change_type: str
    created_at: datetime
    event_date: date
    new_value: dict | None = None
    id: str | None = None
    member_id: str | None = None

    @property
    def is_reactivation(self) -> bool:
        return self.change_type == REACTIVATION

    @property
    def new_joining_date(self) -> date | None:
        raw = (self.new_value or {}).get("joining_date")
        return utils.parse_iso(raw, "new_value.joining_date") if raw else None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "HistoryEvent":
        row = dict(row)
        new_value = row.get("new_value")
        if isinstance(new_value, str):
            try:
                new_value = json.loads(new_value) if new_value.strip() else None
            except json.JSONDecodeError as exc:
                raise ValidationError(f"new_value: invalid JSON {new_value!r}") from exc
        if new_value is not None and not isinstance(new_value, dict):
            raise ValidationError(f"new_value: expected an object, got {new_value!r}")
        created = row.get("created_at")
        return cls(
            change_type=row.get("change_type") or "",
            created_at=utils.parse_timestamp(created),
            # Date as recorded, before any timezone normalization
            event_date=utils.parse_iso(created, "created_at"),
            new_value=new_value,
            id=str(row["id"]) if row.get("id") is not None else None,
            member_id=str(row["member_id"]) if row.get("member_id") is not None else None,
        )


@dataclass(frozen=True)
class ReplayResult:
    expected_next_due: date | None
    note: str

    @property
    def failed(self) -> bool:
        return self.note == CALCULATION_FAILED

    @property
    def expected_next_due_iso(self) -> str | None:
        return utils.iso_or_none(self.expected_next_due)

    def require(self) -> "ReplayResult":
        if self.failed:
            raise ComputationInvariantError("replay produced no due date for a non-empty payment log")
        return self


@dataclass
class Snapshot:
    """Everything one audit run reads, already scoped to one gym."""
    gym_name: str = ""
    members: list[Member] = field(default_factory=list)
    plans: list[Plan] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    history: list[HistoryEvent] = field(default_factory=list)

    def plan_map(self) -> dict[str, Plan]:
        return {p.id: p for p in self.plans}

    def payments_by_member(self) -> dict[str, list[Payment]]:
        out: dict[str, list[Payment]] = defaultdict(list)
        for p in self.payments:
            out[p.member_id].append(p)
        return dict(out)

    def history_by_member(self) -> dict[str, list[HistoryEvent]]:
        out: dict[str, list[HistoryEvent]] = defaultdict(list)
        for h in self.history:
            out[h.member_id].append(h)
        return dict(out)


@dataclass(frozen=True)
class AuditRow:
    member_id: str
    full_name: str
    phone: str
    status: str
    joining_date: date
    joining_day: int
    plan_name: str
    total_months: int
    payment_count: int
    last_payment_date: date | None
    last_payment_amount: float | None
    stored_next_due: date | None
    stored_end_date: date | None
    expected_next_due: date | None
    is_correct: bool
    note: str


@dataclass(frozen=True)
class MonthlyMemberRow:
    id: str
    full_name: str
    phone: str
    photo_url: str | None
    status: str
    gender: str | None
    joining_date: date
    joining_day: int
    membership_end_date: date | None
    # Plan
    plan_id: str | None
    plan_name: str
    plan_total_months: int
    plan_amount: float
    # Payments, newest first
    payments: tuple[Payment, ...]
    payment_count: int
    total_paid: float
    last_payment_date: date | None
    last_payment_amount: float | None
    paid_this_month: bool
    amount_paid_this_month: float
    # Due date audit
    stored_next_due: date | None
    expected_next_due: date | None
    due_date_correct: bool
    due_date_note: str
    # Flags
    joined_this_month: bool
    made_inactive_this_month: bool
    reactivated_this_month: bool
    categories: tuple[str, ...] = ()


@dataclass
class MonthlyStats:
    total_active: int = 0
    total_inactive: int = 0
    new_joins: int = 0
    made_inactive: int = 0
    reactivated: int = 0
    members_paid: int = 0
    members_unpaid: int = 0
    total_collected: float = 0.0
    due_date_issues: int = 0
    no_plan: int = 0
    no_payments: int = 0
    overdue: int = 0


@dataclass
class MonthlyOverview:
    stats: MonthlyStats
    members: list[MonthlyMemberRow]
    gym_name: str
    month_label: str
