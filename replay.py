"""
replay.py
Due-date replay: re-derive a member's next payment due date from the payment
log, reproducing what the payment trigger stores in `next_payment_due_date`.

The replay walks payments oldest first. Each payment advances the billing
cycle by the plan length; the first payment (and any payment after a
reactivation moved the joining date past the current due date) starts a new
cycle from the joining date instead. The due day always snaps back to the
joining day, or to the last day of a shorter month.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Union

from errors import ValidationError
from models import (
    CALCULATION_FAILED,
    NO_PAYMENTS,
    SINGLE_PAYMENT,
    HistoryEvent,
    Payment,
    ReplayResult,
)
import utils

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Uninitialized:
    """No billing cycle established yet."""


@dataclass(frozen=True)
class Anchored:
    next_due: date


CycleState = Union[Uninitialized, Anchored]


def _as_payment(p: Payment | Mapping[str, Any]) -> Payment:
    if not isinstance(p, Payment):
        return Payment.from_row(p)
    if p.created_at is None:
        return p
    # Aware and naive timestamps must not meet in the tie-break sort
    return replace(p, created_at=utils.parse_timestamp(p.created_at))


def _as_event(e: HistoryEvent | Mapping[str, Any]) -> HistoryEvent:
    if not isinstance(e, HistoryEvent):
        return HistoryEvent.from_row(e)
    return replace(e, created_at=utils.parse_timestamp(e.created_at))


def _validate_months(total_months) -> int:
    if isinstance(total_months, bool) or not isinstance(total_months, int):
        raise ValidationError(f"total_months: expected an integer, got {total_months!r}")
    if total_months < 1:
        raise ValidationError(f"total_months must be >= 1, got {total_months}")
    return total_months


def reactivation_resets(events: Iterable[HistoryEvent]) -> dict[date, date]:
    """
    Map reactivation date -> new joining date.

    Only reactivations that carry a new joining date can reset the anchor.
    Several on the same day resolve to the most recently recorded one.
    """
    resets: dict[date, date] = {}
    for ev in sorted(events, key=lambda e: e.created_at):
        new_joining = ev.new_joining_date
        if new_joining is not None:
            resets[ev.event_date] = new_joining
    return resets


def payment_order(payments: Iterable[Payment]) -> list[Payment]:
    """Replay order: payment date, then creation time for same-day payments."""
    return sorted(payments, key=lambda p: (p.payment_date, p.created_at or datetime.min))


def advance(state: CycleState, anchor: date, total_months: int, restart: bool = False) -> Anchored:
    """
    Apply one payment to the cycle.

    A new cycle starts from `anchor` when forced, when none exists yet, or
    when the current due date is not after the anchor.
    """
    if restart or isinstance(state, Uninitialized) or state.next_due <= anchor:
        base = anchor
    else:
        base = state.next_due
    raw = utils.add_months(base, total_months)
    return Anchored(utils.clamp_day(raw, anchor.day))


def _note(reactivation_count: int, payment_count: int) -> str:
    if reactivation_count:
        return f"Reactivated {reactivation_count}x"
    if payment_count == 1:
        return SINGLE_PAYMENT
    return f"{payment_count} payments"


def replay_due_date(
    joining_date,
    total_months: int,
    payments: Iterable[Payment | Mapping[str, Any]],
    history_events: Iterable[HistoryEvent | Mapping[str, Any]] = (),
) -> ReplayResult:
    """
    Replay a member's payments and return the expected next due date.

    Args:
        joining_date: member's joining date (date or ISO string)
        total_months: plan length, base + bonus months (>= 1)
        payments: Payment records or rows with payment_date/created_at
        history_events: HistoryEvent records or rows with
            change_type/created_at/new_value; only reactivations matter

    Raises:
        ValidationError: on an unparsable date or a plan shorter than a month
    """
    anchor = utils.parse_iso(joining_date, "joining_date")
    months = _validate_months(total_months)
    ordered = payment_order(_as_payment(p) for p in payments)
    reactivations = [ev for ev in map(_as_event, history_events) if ev.is_reactivation]

    if not ordered:
        return ReplayResult(None, NO_PAYMENTS)

    resets = reactivation_resets(reactivations)
    current_joining = anchor
    state: CycleState = Uninitialized()

    for i, p in enumerate(ordered):
        reset = resets.get(p.payment_date)
        if reset is not None:
            logger.debug("Joining date reset %s -> %s on %s", current_joining, reset, p.payment_date)
            current_joining = reset
        state = advance(state, current_joining, months, restart=(i == 0))

    if not isinstance(state, Anchored):
        return ReplayResult(None, CALCULATION_FAILED)

    return ReplayResult(state.next_due, _note(len(reactivations), len(ordered)))
