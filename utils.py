"""
utils.py
Date parsing, month arithmetic and CSV export helpers.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pandas as pd

from errors import ValidationError


def parse_iso(value, field: str = "date") -> date:
    """
    Parse a calendar date.

    Accepts `date`, `datetime` (its date part) or an ISO string. Timestamp
    strings such as "2024-05-10T08:15:00+00:00" keep the date as written,
    without timezone conversion.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field}: expected an ISO date, got {value!r}")
    s = value.strip()
    try:
        if len(s) == 10:
            return date.fromisoformat(s)
        return datetime.fromisoformat(s).date()
    except ValueError as exc:
        raise ValidationError(f"{field}: invalid ISO date {value!r}") from exc


def parse_timestamp(value, field: str = "created_at") -> datetime:
    """
    Parse a timestamp into a naive UTC datetime so that aware and naive
    values compare cleanly. Date-only values become midnight.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError(f"{field}: invalid ISO timestamp {value!r}") from exc
    else:
        raise ValidationError(f"{field}: expected an ISO timestamp, got {value!r}")

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def last_day_of_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - timedelta(days=1)).day


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    day = min(start.day, last_day_of_month(y, m))
    return date(y, m, day)


def clamp_day(d: date, day: int) -> date:
    """Move `d` to `day` of its month, or to the month's last day if shorter."""
    return d.replace(day=min(day, last_day_of_month(d.year, d.month)))


def month_bounds(d: date) -> tuple[date, date]:
    return d.replace(day=1), d.replace(day=last_day_of_month(d.year, d.month))


def iso_or_none(d: date | None) -> str | None:
    return d.isoformat() if d else None


def to_csv_bytes(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8")
