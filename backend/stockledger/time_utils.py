"""
Calendar semantics (authoritative)

- A ledger day is a datetime.date; time-of-day never affects identity.
- Datetimes are UTC-naive internally; ISO strings with Z/offsets are normalized.
- Stock is sellable through the whole of its labelled expiry date. It spoils at
  the cutover instant: 00:01 on the following day.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional


CUTOVER_TIME = time(0, 1)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_calendar_day(value) -> Optional[date]:
    """
    Normalize a date-like value to a calendar day.

    Accepts None, date, datetime (aware values are converted to UTC first)
    and ISO-8601 strings, either "YYYY-MM-DD" or a full datetime.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if len(s) == 10:
            return date.fromisoformat(s)
        dt = parse_iso_datetime(s)
        return dt.date() if dt else None
    raise ValueError(f"not a calendar day: {value!r}")


def day_after(day: date) -> date:
    return day + timedelta(days=1)


def cutover_day(expire_date: date) -> date:
    """Calendar day on which a batch labelled ``expire_date`` is written off."""
    return day_after(expire_date)


def cutover_instant(expire_date: date) -> datetime:
    return datetime.combine(cutover_day(expire_date), CUTOVER_TIME)


def is_past_cutover(expire_date: date, now: datetime) -> bool:
    return now >= cutover_instant(expire_date)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every day from start to end, both inclusive."""
    day = start
    while day <= end:
        yield day
        day = day_after(day)


def month_key(day: date) -> tuple[int, int]:
    return day.year, day.month


def month_name(month: int) -> str:
    return calendar.month_name[month]
