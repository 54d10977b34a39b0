"""Calendar helpers shared by the cycle, recurrence and metrics code.

Dates travel through the system as calendar days. Parsing anchors a day at
local noon so later reformatting can never drift across midnight, and every
equality or range check compares ``YYYY-MM-DD`` keys rather than instants.
"""

import re
from datetime import date, datetime, time, timezone as dt_timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

DateLike = Union[date, datetime, str]

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
NOON = time(12, 0)


def parse_date_key(value: str) -> datetime:
    value = value.strip()
    if not _DATE_KEY_RE.match(value):
        raise ValueError(f"Expected a YYYY-MM-DD date, got {value!r}")
    year, month, day = (int(part) for part in value.split("-"))
    return datetime.combine(date(year, month, day), NOON)


def date_key(value: DateLike) -> str:
    if isinstance(value, str):
        return date_key(parse_date_key(value))
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def as_date(value: DateLike) -> date:
    if isinstance(value, str):
        return parse_date_key(value).date()
    if isinstance(value, datetime):
        return date(value.year, value.month, value.day)
    return value


def same_day(a: DateLike, b: DateLike) -> bool:
    return date_key(a) == date_key(b)


def day_in_range(value: DateLike, start: DateLike, end: DateLike) -> bool:
    # ISO keys sort lexicographically in calendar order.
    return date_key(start) <= date_key(value) <= date_key(end)


def local_now(tz: str, now: Optional[datetime] = None) -> datetime:
    """Return ``now`` (or the wall clock) as an aware datetime in ``tz``.

    Naive datetimes are taken to be UTC.
    """
    zone = ZoneInfo(tz)
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    return now.astimezone(zone)


def local_today(tz: str, now: Optional[datetime] = None) -> date:
    return local_now(tz, now).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(year: int, month: int, delta: int) -> tuple[int, int]:
    total_months = month - 1 + delta
    return year + total_months // 12, total_months % 12 + 1


def days_between_inclusive(start: DateLike, end: DateLike) -> int:
    return (as_date(end) - as_date(start)).days + 1
