from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from config import DEFAULT_TIMEZONE
from dates import add_months, as_date, date_key, local_now
from models import Cycle, CycleStatus

CYCLE_START_DAY = 15
CYCLE_END_DAY = 14


@dataclass(frozen=True)
class CycleDates:
    start_date: str
    end_date: str

    @property
    def start(self) -> date:
        return as_date(self.start_date)

    @property
    def end(self) -> date:
        return as_date(self.end_date)


def cycle_dates_containing(day: date) -> CycleDates:
    if day.day >= CYCLE_START_DAY:
        start_year, start_month = day.year, day.month
    else:
        start_year, start_month = add_months(day.year, day.month, -1)
    end_year, end_month = add_months(start_year, start_month, 1)
    return CycleDates(
        start_date=date_key(date(start_year, start_month, CYCLE_START_DAY)),
        end_date=date_key(date(end_year, end_month, CYCLE_END_DAY)),
    )


def resolve_current_cycle_dates(
    now: datetime, timezone: str = DEFAULT_TIMEZONE
) -> CycleDates:
    return cycle_dates_containing(local_now(timezone, now).date())


def next_cycle_dates(end_date: date) -> CycleDates:
    """The cycle following one that ends on ``end_date``.

    It starts the day after ``end_date`` and ends on the next 14th, so an
    irregular cycle is followed by a short one and never overlapped.
    """
    start = as_date(end_date) + timedelta(days=1)
    end = cycle_dates_containing(start).end
    if end <= start:
        # A cycle starting on the 14th would end the same day.
        end = cycle_dates_containing(end + timedelta(days=1)).end
    return CycleDates(start_date=date_key(start), end_date=date_key(end))


def find_open_cycle(cycles: Iterable[Cycle]) -> Optional[Cycle]:
    open_cycles = [c for c in cycles if c.status == CycleStatus.open]
    if len(open_cycles) > 1:
        raise ValueError("More than one open cycle found")
    return open_cycles[0] if open_cycles else None
