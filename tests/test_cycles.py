from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from cycles import (
    find_open_cycle,
    next_cycle_dates,
    resolve_current_cycle_dates,
)
from models import Cycle, CycleStatus

SYDNEY = ZoneInfo("Australia/Sydney")


def _cycle(cycle_id: int, status: CycleStatus) -> Cycle:
    return Cycle(
        id=cycle_id,
        user_id=1,
        start_date=date(2024, 3, 15),
        end_date=date(2024, 4, 14),
        starting_balance_cents=0,
        income_planned_cents=0,
        target_end_balance_cents=0,
        status=status,
    )


@pytest.mark.parametrize(
    "now",
    [
        datetime(2024, 3, 15, 0, 0, tzinfo=SYDNEY),
        datetime(2024, 3, 15, 12, 0, tzinfo=SYDNEY),
        datetime(2024, 3, 15, 23, 59, 59, tzinfo=SYDNEY),
    ],
)
def test_fifteenth_starts_a_new_cycle_at_any_time_of_day(now):
    dates = resolve_current_cycle_dates(now, "Australia/Sydney")
    assert dates.start_date == "2024-03-15"
    assert dates.end_date == "2024-04-14"


def test_fourteenth_belongs_to_the_previous_cycle():
    now = datetime(2024, 3, 14, 23, 59, tzinfo=SYDNEY)
    dates = resolve_current_cycle_dates(now, "Australia/Sydney")
    assert dates.start_date == "2024-02-15"
    assert dates.end_date == "2024-03-14"


def test_resolver_uses_reference_timezone_not_utc():
    # Still the 14th in UTC, already the 15th in Sydney.
    now = datetime(2024, 3, 14, 14, 0, tzinfo=timezone.utc)
    assert resolve_current_cycle_dates(now).start_date == "2024-03-15"
    assert resolve_current_cycle_dates(now, "UTC").start_date == "2024-02-15"


def test_resolver_crosses_year_boundaries():
    january = resolve_current_cycle_dates(datetime(2024, 1, 5, 9, 0, tzinfo=SYDNEY))
    assert (january.start_date, january.end_date) == ("2023-12-15", "2024-01-14")

    december = resolve_current_cycle_dates(datetime(2024, 12, 20, 9, 0, tzinfo=SYDNEY))
    assert (december.start_date, december.end_date) == ("2024-12-15", "2025-01-14")


def test_next_cycle_dates_follow_the_end_date():
    dates = next_cycle_dates(date(2024, 4, 14))
    assert dates.start == date(2024, 4, 15)
    assert dates.end == date(2024, 5, 14)


def test_find_open_cycle():
    closed = _cycle(1, CycleStatus.closed)
    opened = _cycle(2, CycleStatus.open)
    assert find_open_cycle([]) is None
    assert find_open_cycle([closed]) is None
    assert find_open_cycle([closed, opened]) is opened


def test_find_open_cycle_rejects_two_open_cycles():
    with pytest.raises(ValueError):
        find_open_cycle([_cycle(1, CycleStatus.open), _cycle(2, CycleStatus.open)])


def test_next_cycle_after_an_irregular_end_never_overlaps():
    dates = next_cycle_dates(date(2024, 4, 20))
    assert dates.start == date(2024, 4, 21)
    assert dates.end == date(2024, 5, 14)

    # Ending on the 13th: a cycle starting on the 14th runs to the next 14th.
    dates = next_cycle_dates(date(2024, 5, 13))
    assert dates.start == date(2024, 5, 14)
    assert dates.end == date(2024, 6, 14)

    dates = next_cycle_dates(date(2024, 12, 14))
    assert (dates.start_date, dates.end_date) == ("2024-12-15", "2025-01-14")
