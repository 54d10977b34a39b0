from datetime import date, datetime, timezone

import pytest

from dates import (
    as_date,
    date_key,
    day_in_range,
    days_between_inclusive,
    days_in_month,
    local_today,
    parse_date_key,
    same_day,
)


def test_parse_date_key_anchors_at_noon():
    parsed = parse_date_key("2024-03-15")
    assert parsed == datetime(2024, 3, 15, 12, 0)
    assert date_key(parsed) == "2024-03-15"


@pytest.mark.parametrize("value", ["15/03/2024", "2024-3-5", "", "2024-03-15T00:00"])
def test_parse_date_key_rejects_other_formats(value):
    with pytest.raises(ValueError):
        parse_date_key(value)


def test_date_key_uses_calendar_fields_late_in_the_day():
    assert date_key(datetime(2024, 3, 15, 23, 59, 59)) == "2024-03-15"
    assert date_key(date(2024, 1, 5)) == "2024-01-05"


def test_comparisons_go_through_date_keys():
    assert same_day(datetime(2024, 3, 15, 0, 1), "2024-03-15")
    assert not same_day(date(2024, 3, 15), date(2024, 3, 16))
    assert day_in_range("2024-03-15", date(2024, 3, 15), date(2024, 4, 14))
    assert day_in_range(date(2024, 4, 14), "2024-03-15", "2024-04-14")
    assert not day_in_range(date(2024, 4, 15), "2024-03-15", "2024-04-14")


def test_local_today_converts_instant_to_reference_timezone():
    # 14:00 UTC on the 14th is already 01:00 on the 15th in Sydney (AEDT).
    now = datetime(2024, 3, 14, 14, 0, tzinfo=timezone.utc)
    assert local_today("Australia/Sydney", now) == date(2024, 3, 15)
    assert local_today("UTC", now) == date(2024, 3, 14)


def test_local_today_treats_naive_datetimes_as_utc():
    assert local_today("Australia/Sydney", datetime(2024, 3, 14, 12, 59)) == date(
        2024, 3, 14
    )


def test_month_helpers():
    assert days_in_month(2024, 2) == 29
    assert days_in_month(2023, 2) == 28
    assert days_in_month(2024, 12) == 31
    assert as_date("2024-02-29") == date(2024, 2, 29)
    assert days_between_inclusive("2024-03-15", "2024-04-14") == 31
