import logging
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from dates import DateLike, add_months, as_date, date_key, day_in_range, days_in_month
from models import Frequency

logger = logging.getLogger(__name__)

MONTHLY_OCCURRENCE_CAP = 24
WEEKLY_OCCURRENCE_CAP = 10

DAYS_OF_WEEK = [
    (0, "Sunday"),
    (1, "Monday"),
    (2, "Tuesday"),
    (3, "Wednesday"),
    (4, "Thursday"),
    (5, "Friday"),
    (6, "Saturday"),
]


class InvalidTemplateError(ValueError):
    pass


def _label(template) -> str:
    name = getattr(template, "name", None)
    template_id = getattr(template, "id", None)
    return f"{name!r} (id={template_id})" if template_id is not None else repr(name)


def sunday_based_weekday(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return day.isoweekday() % 7


def validate_template(template) -> Frequency:
    try:
        frequency = Frequency(template.frequency)
    except ValueError as exc:
        raise InvalidTemplateError(
            f"Unknown frequency {template.frequency!r} for {_label(template)}"
        ) from exc

    day_of_week = getattr(template, "day_of_week", None)
    day_of_month = getattr(template, "day_of_month", None)
    if frequency == Frequency.monthly:
        if day_of_month is None:
            raise InvalidTemplateError(
                f"Monthly recurring transaction {_label(template)} has no day of month"
            )
        if day_of_week is not None:
            raise InvalidTemplateError(
                f"Monthly recurring transaction {_label(template)} "
                "cannot also set a day of week"
            )
        if not 1 <= day_of_month <= 31:
            raise InvalidTemplateError(
                f"Day of month must be between 1 and 31, got {day_of_month}"
            )
    else:
        if day_of_week is None:
            raise InvalidTemplateError(
                f"{frequency.value.capitalize()} recurring transaction "
                f"{_label(template)} has no day of week"
            )
        if day_of_month is not None:
            raise InvalidTemplateError(
                f"{frequency.value.capitalize()} recurring transaction "
                f"{_label(template)} cannot also set a day of month"
            )
        if not 0 <= day_of_week <= 6:
            raise InvalidTemplateError(
                f"Day of week must be between 0 (Sunday) and 6 (Saturday), "
                f"got {day_of_week}"
            )
    return frequency


def _monthly_occurrences(
    template, range_start: date, range_end: date
) -> list[date]:
    day_of_month = template.day_of_month
    dates: list[date] = []
    year, month = range_start.year, range_start.month
    last_month = (range_end.year, range_end.month)
    while (year, month) <= last_month:
        if len(dates) >= MONTHLY_OCCURRENCE_CAP:
            logger.warning(
                "recurrence_cap_reached: template=%s frequency=monthly cap=%d",
                _label(template),
                MONTHLY_OCCURRENCE_CAP,
            )
            break
        # Months without this day are skipped rather than rolled over.
        if day_of_month <= days_in_month(year, month):
            target = date(year, month, day_of_month)
            if day_in_range(target, range_start, range_end):
                dates.append(target)
        year, month = add_months(year, month, 1)
    return dates


def _stepped_occurrences(
    template, range_start: date, range_end: date, step_days: int
) -> list[date]:
    offset = (template.day_of_week - sunday_based_weekday(range_start)) % 7
    current = range_start + timedelta(days=offset)
    end_key = date_key(range_end)
    dates: list[date] = []
    while date_key(current) <= end_key:
        if len(dates) >= WEEKLY_OCCURRENCE_CAP:
            logger.warning(
                "recurrence_cap_reached: template=%s step_days=%d cap=%d",
                _label(template),
                step_days,
                WEEKLY_OCCURRENCE_CAP,
            )
            break
        dates.append(current)
        current += timedelta(days=step_days)
    return dates


def project_occurrences(
    template,
    range_start: DateLike,
    range_end: DateLike,
    payday_date: Optional[DateLike] = None,
) -> list[date]:
    """Every date in ``[range_start, range_end]`` on which ``template`` fires.

    An occurrence landing exactly on ``payday_date`` belongs to the next cycle
    and is left out. Inactive templates are not filtered here; see
    :func:`project_active_templates`.
    """
    frequency = validate_template(template)
    start = as_date(range_start)
    end = as_date(range_end)
    if date_key(end) < date_key(start):
        raise ValueError(
            f"Range end {date_key(end)} is before range start {date_key(start)}"
        )

    if frequency == Frequency.monthly:
        dates = _monthly_occurrences(template, start, end)
    elif frequency == Frequency.weekly:
        dates = _stepped_occurrences(template, start, end, 7)
    else:
        dates = _stepped_occurrences(template, start, end, 14)

    if payday_date is not None:
        payday_key = date_key(payday_date)
        dates = [d for d in dates if date_key(d) != payday_key]
    return dates


def project_active_templates(
    templates: Iterable,
    range_start: DateLike,
    range_end: DateLike,
    payday_date: Optional[DateLike] = None,
) -> list[tuple[object, list[date]]]:
    return [
        (template, project_occurrences(template, range_start, range_end, payday_date))
        for template in templates
        if template.is_active
    ]


def projected_total_cents(
    templates: Sequence,
    range_start: DateLike,
    range_end: DateLike,
    payday_date: Optional[DateLike] = None,
) -> int:
    return sum(
        len(dates) * abs(template.amount_cents)
        for template, dates in project_active_templates(
            templates, range_start, range_end, payday_date
        )
    )


def _ordinal(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe_schedule(template) -> str:
    frequency = validate_template(template)
    if frequency == Frequency.monthly:
        return f"Monthly on the {_ordinal(template.day_of_month)}"
    day_name = dict(DAYS_OF_WEEK)[template.day_of_week]
    if frequency == Frequency.fortnightly:
        return f"Every 2 weeks on {day_name}"
    return f"Every {day_name}"
