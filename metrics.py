"""Cycle metrics: balances, safe-to-spend figures and per-category budget use.

Everything here is computed from the collections handed in; nothing is read
from the database or the clock unless ``now`` is omitted. Money is integer
cents throughout. Divisions go through ``Decimal`` and round half-up to the
cent.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from config import DEFAULT_TIMEZONE
from dates import DateLike, as_date, date_key, local_today
from recurrence import projected_total_cents, sunday_based_weekday

WEEKEND_LOOP_CAP = 10
SATURDAY = 6
SUNDAY = 0


@dataclass(frozen=True)
class BudgetCategoryMetric:
    category: object
    planned_cents: int
    actual_cents: int
    variance_cents: int
    percent_used: float

    def to_dict(self) -> dict[str, object]:
        category_type = getattr(self.category, "type", None)
        return {
            "category": {
                "id": self.category.id,
                "name": self.category.name,
                "type": getattr(category_type, "value", category_type),
                "icon": getattr(self.category, "icon", None),
            },
            "planned_cents": self.planned_cents,
            "actual_cents": self.actual_cents,
            "variance_cents": self.variance_cents,
            "percent_used": self.percent_used,
        }


@dataclass(frozen=True)
class CycleMetrics:
    cycle_id: Optional[int]
    start_date: date
    end_date: date
    total_spend_cents: int
    total_income_cents: int
    planned_expenses_cents: int
    planned_expenses_from_templates_cents: int
    planned_source: str
    income_actual_cents: int
    base_budget_cents: int
    actual_net_cents: int
    current_balance_cents: int
    actual_discretionary_spend_cents: int
    remaining_discretionary_cents: int
    weekends_remaining: int
    safe_to_spend_per_weekend_cents: int
    expected_end_balance_cents: int
    target_variance_cents: int
    days_remaining: int
    remaining_after_planned_cents: int
    safe_to_spend_cents: int
    daily_budget_cents: int
    budget_by_category: list[BudgetCategoryMetric] = field(default_factory=list)
    spend_by_category_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if name not in {"budget_by_category", "start_date", "end_date"}
        }
        data["start_date"] = date_key(self.start_date)
        data["end_date"] = date_key(self.end_date)
        data["budget_by_category"] = [row.to_dict() for row in self.budget_by_category]
        return data


def divide_cents(amount_cents: int, divisor: int) -> int:
    if divisor == 0:
        return 0
    quotient = (Decimal(amount_cents) / Decimal(divisor)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(quotient)


def count_weekends_remaining(today: DateLike, end_date: DateLike) -> int:
    """Saturdays from ``today`` through ``end_date``, never less than one.

    On a Sunday the weekend already under way still counts.
    """
    start = as_date(today)
    if sunday_based_weekday(start) == SUNDAY:
        start -= timedelta(days=1)
    saturday = start + timedelta(days=(SATURDAY - sunday_based_weekday(start)) % 7)
    end_key = date_key(end_date)
    count = 0
    iterations = 0
    while date_key(saturday) <= end_key and iterations < WEEKEND_LOOP_CAP:
        count += 1
        iterations += 1
        saturday += timedelta(days=7)
    return max(count, 1)


def days_remaining_in_cycle(today: DateLike, end_date: DateLike) -> int:
    return max(0, (as_date(end_date) - as_date(today)).days + 1)


def _category_type_key(category) -> str:
    if category is None:
        return "uncategorized"
    return getattr(category.type, "value", category.type)


def compute_cycle_metrics(
    cycle,
    transactions: Optional[Sequence],
    budgets: Optional[Sequence],
    categories: Optional[Sequence],
    recurring_templates: Optional[Sequence],
    payday_date: Optional[DateLike] = None,
    *,
    now: Optional[datetime] = None,
    timezone: str = DEFAULT_TIMEZONE,
) -> Optional[CycleMetrics]:
    """Build the metrics snapshot for ``cycle``.

    Returns ``None`` when the cycle is missing or any collection has not been
    loaded yet (passed as ``None``); an empty list is a loaded, empty
    collection.
    """
    if cycle is None or any(
        collection is None
        for collection in (transactions, budgets, categories, recurring_templates)
    ):
        return None

    start_date = as_date(cycle.start_date)
    end_date = as_date(cycle.end_date)
    today = local_today(timezone, now)

    actual = [t for t in transactions if not t.is_planned]
    planned = [t for t in transactions if t.is_planned]

    total_spend = sum(-t.amount_cents for t in actual if t.amount_cents < 0)
    total_income = sum(t.amount_cents for t in actual if t.amount_cents > 0)

    from_templates = projected_total_cents(
        recurring_templates, start_date, end_date, payday_date
    )
    if planned:
        planned_expenses = sum(-t.amount_cents for t in planned if t.amount_cents < 0)
        planned_source = "transactions"
    else:
        # Nothing materialized yet: reserve what the templates will generate.
        planned_expenses = from_templates
        planned_source = "templates"

    income_actual = (
        cycle.income_actual_cents
        if cycle.income_actual_cents is not None
        else cycle.income_planned_cents
    )
    base_budget = cycle.starting_balance_cents + income_actual
    actual_net = sum(t.amount_cents for t in actual)
    current_balance = base_budget + actual_net
    remaining_discretionary = current_balance - planned_expenses

    weekends_remaining = count_weekends_remaining(today, end_date)
    expected_end_balance = current_balance
    target_variance = expected_end_balance - cycle.target_end_balance_cents

    days_remaining = days_remaining_in_cycle(today, end_date)
    remaining_after_planned = (
        expected_end_balance - cycle.target_end_balance_cents - planned_expenses
    )
    safe_to_spend = (
        divide_cents(remaining_after_planned, days_remaining)
        if days_remaining > 0
        else 0
    )

    categories_by_id = {c.id: c for c in categories}
    budget_rows: list[BudgetCategoryMetric] = []
    for budget in budgets:
        category = categories_by_id.get(budget.category_id)
        if category is None:
            continue
        spent = sum(
            -t.amount_cents
            for t in actual
            if t.amount_cents < 0 and t.category_id == budget.category_id
        )
        planned_amount = budget.planned_amount_cents
        budget_rows.append(
            BudgetCategoryMetric(
                category=category,
                planned_cents=planned_amount,
                actual_cents=spent,
                variance_cents=planned_amount - spent,
                percent_used=(spent / planned_amount * 100) if planned_amount > 0 else 0.0,
            )
        )

    spend_by_type: dict[str, int] = {
        "need": 0,
        "want": 0,
        "bucket": 0,
        "uncategorized": 0,
    }
    for txn in actual:
        if txn.amount_cents >= 0:
            continue
        key = _category_type_key(categories_by_id.get(txn.category_id))
        spend_by_type[key] = spend_by_type.get(key, 0) - txn.amount_cents

    return CycleMetrics(
        cycle_id=getattr(cycle, "id", None),
        start_date=start_date,
        end_date=end_date,
        total_spend_cents=total_spend,
        total_income_cents=total_income,
        planned_expenses_cents=planned_expenses,
        planned_expenses_from_templates_cents=from_templates,
        planned_source=planned_source,
        income_actual_cents=income_actual,
        base_budget_cents=base_budget,
        actual_net_cents=actual_net,
        current_balance_cents=current_balance,
        actual_discretionary_spend_cents=total_spend,
        remaining_discretionary_cents=remaining_discretionary,
        weekends_remaining=weekends_remaining,
        safe_to_spend_per_weekend_cents=divide_cents(
            remaining_discretionary, weekends_remaining
        ),
        expected_end_balance_cents=expected_end_balance,
        target_variance_cents=target_variance,
        days_remaining=days_remaining,
        remaining_after_planned_cents=remaining_after_planned,
        safe_to_spend_cents=safe_to_spend,
        daily_budget_cents=safe_to_spend,
        budget_by_category=budget_rows,
        spend_by_category_type=spend_by_type,
    )
