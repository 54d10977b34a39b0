from datetime import date

from materializer import filter_new_drafts, materialize_planned
from models import Cycle, CycleStatus, Frequency, RecurringTransaction, Transaction
from schemas import RecurringOrigin


def _cycle() -> Cycle:
    return Cycle(
        id=7,
        user_id=1,
        start_date=date(2024, 3, 15),
        end_date=date(2024, 4, 14),
        starting_balance_cents=0,
        income_planned_cents=0,
        target_end_balance_cents=0,
        status=CycleStatus.open,
    )


def _templates() -> list[RecurringTransaction]:
    return [
        RecurringTransaction(
            id=1,
            user_id=1,
            name="Rent",
            amount_cents=180000,
            category_id=3,
            frequency=Frequency.monthly,
            day_of_month=1,
            day_of_week=None,
            is_active=True,
            notes="Direct debit",
        ),
        RecurringTransaction(
            id=2,
            user_id=1,
            name="Gym",
            amount_cents=2500,
            category_id=None,
            frequency=Frequency.fortnightly,
            day_of_week=1,
            day_of_month=None,
            is_active=True,
        ),
        RecurringTransaction(
            id=3,
            user_id=1,
            name="Paused",
            amount_cents=999,
            frequency=Frequency.weekly,
            day_of_week=2,
            day_of_month=None,
            is_active=False,
        ),
    ]


def test_drafts_are_planned_negative_and_tagged_with_template():
    drafts = materialize_planned(_templates(), _cycle())

    rent = [d for d in drafts if d.recurring_transaction_id == 1]
    assert len(rent) == 1
    assert rent[0].date == date(2024, 4, 1)
    assert rent[0].amount_cents == -180000
    assert rent[0].description == "Rent"
    assert rent[0].merchant == "Rent"
    assert rent[0].category_id == 3
    assert rent[0].cycle_id == 7
    assert rent[0].is_planned is True
    assert rent[0].notes == "Direct debit"
    assert rent[0].origin == RecurringOrigin(recurring_transaction_id=1)

    gym_dates = [d.date for d in drafts if d.recurring_transaction_id == 2]
    assert gym_dates == [date(2024, 3, 18), date(2024, 4, 1)]

    assert all(d.recurring_transaction_id != 3 for d in drafts)


def test_payday_occurrences_are_not_drafted():
    drafts = materialize_planned(_templates(), _cycle(), payday_date="2024-04-01")
    assert [d.date for d in drafts] == [date(2024, 3, 18)]


def test_filtering_against_itself_leaves_nothing():
    first = materialize_planned(_templates(), _cycle())
    second = materialize_planned(_templates(), _cycle())
    assert filter_new_drafts(second, first) == []


def test_paid_occurrences_are_not_planned_again():
    paid = Transaction(
        id=40,
        user_id=1,
        cycle_id=7,
        date=date(2024, 3, 18),
        description="Gym",
        amount_cents=-2500,
        is_planned=False,
        recurring_transaction_id=2,
    )
    manual = Transaction(
        id=41,
        user_id=1,
        cycle_id=7,
        date=date(2024, 4, 1),
        description="Rent",
        amount_cents=-180000,
        is_planned=False,
        recurring_transaction_id=None,
    )
    fresh = filter_new_drafts(materialize_planned(_templates(), _cycle()), [paid, manual])
    assert sorted((d.recurring_transaction_id, d.date) for d in fresh) == [
        (1, date(2024, 4, 1)),
        (2, date(2024, 4, 1)),
    ]


def test_duplicates_within_a_batch_are_collapsed():
    drafts = materialize_planned(_templates(), _cycle())
    assert len(filter_new_drafts(drafts + drafts, [])) == len(drafts)
