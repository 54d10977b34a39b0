from typing import Iterable, Optional, Sequence

from dates import DateLike, date_key
from recurrence import project_active_templates
from schemas import RecurringOrigin, TransactionIn


def materialize_planned(
    recurring_templates: Sequence,
    cycle,
    payday_date: Optional[DateLike] = None,
) -> list[TransactionIn]:
    """Planned expense payloads for every active template occurrence in ``cycle``.

    Nothing is checked against existing rows; callers run the result through
    :func:`filter_new_drafts` before persisting.
    """
    drafts: list[TransactionIn] = []
    for template, dates in project_active_templates(
        recurring_templates, cycle.start_date, cycle.end_date, payday_date
    ):
        for occurrence in dates:
            drafts.append(
                TransactionIn(
                    cycle_id=cycle.id,
                    date=occurrence,
                    description=template.name,
                    merchant=template.name,
                    amount_cents=-abs(template.amount_cents),
                    category_id=template.category_id,
                    is_planned=True,
                    origin=RecurringOrigin(recurring_transaction_id=template.id),
                    notes=getattr(template, "notes", None),
                )
            )
    return drafts


def filter_new_drafts(
    drafts: Iterable[TransactionIn], existing_transactions: Iterable
) -> list[TransactionIn]:
    """Drop drafts whose (date, recurring template) pair already exists.

    An occurrence that was planned and then marked as paid still counts as
    existing, so it is not planned a second time.
    """
    seen = {
        (date_key(txn.date), txn.recurring_transaction_id)
        for txn in existing_transactions
        if txn.recurring_transaction_id is not None
    }
    fresh: list[TransactionIn] = []
    for draft in drafts:
        key = (date_key(draft.date), draft.recurring_transaction_id)
        if key in seen:
            continue
        seen.add(key)
        fresh.append(draft)
    return fresh
