from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from cycles import CycleDates, find_open_cycle, next_cycle_dates
from dates import local_today
from materializer import filter_new_drafts, materialize_planned
from metrics import CycleMetrics, compute_cycle_metrics
from models import (
    Budget,
    Category,
    Cycle,
    CycleStatus,
    MerchantRule,
    RecurringTransaction,
    Transaction,
    TransactionOrigin,
    UserSetting,
)
from recurrence import (
    describe_schedule,
    project_active_templates,
    project_occurrences,
    validate_template,
)
from schemas import (
    BudgetIn,
    CategoryIn,
    CsvOrigin,
    CycleIn,
    CycleRolloverIn,
    MerchantRuleIn,
    QuickAddIn,
    RecurringTransactionIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


class CycleService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Cycle]:
        stmt = (
            select(Cycle)
            .where(Cycle.user_id == self.user_id)
            .order_by(Cycle.start_date.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, cycle_id: int) -> Cycle:
        cycle = self.session.get(Cycle, cycle_id)
        if not cycle or cycle.user_id != self.user_id:
            raise ValueError("Cycle not found")
        return cycle

    def get_open(self) -> Optional[Cycle]:
        return find_open_cycle(self.list_all())

    def create(self, data: CycleIn) -> Cycle:
        if self.get_open() is not None:
            raise ValueError("An open cycle already exists")
        cycle = Cycle(
            user_id=self.user_id,
            start_date=data.start_date,
            end_date=data.end_date,
            starting_balance_cents=data.starting_balance_cents,
            income_planned_cents=data.income_planned_cents,
            income_actual_cents=data.income_actual_cents,
            target_end_balance_cents=data.target_end_balance_cents,
            status=CycleStatus.open,
        )
        self.session.add(cycle)
        self.session.commit()
        self.session.refresh(cycle)
        return cycle

    def update(self, cycle_id: int, data: CycleIn) -> Cycle:
        cycle = self.get(cycle_id)
        for field, value in data.model_dump().items():
            setattr(cycle, field, value)
        self.session.commit()
        self.session.refresh(cycle)
        return cycle

    def rollover(
        self,
        cycle_id: int,
        data: Optional[CycleRolloverIn] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Cycle:
        """Close ``cycle_id`` and open the cycle that follows it.

        Unset values carry over: the new starting balance is the closing
        cycle's current balance, income and target repeat.
        """
        data = data or CycleRolloverIn()
        cycle = self.get(cycle_id)
        if cycle.status != CycleStatus.open:
            raise ValueError("Only the open cycle can be rolled over")

        starting_balance = data.starting_balance_cents
        if starting_balance is None:
            metrics = MetricsService(self.session, self.user_id).for_cycle(
                cycle.id, now=now
            )
            starting_balance = (
                metrics.current_balance_cents
                if metrics is not None
                else cycle.starting_balance_cents
            )
        dates: CycleDates = next_cycle_dates(cycle.end_date)

        cycle.status = CycleStatus.closed
        self.session.flush()
        new_cycle = Cycle(
            user_id=self.user_id,
            start_date=dates.start,
            end_date=dates.end,
            starting_balance_cents=starting_balance,
            income_planned_cents=(
                data.income_planned_cents
                if data.income_planned_cents is not None
                else cycle.income_planned_cents
            ),
            income_actual_cents=None,
            target_end_balance_cents=(
                data.target_end_balance_cents
                if data.target_end_balance_cents is not None
                else cycle.target_end_balance_cents
            ),
            status=CycleStatus.open,
        )
        self.session.add(new_cycle)
        self.session.commit()
        self.session.refresh(new_cycle)
        logger.info(
            "cycle_rollover: closed=%s opened=%s start=%s end=%s",
            cycle.id,
            new_cycle.id,
            dates.start_date,
            dates.end_date,
        )
        return new_cycle


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.sort_order, Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def _find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Category:
        if self._find_by_name(data.name):
            raise ValueError("Category with this name already exists")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            sort_order=data.sort_order,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        existing = self._find_by_name(data.name)
        if existing and existing.id != category.id:
            raise ValueError("Category with this name already exists")
        category.name = data.name.strip()
        category.type = data.type
        category.icon = data.icon
        category.sort_order = data.sort_order
        self.session.commit()
        self.session.refresh(category)
        return category

    def is_referenced(self, category_id: int) -> bool:
        checks = (
            select(Transaction.id).where(Transaction.category_id == category_id),
            select(Budget.id).where(Budget.category_id == category_id),
            select(MerchantRule.id).where(
                MerchantRule.default_category_id == category_id
            ),
            select(RecurringTransaction.id).where(
                RecurringTransaction.category_id == category_id
            ),
        )
        return any(
            self.session.execute(stmt.limit(1)).scalar_one_or_none() is not None
            for stmt in checks
        )

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if self.is_referenced(category.id):
            raise ValueError("Category is in use and cannot be deleted")
        self.session.delete(category)
        self.session.commit()


class MerchantRuleService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[MerchantRule]:
        stmt = (
            select(MerchantRule)
            .options(joinedload(MerchantRule.default_category))
            .where(MerchantRule.user_id == self.user_id)
            .order_by(MerchantRule.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: MerchantRuleIn) -> MerchantRule:
        CategoryService(self.session, self.user_id).get(data.default_category_id)
        match = data.merchant_match.strip()
        existing = self.session.scalar(
            select(MerchantRule).where(
                MerchantRule.user_id == self.user_id,
                func.lower(MerchantRule.merchant_match) == match.lower(),
            )
        )
        if existing:
            raise ValueError("A rule for this merchant already exists")
        rule = MerchantRule(
            user_id=self.user_id,
            merchant_match=match,
            default_category_id=data.default_category_id,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.session.get(MerchantRule, rule_id)
        if not rule or rule.user_id != self.user_id:
            raise ValueError("Merchant rule not found")
        self.session.delete(rule)
        self.session.commit()

    def find_category_for_merchant(self, merchant: str) -> Optional[Category]:
        needle = (merchant or "").strip().lower()
        if not needle:
            return None
        for rule in self.list_all():
            if rule.merchant_match.lower() in needle:
                return rule.default_category
        return None

    def apply(self, txn: Transaction) -> bool:
        if txn.category_id is not None:
            return False
        category = self.find_category_for_merchant(txn.merchant or txn.description)
        if category is None:
            return False
        txn.category_id = category.id
        return True


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_for_cycle(
        self, cycle_id: int, *, is_planned: Optional[bool] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.cycle_id == cycle_id,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if is_planned is not None:
            stmt = stmt.where(Transaction.is_planned.is_(is_planned))
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        return txn

    def _check_references(self, data: TransactionIn) -> None:
        CycleService(self.session, self.user_id).get(data.cycle_id)
        if data.category_id is not None:
            CategoryService(self.session, self.user_id).get(data.category_id)
        if data.recurring_transaction_id is not None:
            RecurringTransactionService(self.session, self.user_id).get(
                data.recurring_transaction_id
            )

    def _check_occurrence_free(
        self,
        recurring_transaction_id: Optional[int],
        day: date,
        exclude_id: Optional[int] = None,
    ) -> None:
        if recurring_transaction_id is None:
            return
        stmt = select(Transaction.id).where(
            Transaction.user_id == self.user_id,
            Transaction.recurring_transaction_id == recurring_transaction_id,
            Transaction.date == day,
        )
        if exclude_id is not None:
            stmt = stmt.where(Transaction.id != exclude_id)
        if self.session.execute(stmt.limit(1)).scalar_one_or_none() is not None:
            raise ValueError("This recurring occurrence already exists")

    def _build(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            cycle_id=data.cycle_id,
            date=data.date,
            description=data.description.strip(),
            merchant=data.merchant,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            is_planned=data.is_planned,
            origin=TransactionOrigin(data.origin.kind),
            import_hash=(
                data.origin.import_hash if isinstance(data.origin, CsvOrigin) else None
            ),
            recurring_transaction_id=data.recurring_transaction_id,
            notes=data.notes,
        )
        MerchantRuleService(self.session, self.user_id).apply(txn)
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._check_references(data)
        self._check_occurrence_free(data.recurring_transaction_id, data.date)
        txn = self._build(data)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def create_many(self, drafts: list[TransactionIn]) -> list[Transaction]:
        created: list[Transaction] = []
        for data in drafts:
            self._check_references(data)
            txn = self._build(data)
            self.session.add(txn)
            created.append(txn)
        self.session.commit()
        return created

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_references(data)
        self._check_occurrence_free(
            txn.recurring_transaction_id, data.date, exclude_id=txn.id
        )
        txn.cycle_id = data.cycle_id
        txn.date = data.date
        txn.description = data.description.strip()
        txn.merchant = data.merchant
        txn.amount_cents = data.amount_cents
        txn.category_id = data.category_id
        txn.is_planned = data.is_planned
        txn.notes = data.notes
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def mark_paid(self, transaction_id: int) -> Transaction:
        txn = self.get(transaction_id)
        txn.is_planned = False
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def bulk_set_category(
        self, transaction_ids: list[int], category_id: Optional[int]
    ) -> int:
        if category_id is not None:
            CategoryService(self.session, self.user_id).get(category_id)
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.id.in_(transaction_ids),
            )
            .values(category_id=category_id)
        )
        self.session.commit()
        return result.rowcount or 0

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class QuickAddCategoryNotFound(ValueError):
    pass


class QuickAddCategoryAmbiguous(ValueError):
    pass


class QuickAddService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _resolve_category(self, raw: str) -> Category:
        input_lower = raw.strip().lower()
        categories = CategoryService(self.session, self.user_id).list_all()
        for category in categories:
            if category.name.lower() == input_lower:
                return category

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is None or best_distance > 1:
            raise QuickAddCategoryNotFound(f"Category '{raw.strip()}' not found")
        if len(best) > 1:
            options = ", ".join(sorted(c.name for c in best))
            raise QuickAddCategoryAmbiguous(
                f"Category '{raw.strip()}' is ambiguous; matches: {options}"
            )
        return best[0]

    def add(self, data: QuickAddIn, *, now: Optional[datetime] = None) -> Transaction:
        cycle = CycleService(self.session, self.user_id).get_open()
        if cycle is None:
            raise ValueError("No open cycle to add the transaction to")
        txn_date = data.date or local_today(get_settings().timezone, now)

        category_id: Optional[int] = None
        if data.category and data.category.strip():
            category_id = self._resolve_category(data.category).id

        amount = data.amount_cents if data.is_income else -data.amount_cents
        return TransactionService(self.session, self.user_id).create(
            TransactionIn(
                cycle_id=cycle.id,
                date=txn_date,
                description=data.description,
                merchant=data.merchant,
                amount_cents=amount,
                category_id=category_id,
            )
        )


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_for_cycle(self, cycle_id: int) -> list[Budget]:
        CycleService(self.session, self.user_id).get(cycle_id)
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.cycle_id == cycle_id)
            .order_by(Budget.id)
        )
        return self.session.scalars(stmt).all()

    def upsert(self, cycle_id: int, data: BudgetIn) -> Budget:
        CycleService(self.session, self.user_id).get(cycle_id)
        CategoryService(self.session, self.user_id).get(data.category_id)
        existing = self.session.scalar(
            select(Budget).where(
                Budget.cycle_id == cycle_id,
                Budget.category_id == data.category_id,
            )
        )
        if existing:
            existing.planned_amount_cents = data.planned_amount_cents
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            cycle_id=cycle_id,
            category_id=data.category_id,
            planned_amount_cents=data.planned_amount_cents,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.cycle.user_id != self.user_id:
            raise ValueError("Budget not found")
        self.session.delete(budget)
        self.session.commit()


class SettingsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _row(self) -> Optional[UserSetting]:
        return self.session.scalar(
            select(UserSetting).where(UserSetting.user_id == self.user_id)
        )

    def get_payday(self) -> Optional[date]:
        row = self._row()
        return row.payday_date if row else None

    def set_payday(self, payday_date: Optional[date]) -> Optional[date]:
        row = self._row()
        if row is None:
            row = UserSetting(user_id=self.user_id)
            self.session.add(row)
        row.payday_date = payday_date
        self.session.commit()
        return row.payday_date


class RecurringTransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, template_id: int) -> RecurringTransaction:
        template = self.session.get(RecurringTransaction, template_id)
        if not template or template.user_id != self.user_id:
            raise ValueError("Recurring transaction not found")
        return template

    def list(self, *, active_only: bool = False) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.category))
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.name)
        )
        if active_only:
            stmt = stmt.where(RecurringTransaction.is_active.is_(True))
        return self.session.scalars(stmt).all()

    def _check(self, data: RecurringTransactionIn) -> None:
        validate_template(data)
        if data.category_id is not None:
            CategoryService(self.session, self.user_id).get(data.category_id)

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        self._check(data)
        template = RecurringTransaction(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=abs(data.amount_cents),
            category_id=data.category_id,
            frequency=data.frequency,
            day_of_week=data.day_of_week,
            day_of_month=data.day_of_month,
            is_active=data.is_active,
            notes=data.notes,
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def update(
        self, template_id: int, data: RecurringTransactionIn
    ) -> RecurringTransaction:
        template = self.get(template_id)
        self._check(data)
        for field, value in data.model_dump().items():
            setattr(template, field, value)
        template.name = data.name.strip()
        template.amount_cents = abs(data.amount_cents)
        self.session.commit()
        self.session.refresh(template)
        return template

    def set_active(self, template_id: int, is_active: bool) -> None:
        template = self.get(template_id)
        template.is_active = is_active
        self.session.commit()

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        # Generated rows stay; they just stop pointing at the template.
        self.session.execute(
            update(Transaction)
            .where(Transaction.recurring_transaction_id == template.id)
            .values(origin=TransactionOrigin.manual, recurring_transaction_id=None)
        )
        self.session.delete(template)
        self.session.commit()

    def occurrences(
        self, template_id: int, range_start: date, range_end: date
    ) -> list[date]:
        template = self.get(template_id)
        payday = SettingsService(self.session, self.user_id).get_payday()
        return project_occurrences(template, range_start, range_end, payday)

    def summary_for_cycle(self, cycle: Cycle) -> dict[str, object]:
        payday = SettingsService(self.session, self.user_id).get_payday()
        items = []
        total = 0
        for template, dates in project_active_templates(
            self.list(), cycle.start_date, cycle.end_date, payday
        ):
            subtotal = len(dates) * abs(template.amount_cents)
            total += subtotal
            items.append(
                {
                    "id": template.id,
                    "name": template.name,
                    "schedule": describe_schedule(template),
                    "occurrences": [d.isoformat() for d in dates],
                    "amount_cents": template.amount_cents,
                    "total_cents": subtotal,
                }
            )
        return {
            "cycle_id": cycle.id,
            "active_count": len(items),
            "total_per_cycle_cents": total,
            "items": items,
        }


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = get_settings()

    def for_cycle(
        self, cycle_id: int, *, now: Optional[datetime] = None
    ) -> Optional[CycleMetrics]:
        cycle = CycleService(self.session, self.user_id).get(cycle_id)
        return compute_cycle_metrics(
            cycle,
            TransactionService(self.session, self.user_id).list_for_cycle(cycle.id),
            BudgetService(self.session, self.user_id).list_for_cycle(cycle.id),
            CategoryService(self.session, self.user_id).list_all(),
            RecurringTransactionService(self.session, self.user_id).list(),
            SettingsService(self.session, self.user_id).get_payday(),
            now=now,
            timezone=self.settings.timezone,
        )

    def for_open_cycle(
        self, *, now: Optional[datetime] = None
    ) -> Optional[CycleMetrics]:
        cycle = CycleService(self.session, self.user_id).get_open()
        if cycle is None:
            return None
        return self.for_cycle(cycle.id, now=now)


class PlannedTransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def preview(self, cycle_id: int) -> list[TransactionIn]:
        cycle = CycleService(self.session, self.user_id).get(cycle_id)
        drafts = materialize_planned(
            RecurringTransactionService(self.session, self.user_id).list(),
            cycle,
            SettingsService(self.session, self.user_id).get_payday(),
        )
        existing = TransactionService(self.session, self.user_id).list_for_cycle(
            cycle.id
        )
        return filter_new_drafts(drafts, existing)

    def generate_for_cycle(self, cycle_id: int) -> int:
        drafts = self.preview(cycle_id)
        if not drafts:
            logger.info("planned_generate: cycle=%s created=0", cycle_id)
            return 0
        TransactionService(self.session, self.user_id).create_many(drafts)
        logger.info("planned_generate: cycle=%s created=%d", cycle_id, len(drafts))
        return len(drafts)

    def auto_convert_due(self, today: Optional[date] = None) -> int:
        """Mark every planned transaction dated on or before ``today`` as paid."""
        today = today or local_today(get_settings().timezone)
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.is_planned.is_(True),
            Transaction.date <= today,
        )
        due = self.session.scalars(stmt).all()
        for txn in due:
            txn.is_planned = False
        self.session.commit()
        if due:
            logger.info(
                "planned_auto_convert: converted=%d transactions=%s",
                len(due),
                ", ".join(f"{t.description} ({t.date.isoformat()})" for t in due),
            )
        return len(due)
