from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from sqlalchemy.orm import Session

from config import get_settings
from cycles import resolve_current_cycle_dates
from database import init_db, new_session
from models import Budget, Category, Cycle, MerchantRule, RecurringTransaction, Transaction
from recurrence import describe_schedule
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    BulkCategoryIn,
    CategoryIn,
    CycleIn,
    CycleRolloverIn,
    MerchantRuleIn,
    PaydayIn,
    QuickAddIn,
    RecurringTransactionIn,
    TransactionIn,
    origin_of,
)
from services import (
    BudgetService,
    CategoryService,
    CycleService,
    MerchantRuleService,
    MetricsService,
    PlannedTransactionService,
    QuickAddService,
    RecurringTransactionService,
    SettingsService,
    TransactionService,
)


def get_db():
    db = new_session()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    scheduler_manager.start()
    try:
        yield
    finally:
        scheduler_manager.stop()


app = FastAPI(title="Pay Cycle Budget", lifespan=lifespan)


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if "not found" in str(exc).lower() else 400
    return HTTPException(status_code=status, detail=str(exc))


def cycle_out(cycle: Cycle) -> dict[str, object]:
    return {
        "id": cycle.id,
        "start_date": cycle.start_date.isoformat(),
        "end_date": cycle.end_date.isoformat(),
        "starting_balance_cents": cycle.starting_balance_cents,
        "income_planned_cents": cycle.income_planned_cents,
        "income_actual_cents": cycle.income_actual_cents,
        "target_end_balance_cents": cycle.target_end_balance_cents,
        "status": cycle.status.value,
    }


def category_out(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "icon": category.icon,
        "sort_order": category.sort_order,
    }


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "cycle_id": txn.cycle_id,
        "date": txn.date.isoformat(),
        "description": txn.description,
        "merchant": txn.merchant,
        "amount_cents": txn.amount_cents,
        "category_id": txn.category_id,
        "is_planned": txn.is_planned,
        "origin": origin_of(txn).model_dump(),
        "notes": txn.notes,
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "cycle_id": budget.cycle_id,
        "category_id": budget.category_id,
        "planned_amount_cents": budget.planned_amount_cents,
    }


def recurring_out(template: RecurringTransaction) -> dict[str, object]:
    return {
        "id": template.id,
        "name": template.name,
        "amount_cents": template.amount_cents,
        "category_id": template.category_id,
        "frequency": template.frequency.value,
        "day_of_week": template.day_of_week,
        "day_of_month": template.day_of_month,
        "is_active": template.is_active,
        "notes": template.notes,
        "schedule": describe_schedule(template),
    }


def merchant_rule_out(rule: MerchantRule) -> dict[str, object]:
    return {
        "id": rule.id,
        "merchant_match": rule.merchant_match,
        "default_category_id": rule.default_category_id,
    }


# Cycles


@app.get("/api/cycles")
def list_cycles(db: Session = Depends(get_db)):
    return [cycle_out(c) for c in CycleService(db).list_all()]


@app.get("/api/cycles/current-dates")
def current_cycle_dates(as_of: Optional[datetime] = None):
    now = as_of or datetime.now(timezone.utc)
    dates = resolve_current_cycle_dates(now, get_settings().timezone)
    return {"start_date": dates.start_date, "end_date": dates.end_date}


@app.get("/api/cycles/current")
def current_cycle(db: Session = Depends(get_db)):
    try:
        cycle = CycleService(db).get_open()
    except ValueError as exc:
        raise http_error(exc) from exc
    if cycle is None:
        raise HTTPException(status_code=404, detail="No open cycle")
    return cycle_out(cycle)


@app.post("/api/cycles", status_code=201)
def create_cycle(data: CycleIn, db: Session = Depends(get_db)):
    try:
        return cycle_out(CycleService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/cycles/{cycle_id}")
def update_cycle(cycle_id: int, data: CycleIn, db: Session = Depends(get_db)):
    try:
        return cycle_out(CycleService(db).update(cycle_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/cycles/{cycle_id}/close", status_code=201)
def close_cycle(
    cycle_id: int,
    data: Optional[CycleRolloverIn] = None,
    db: Session = Depends(get_db),
):
    try:
        return cycle_out(CycleService(db).rollover(cycle_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/cycles/{cycle_id}/metrics")
def cycle_metrics(
    cycle_id: int, as_of: Optional[datetime] = None, db: Session = Depends(get_db)
):
    try:
        metrics = MetricsService(db).for_cycle(cycle_id, now=as_of)
    except ValueError as exc:
        raise http_error(exc) from exc
    if metrics is None:
        return {"ready": False}
    return {"ready": True, **metrics.to_dict()}


@app.get("/api/metrics")
def open_cycle_metrics(as_of: Optional[datetime] = None, db: Session = Depends(get_db)):
    try:
        metrics = MetricsService(db).for_open_cycle(now=as_of)
    except ValueError as exc:
        raise http_error(exc) from exc
    if metrics is None:
        return {"ready": False}
    return {"ready": True, **metrics.to_dict()}


@app.get("/api/cycles/{cycle_id}/planned/preview")
def preview_planned(cycle_id: int, db: Session = Depends(get_db)):
    try:
        drafts = PlannedTransactionService(db).preview(cycle_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [draft.model_dump(mode="json") for draft in drafts]


@app.post("/api/cycles/{cycle_id}/planned")
def generate_planned(cycle_id: int, db: Session = Depends(get_db)):
    try:
        created = PlannedTransactionService(db).generate_for_cycle(cycle_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"created": created}


@app.get("/api/cycles/{cycle_id}/transactions")
def list_transactions(
    cycle_id: int, is_planned: Optional[bool] = None, db: Session = Depends(get_db)
):
    try:
        CycleService(db).get(cycle_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    items = TransactionService(db).list_for_cycle(cycle_id, is_planned=is_planned)
    return [transaction_out(t) for t in items]


@app.get("/api/cycles/{cycle_id}/budgets")
def list_budgets(cycle_id: int, db: Session = Depends(get_db)):
    try:
        return [budget_out(b) for b in BudgetService(db).list_for_cycle(cycle_id)]
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/cycles/{cycle_id}/budgets")
def upsert_budget(cycle_id: int, data: BudgetIn, db: Session = Depends(get_db)):
    try:
        return budget_out(BudgetService(db).upsert(cycle_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Categories


@app.get("/api/categories")
def list_categories(db: Session = Depends(get_db)):
    return [category_out(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return category_out(CategoryService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/categories/{category_id}")
def update_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return category_out(CategoryService(db).update(category_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Transactions


@app.post("/api/transactions", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return transaction_out(TransactionService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/transactions/quick-add", status_code=201)
def quick_add_transaction(data: QuickAddIn, db: Session = Depends(get_db)):
    try:
        return transaction_out(QuickAddService(db).add(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/transactions/bulk-category")
def bulk_set_category(data: BulkCategoryIn, db: Session = Depends(get_db)):
    try:
        updated = TransactionService(db).bulk_set_category(
            data.transaction_ids, data.category_id
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"updated": updated}


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        return transaction_out(TransactionService(db).update(transaction_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/transactions/{transaction_id}/paid")
def mark_transaction_paid(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return transaction_out(TransactionService(db).mark_paid(transaction_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Recurring transactions


@app.get("/api/recurring")
def list_recurring(db: Session = Depends(get_db)):
    return [recurring_out(r) for r in RecurringTransactionService(db).list()]


@app.get("/api/recurring/summary")
def recurring_summary(db: Session = Depends(get_db)):
    try:
        cycle = CycleService(db).get_open()
    except ValueError as exc:
        raise http_error(exc) from exc
    if cycle is None:
        raise HTTPException(status_code=404, detail="No open cycle")
    return RecurringTransactionService(db).summary_for_cycle(cycle)


@app.post("/api/recurring", status_code=201)
def create_recurring(data: RecurringTransactionIn, db: Session = Depends(get_db)):
    try:
        return recurring_out(RecurringTransactionService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/recurring/{template_id}")
def update_recurring(
    template_id: int, data: RecurringTransactionIn, db: Session = Depends(get_db)
):
    try:
        return recurring_out(RecurringTransactionService(db).update(template_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/recurring/{template_id}", status_code=204)
def delete_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        RecurringTransactionService(db).delete(template_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurring/{template_id}/occurrences")
def recurring_occurrences(
    template_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    try:
        if start is None or end is None:
            cycle = CycleService(db).get_open()
            if cycle is None:
                raise ValueError("Provide start and end, or open a cycle first")
            start = start or cycle.start_date
            end = end or cycle.end_date
        dates = RecurringTransactionService(db).occurrences(template_id, start, end)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "dates": [d.isoformat() for d in dates],
    }


# Settings and merchant rules


@app.get("/api/settings/payday")
def get_payday(db: Session = Depends(get_db)):
    payday = SettingsService(db).get_payday()
    return {"payday_date": payday.isoformat() if payday else None}


@app.put("/api/settings/payday")
def set_payday(data: PaydayIn, db: Session = Depends(get_db)):
    payday = SettingsService(db).set_payday(data.payday_date)
    return {"payday_date": payday.isoformat() if payday else None}


@app.get("/api/merchant-rules")
def list_merchant_rules(db: Session = Depends(get_db)):
    return [merchant_rule_out(r) for r in MerchantRuleService(db).list_all()]


@app.get("/api/merchant-rules/match")
def match_merchant(merchant: str, db: Session = Depends(get_db)):
    category = MerchantRuleService(db).find_category_for_merchant(merchant)
    return {"category": category_out(category) if category else None}


@app.post("/api/merchant-rules", status_code=201)
def create_merchant_rule(data: MerchantRuleIn, db: Session = Depends(get_db)):
    try:
        return merchant_rule_out(MerchantRuleService(db).create(data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/merchant-rules/{rule_id}", status_code=204)
def delete_merchant_rule(rule_id: int, db: Session = Depends(get_db)):
    try:
        MerchantRuleService(db).delete(rule_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
