import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy.orm import Session

from calendar_rules import parse_month_key
from config import get_settings
from database import SessionLocal, session_scope
from models import Card, Category, FixedBill, InstallmentPlan, Transaction
from periods import resolve_window
from recurrence import RecurrenceMaterializer
from scheduler import SchedulerManager
from schemas import (
    ActiveIn,
    AppSettingsIn,
    CardIn,
    CategoryIn,
    FixedBillIn,
    InstallmentPlanIn,
    StatusIn,
    TransactionEntryIn,
    TransactionIn,
    TransactionPatch,
)
from services import (
    CardService,
    CategoryService,
    FixedBillService,
    InstallmentPlanner,
    LedgerService,
    MonthSummaryService,
    NotFound,
    SettingsService,
    UpcomingDuesService,
    seed_defaults,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="cardcycle")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        seed_defaults(session)
    if get_settings().run_scheduler:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def month_from_path(month: str) -> str:
    try:
        parse_month_key(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return month


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "created_at": _iso(txn.created_at),
        "date": _iso(txn.date),
        "ref_month": txn.ref_month,
        "description": txn.description,
        "category_id": txn.category_id,
        "type": txn.type.value,
        "method": txn.method.value,
        "institution": txn.institution,
        "amount_cents": txn.amount_cents,
        "status": txn.status.value,
        "card_id": txn.card_id,
        "statement_month": txn.statement_month,
        "due_date": _iso(txn.due_date),
        "notes": txn.notes,
        "fixed_bill_id": txn.fixed_bill_id,
        "installment_plan_id": txn.installment_plan_id,
        "installment_index": txn.installment_index,
        "installment_count": txn.installment_count,
        "projected": txn.projected,
    }


def category_to_dict(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name, "kind": category.kind.value}


def card_to_dict(card: Card) -> dict[str, object]:
    return {
        "id": card.id,
        "name": card.name,
        "closing_day": card.closing_day,
        "due_day": card.due_day,
        "due_offset_months": card.due_offset_months,
        "active": card.active,
    }


def bill_to_dict(bill: FixedBill) -> dict[str, object]:
    return {
        "id": bill.id,
        "name": bill.name,
        "category_id": bill.category_id,
        "amount_cents": bill.amount_cents,
        "due_day": bill.due_day,
        "type": bill.type.value,
        "method": bill.method.value,
        "institution": bill.institution,
        "card_id": bill.card_id,
        "active": bill.active,
        "notes": bill.notes,
    }


def plan_to_dict(plan: InstallmentPlan) -> dict[str, object]:
    return {
        "id": plan.id,
        "created_at": _iso(plan.created_at),
        "purchase_date": _iso(plan.purchase_date),
        "description": plan.description,
        "category_id": plan.category_id,
        "card_id": plan.card_id,
        "total_cents": plan.total_cents,
        "installments": plan.installments,
        "mode": plan.mode.value,
    }


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return [category_to_dict(category) for category in CategoryService(db).list_all()]


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return category_to_dict(CategoryService(db).create(data))


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(category_id: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/cards")
def api_cards(active_only: bool = False, db: Session = Depends(get_db)):
    return [card_to_dict(card) for card in CardService(db).list(active_only)]


@app.post("/api/cards", status_code=201)
def api_create_card(data: CardIn, db: Session = Depends(get_db)):
    return card_to_dict(CardService(db).create(data))


@app.put("/api/cards/{card_id}")
def api_update_card(card_id: str, data: CardIn, db: Session = Depends(get_db)):
    try:
        card = CardService(db).update(card_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return card_to_dict(card)


@app.post("/api/cards/{card_id}/active")
def api_card_active(card_id: str, data: ActiveIn, db: Session = Depends(get_db)):
    try:
        card = CardService(db).set_active(card_id, data.active)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return card_to_dict(card)


@app.get("/api/fixed-bills")
def api_fixed_bills(db: Session = Depends(get_db)):
    return [bill_to_dict(bill) for bill in FixedBillService(db).list()]


@app.post("/api/fixed-bills", status_code=201)
def api_create_fixed_bill(data: FixedBillIn, db: Session = Depends(get_db)):
    return bill_to_dict(FixedBillService(db).create(data))


@app.put("/api/fixed-bills/{bill_id}")
def api_update_fixed_bill(
    bill_id: str, data: FixedBillIn, db: Session = Depends(get_db)
):
    try:
        bill = FixedBillService(db).update(bill_id, data)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return bill_to_dict(bill)


@app.post("/api/fixed-bills/{bill_id}/active")
def api_fixed_bill_active(bill_id: str, data: ActiveIn, db: Session = Depends(get_db)):
    try:
        bill = FixedBillService(db).set_active(bill_id, data.active)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return bill_to_dict(bill)


@app.delete("/api/fixed-bills/{bill_id}", status_code=204)
def api_delete_fixed_bill(bill_id: str, db: Session = Depends(get_db)):
    try:
        FixedBillService(db).delete(bill_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/transactions")
def api_transactions(
    month: str, include_projected: bool = True, db: Session = Depends(get_db)
):
    ref_month = month_from_path(month)
    items = LedgerService(db).list_for_month(ref_month, include_projected)
    return {"month": ref_month, "items": [transaction_to_dict(txn) for txn in items]}


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionEntryIn, db: Session = Depends(get_db)):
    draft = TransactionIn(**data.model_dump())
    return transaction_to_dict(LedgerService(db).add_transaction(draft))


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: str, patch: TransactionPatch, db: Session = Depends(get_db)
):
    try:
        txn = LedgerService(db).update_transaction(transaction_id, patch)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_to_dict(txn)


@app.post("/api/transactions/{transaction_id}/status")
def api_transaction_status(
    transaction_id: str, data: StatusIn, db: Session = Depends(get_db)
):
    try:
        txn = LedgerService(db).set_status(transaction_id, data.status)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_to_dict(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    try:
        LedgerService(db).delete_transaction(transaction_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/installment-plans")
def api_installment_plans(db: Session = Depends(get_db)):
    return [plan_to_dict(plan) for plan in InstallmentPlanner(db).list_plans()]


@app.post("/api/installment-plans", status_code=201)
def api_create_installment_plan(
    data: InstallmentPlanIn, db: Session = Depends(get_db)
):
    planner = InstallmentPlanner(db)
    try:
        plan_id = planner.create_plan(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(f"api_installment_plan: plan_id={plan_id}")
    return {
        **plan_to_dict(planner.get_plan(plan_id)),
        "items": [transaction_to_dict(txn) for txn in planner.installments(plan_id)],
    }


@app.delete("/api/installment-plans/{plan_id}")
def api_delete_installment_plan(plan_id: str, db: Session = Depends(get_db)):
    try:
        removed = InstallmentPlanner(db).delete_plan(plan_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted_transactions": removed}


@app.post("/api/months/{month}/ensure")
def api_ensure_month(month: str, db: Session = Depends(get_db)):
    ref_month = month_from_path(month)
    created = RecurrenceMaterializer(db).ensure_month(ref_month)
    return {"month": ref_month, "created": created}


@app.get("/api/months/{month}/summary")
def api_month_summary(
    month: str, include_projected: bool = True, db: Session = Depends(get_db)
):
    ref_month = month_from_path(month)
    summary = MonthSummaryService(db).summary(ref_month, include_projected)
    for card in summary["cards"]:
        card["due_date"] = _iso(card["due_date"])
    return summary


@app.get("/api/dues")
def api_dues(
    start: Optional[str] = None,
    days: Optional[int] = None,
    db: Session = Depends(get_db),
):
    try:
        period = resolve_window(start, days)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    data = UpcomingDuesService(db).upcoming(period)
    return {
        "start": _iso(data["start"]),
        "end": _iso(data["end"]),
        "total_cents": data["total_cents"],
        "items": [transaction_to_dict(txn) for txn in data["items"]],
    }


@app.get("/api/settings")
def api_settings(db: Session = Depends(get_db)):
    settings = SettingsService(db).get()
    return {
        "base_year_for_legacy_sheets": settings.base_year_for_legacy_sheets,
        "currency": settings.currency,
    }


@app.put("/api/settings")
def api_update_settings(data: AppSettingsIn, db: Session = Depends(get_db)):
    settings = SettingsService(db).update(data)
    return {
        "base_year_for_legacy_sheets": settings.base_year_for_legacy_sheets,
        "currency": settings.currency,
    }
