from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from calendar_rules import (
    due_date as compute_due_date,
    month_key,
    parse_month_key,
    shift_date_months,
    statement_month as compute_statement_month,
)
from models import (
    AppSettings,
    Card,
    Category,
    CategoryKind,
    FixedBill,
    InstallmentMode,
    InstallmentPlan,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from periods import Period
from recurrence import RecurrenceMaterializer
from schemas import (
    AppSettingsIn,
    CardIn,
    CategoryIn,
    FixedBillIn,
    InstallmentPlanIn,
    TransactionIn,
    TransactionPatch,
)

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]
Clock = Callable[[], datetime]

MAX_CATEGORY_SLICES = 8

REQUIRED_TRANSACTION_FIELDS = frozenset(
    {"date", "description", "type", "method", "amount_cents", "status"}
)


def new_id() -> str:
    return uuid.uuid4().hex


class NotFound(ValueError):
    pass


class TransactionNotFound(NotFound):
    pass


class CategoryNotFound(NotFound):
    pass


class CardNotFound(NotFound):
    pass


class FixedBillNotFound(NotFound):
    pass


class InstallmentPlanNotFound(NotFound):
    pass


@dataclass(frozen=True)
class CycleFields:
    statement_month: Optional[str]
    due_date: Optional[date]
    ref_month: str


def derive_cycle_fields(
    txn_date: date,
    method: PaymentMethod,
    card: Optional[Card],
    *,
    ref_month: Optional[str] = None,
    due_date: Optional[date] = None,
) -> CycleFields:
    """Statement month, due date and accounting month for one transaction.

    Card transactions with a known card follow the card's cycle and always get
    a computed due date. Anything else (including a card transaction whose card
    is gone) is attributed to the month of its date and keeps the due date the
    caller passed in. An explicit ``ref_month`` always wins.
    """
    if method == PaymentMethod.card and card is not None:
        statement = compute_statement_month(txn_date, card.closing_day)
        due = compute_due_date(statement, card.due_day, card.due_offset_months)
        return CycleFields(statement, due, ref_month or statement)
    return CycleFields(None, due_date, ref_month or month_key(txn_date))


def split_amount(total_cents: int, installments: int) -> list[int]:
    """Evenly split ``total_cents``; the last installment absorbs rounding.

    The per-installment amount is rounded half-up. When that would leave the
    last installment at zero or below, as with ``(6, 4)``, the amount is
    floored instead so the last one takes the whole remainder: ``[1, 1, 1, 3]``.
    Raises ``ValueError`` only when ``total_cents < installments``.
    """
    if installments < 1:
        raise ValueError("At least one installment is required")
    per = int(
        (Decimal(total_cents) / Decimal(installments)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )
    last = total_cents - per * (installments - 1)
    if last <= 0:
        per = total_cents // installments
        last = total_cents - per * (installments - 1)
    if per <= 0 or last <= 0:
        raise ValueError(
            f"Cannot split {total_cents} cents into {installments} positive installments"
        )
    return [per] * (installments - 1) + [last]


class CategoryService:
    def __init__(self, session: Session, id_factory: Optional[IdFactory] = None) -> None:
        self.session = session
        self.id_factory = id_factory or new_id

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise CategoryNotFound("Category not found")
        return category

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def create(self, data: CategoryIn) -> Category:
        category = Category(id=self.id_factory(), name=data.name.strip(), kind=data.kind)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: str) -> None:
        # Transactions and bills keep the dangling id; summaries show the raw id.
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()


class CardService:
    def __init__(self, session: Session, id_factory: Optional[IdFactory] = None) -> None:
        self.session = session
        self.id_factory = id_factory or new_id

    def get(self, card_id: str) -> Card:
        card = self.session.get(Card, card_id)
        if not card:
            raise CardNotFound("Card not found")
        return card

    def list(self, active_only: bool = False) -> list[Card]:
        stmt = select(Card).order_by(Card.name, Card.id)
        if active_only:
            stmt = stmt.where(Card.active.is_(True))
        return self.session.scalars(stmt).all()

    def create(self, data: CardIn) -> Card:
        card = Card(id=self.id_factory(), **data.model_dump())
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, card_id: str, data: CardIn) -> Card:
        card = self.get(card_id)
        for field, value in data.model_dump().items():
            setattr(card, field, value)
        self.session.commit()
        self.session.refresh(card)
        return card

    def set_active(self, card_id: str, active: bool) -> Card:
        card = self.get(card_id)
        card.active = active
        self.session.commit()
        return card


class FixedBillService:
    def __init__(
        self,
        session: Session,
        id_factory: Optional[IdFactory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.id_factory = id_factory or new_id
        self.clock = clock or datetime.utcnow

    def get(self, bill_id: str) -> FixedBill:
        bill = self.session.get(FixedBill, bill_id)
        if not bill:
            raise FixedBillNotFound("Fixed bill not found")
        return bill

    def list(self, active_only: bool = False) -> list[FixedBill]:
        stmt = select(FixedBill).order_by(FixedBill.due_day, FixedBill.name)
        if active_only:
            stmt = stmt.where(FixedBill.active.is_(True))
        return self.session.scalars(stmt).all()

    def create(self, data: FixedBillIn) -> FixedBill:
        bill = FixedBill(id=self.id_factory(), created_at=self.clock(), **data.model_dump())
        self.session.add(bill)
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def update(self, bill_id: str, data: FixedBillIn) -> FixedBill:
        bill = self.get(bill_id)
        for field, value in data.model_dump().items():
            setattr(bill, field, value)
        self.session.commit()
        self.session.refresh(bill)
        return bill

    def set_active(self, bill_id: str, active: bool) -> FixedBill:
        bill = self.get(bill_id)
        bill.active = active
        self.session.commit()
        return bill

    def delete(self, bill_id: str) -> None:
        # Materialized transactions keep their fixed_bill_id as a dangling
        # reference; they are ledger history now.
        bill = self.get(bill_id)
        self.session.delete(bill)
        self.session.commit()


class SettingsService:
    SETTINGS_ID = "settings"

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self) -> AppSettings:
        settings = self.session.get(AppSettings, self.SETTINGS_ID)
        if settings is None:
            settings = AppSettings(
                id=self.SETTINGS_ID, base_year_for_legacy_sheets=2024, currency="BRL"
            )
            self.session.add(settings)
            self.session.commit()
        return settings

    def update(self, data: AppSettingsIn) -> AppSettings:
        settings = self.get()
        settings.base_year_for_legacy_sheets = data.base_year_for_legacy_sheets
        settings.currency = data.currency.upper()
        self.session.commit()
        return settings


class LedgerService:
    def __init__(
        self,
        session: Session,
        id_factory: Optional[IdFactory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.id_factory = id_factory or new_id
        self.clock = clock or datetime.utcnow

    def _resolve_card(
        self, method: PaymentMethod, card_id: Optional[str]
    ) -> Optional[Card]:
        if method != PaymentMethod.card or not card_id:
            return None
        card = self.session.get(Card, card_id)
        if card is None:
            logger.info(f"ledger_card_missing: card_id={card_id} cycle=skipped")
        return card

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def list_for_month(
        self, ref_month: str, include_projected: bool = True
    ) -> list[Transaction]:
        parse_month_key(ref_month)
        stmt = (
            select(Transaction)
            .where(Transaction.ref_month == ref_month)
            .order_by(Transaction.date, Transaction.created_at, Transaction.id)
        )
        if not include_projected:
            stmt = stmt.where(Transaction.projected.is_(False))
        return self.session.scalars(stmt).all()

    def add_transaction(self, data: TransactionIn, *, commit: bool = True) -> Transaction:
        card = self._resolve_card(data.method, data.card_id)
        fields = derive_cycle_fields(
            data.date,
            data.method,
            card,
            ref_month=data.ref_month,
            due_date=data.due_date,
        )
        txn = Transaction(
            id=self.id_factory(),
            created_at=self.clock(),
            **data.model_dump(exclude={"ref_month", "due_date"}),
            ref_month=fields.ref_month,
            statement_month=fields.statement_month,
            due_date=fields.due_date,
        )
        self.session.add(txn)
        self.session.flush()
        if commit:
            self.session.commit()
        return txn

    def update_transaction(
        self, transaction_id: str, patch: TransactionPatch, *, commit: bool = True
    ) -> Transaction:
        txn = self.get(transaction_id)
        changes = patch.model_dump(exclude_unset=True)
        had_card_cycle = txn.statement_month is not None

        for field, value in changes.items():
            if field in ("ref_month", "due_date"):
                continue
            if value is None and field in REQUIRED_TRANSACTION_FIELDS:
                continue
            setattr(txn, field, value)

        if "due_date" in changes:
            due = changes["due_date"]
        elif had_card_cycle:
            # A due date computed from a card cycle must not survive a switch
            # away from that card.
            due = None
        else:
            due = txn.due_date

        card = self._resolve_card(txn.method, txn.card_id)
        fields = derive_cycle_fields(
            txn.date,
            txn.method,
            card,
            ref_month=changes.get("ref_month"),
            due_date=due,
        )
        txn.statement_month = fields.statement_month
        txn.due_date = fields.due_date
        txn.ref_month = fields.ref_month
        self.session.flush()
        if commit:
            self.session.commit()
        return txn

    def set_status(
        self, transaction_id: str, status: TransactionStatus, *, commit: bool = True
    ) -> Transaction:
        txn = self.get(transaction_id)
        txn.status = status
        if commit:
            self.session.commit()
        return txn

    def delete_transaction(self, transaction_id: str, *, commit: bool = True) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        if commit:
            self.session.commit()


class InstallmentPlanner:
    def __init__(
        self,
        session: Session,
        id_factory: Optional[IdFactory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.id_factory = id_factory or new_id
        self.clock = clock or datetime.utcnow
        self.ledger = LedgerService(session, self.id_factory, self.clock)

    def get_plan(self, plan_id: str) -> InstallmentPlan:
        plan = self.session.get(InstallmentPlan, plan_id)
        if not plan:
            raise InstallmentPlanNotFound("Installment plan not found")
        return plan

    def list_plans(self) -> list[InstallmentPlan]:
        stmt = select(InstallmentPlan).order_by(
            InstallmentPlan.created_at.desc(), InstallmentPlan.id
        )
        return self.session.scalars(stmt).all()

    def installments(self, plan_id: str) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.installment_plan_id == plan_id)
            .order_by(Transaction.installment_index)
        )
        return self.session.scalars(stmt).all()

    def create_plan(self, data: InstallmentPlanIn) -> str:
        """Persist the plan and all of its installments, or nothing at all."""
        amounts = split_amount(data.total_cents, data.installments)
        try:
            plan = InstallmentPlan(
                id=self.id_factory(),
                created_at=self.clock(),
                purchase_date=data.purchase_date,
                description=data.description,
                category_id=data.category_id,
                card_id=data.card_id,
                total_cents=data.total_cents,
                installments=data.installments,
                mode=data.mode,
            )
            self.session.add(plan)
            self.session.flush()

            if data.mode == InstallmentMode.materialize:
                self._materialize(plan, amounts)
            else:
                self._project(plan, amounts)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"installment_plan_created: plan_id={plan.id} mode={plan.mode.value} "
            f"installments={plan.installments} total_cents={plan.total_cents}"
        )
        return plan.id

    def _materialize(self, plan: InstallmentPlan, amounts: list[int]) -> None:
        count = len(amounts)
        for index, amount in enumerate(amounts, start=1):
            self.ledger.add_transaction(
                TransactionIn(
                    date=shift_date_months(plan.purchase_date, index - 1),
                    description=f"{plan.description} ({index}/{count})",
                    category_id=plan.category_id,
                    type=TransactionType.expense,
                    method=PaymentMethod.card,
                    amount_cents=amount,
                    status=TransactionStatus.pending,
                    card_id=plan.card_id,
                    installment_plan_id=plan.id,
                    installment_index=index,
                    installment_count=count,
                    projected=False,
                ),
                commit=False,
            )

    def _project(self, plan: InstallmentPlan, amounts: list[int]) -> None:
        # Projected rows skip the ledger's override handling: their cycle is
        # always the card's, falling back to the calendar month without a card.
        card = self.session.get(Card, plan.card_id)
        count = len(amounts)
        for index, amount in enumerate(amounts, start=1):
            installment_date = shift_date_months(plan.purchase_date, index - 1)
            if card is not None:
                statement = compute_statement_month(installment_date, card.closing_day)
                due = compute_due_date(statement, card.due_day, card.due_offset_months)
            else:
                statement = month_key(installment_date)
                due = None
            self.session.add(
                Transaction(
                    id=self.id_factory(),
                    created_at=self.clock(),
                    date=installment_date,
                    ref_month=statement,
                    description=f"{plan.description} (proj. {index}/{count})",
                    category_id=plan.category_id,
                    type=TransactionType.expense,
                    method=PaymentMethod.card,
                    amount_cents=amount,
                    status=TransactionStatus.pending,
                    card_id=plan.card_id,
                    statement_month=statement,
                    due_date=due,
                    installment_plan_id=plan.id,
                    installment_index=index,
                    installment_count=count,
                    projected=True,
                )
            )
        self.session.flush()

    def delete_plan(self, plan_id: str) -> int:
        plan = self.get_plan(plan_id)
        result = self.session.execute(
            delete(Transaction).where(Transaction.installment_plan_id == plan.id)
        )
        self.session.delete(plan)
        self.session.commit()
        return result.rowcount or 0


class MonthSummaryService:
    def __init__(
        self,
        session: Session,
        id_factory: Optional[IdFactory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.session = session
        self.id_factory = id_factory or new_id
        self.clock = clock or datetime.utcnow

    def summary(self, ref_month: str, include_projected: bool = True) -> dict[str, object]:
        RecurrenceMaterializer(self.session, self.id_factory, self.clock).ensure_month(
            ref_month
        )
        txns = LedgerService(self.session).list_for_month(ref_month, include_projected)

        income = 0
        expenses = 0
        by_category: dict[Optional[str], int] = {}
        for txn in txns:
            if txn.type == TransactionType.income:
                income += txn.amount_cents
            elif txn.type == TransactionType.expense:
                expenses += txn.amount_cents
                by_category[txn.category_id] = (
                    by_category.get(txn.category_id, 0) + txn.amount_cents
                )

        names = {
            category.id: category.name
            for category in self.session.scalars(select(Category)).all()
        }
        slices = sorted(
            (
                {
                    "name": names.get(cat_id, cat_id) if cat_id else "Uncategorized",
                    "amount_cents": amount,
                }
                for cat_id, amount in by_category.items()
            ),
            key=lambda item: item["amount_cents"],
            reverse=True,
        )
        if len(slices) > MAX_CATEGORY_SLICES:
            head = slices[: MAX_CATEGORY_SLICES - 1]
            tail = slices[MAX_CATEGORY_SLICES - 1 :]
            others = sum(item["amount_cents"] for item in tail)
            slices = head + [{"name": "Others", "amount_cents": others}]

        cards = []
        for card in CardService(self.session).list(active_only=True):
            card_txns = [
                txn
                for txn in txns
                if txn.method == PaymentMethod.card and txn.card_id == card.id
            ]
            total = sum(
                txn.amount_cents
                for txn in card_txns
                if txn.type == TransactionType.expense
            )
            due = next((txn.due_date for txn in card_txns if txn.due_date), None)
            cards.append(
                {
                    "card_id": card.id,
                    "name": card.name,
                    "closing_day": card.closing_day,
                    "due_day": card.due_day,
                    "statement_total_cents": total,
                    "due_date": due,
                }
            )

        return {
            "month": ref_month,
            "income_cents": income,
            "expense_cents": expenses,
            "balance_cents": income - expenses,
            "categories": slices,
            "cards": cards,
        }


class UpcomingDuesService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upcoming(self, period: Period) -> dict[str, object]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.due_date.is_not(None),
                Transaction.due_date.between(period.start, period.end),
                Transaction.type == TransactionType.expense,
            )
            .order_by(Transaction.due_date, Transaction.id)
        )
        items = self.session.scalars(stmt).all()
        return {
            "start": period.start,
            "end": period.end,
            "items": items,
            "total_cents": sum(txn.amount_cents for txn in items),
        }


DEFAULT_CATEGORIES = [
    ("cat-housing", "Housing", CategoryKind.expense),
    ("cat-utilities", "Utilities", CategoryKind.expense),
    ("cat-food", "Food", CategoryKind.expense),
    ("cat-transport", "Transport", CategoryKind.expense),
    ("cat-health", "Health", CategoryKind.expense),
    ("cat-leisure", "Leisure", CategoryKind.expense),
    ("cat-education", "Education", CategoryKind.expense),
    ("cat-salary", "Salary", CategoryKind.income),
    ("cat-other", "Other", CategoryKind.both),
]

DEFAULT_BILLS = [
    ("bill-mortgage", "Mortgage", "cat-housing", 340000, 7),
    ("bill-condo", "Condo fee", "cat-housing", 60000, 10),
    ("bill-power", "Electricity", "cat-utilities", 20000, 14),
    ("bill-gas", "Gas", "cat-utilities", 20000, 5),
]


def _table_is_empty(session: Session, model) -> bool:
    return (session.execute(select(func.count()).select_from(model)).scalar_one() or 0) == 0


def seed_defaults(session: Session, clock: Optional[Clock] = None) -> None:
    """Fill empty reference tables with a usable starting configuration."""
    now = (clock or datetime.utcnow)()
    SettingsService(session).get()

    if _table_is_empty(session, Category):
        session.add_all(
            Category(id=cat_id, name=name, kind=kind, created_at=now)
            for cat_id, name, kind in DEFAULT_CATEGORIES
        )
    if _table_is_empty(session, Card):
        session.add(
            Card(
                id="card-default",
                name="Santander",
                closing_day=8,
                due_day=15,
                due_offset_months=1,
                active=True,
                created_at=now,
            )
        )
    if _table_is_empty(session, FixedBill):
        session.add_all(
            FixedBill(
                id=bill_id,
                name=name,
                category_id=category_id,
                amount_cents=amount,
                due_day=due_day,
                type=TransactionType.expense,
                method=PaymentMethod.billet,
                institution="Santander",
                active=True,
                notes="Amount may vary; adjust the month's entry if needed.",
                created_at=now,
            )
            for bill_id, name, category_id, amount, due_day in DEFAULT_BILLS
        )
    session.commit()
    logger.info("seed_defaults: done")
