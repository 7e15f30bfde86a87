from datetime import date

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    AppSettings,
    Card,
    Category,
    CategoryKind,
    FixedBill,
    InstallmentMode,
    PaymentMethod,
    Transaction,
    TransactionType,
)
from periods import Period, resolve_window
from schemas import (
    AppSettingsIn,
    CardIn,
    CategoryIn,
    FixedBillIn,
    InstallmentPlanIn,
    TransactionIn,
)
from services import (
    CardService,
    CategoryService,
    FixedBillService,
    InstallmentPlanner,
    LedgerService,
    MonthSummaryService,
    SettingsService,
    UpcomingDuesService,
    seed_defaults,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def expense(on: date, amount: int, **overrides) -> TransactionIn:
    values = dict(
        date=on,
        description="Expense",
        type=TransactionType.expense,
        method=PaymentMethod.pix,
        amount_cents=amount,
    )
    values.update(overrides)
    return TransactionIn(**values)


def count_rows(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


def test_seed_defaults_is_idempotent() -> None:
    session = make_session()

    seed_defaults(session)
    seed_defaults(session)

    assert count_rows(session, Category) == 9
    assert count_rows(session, Card) == 1
    assert count_rows(session, FixedBill) == 4
    assert count_rows(session, AppSettings) == 1
    card = session.get(Card, "card-default")
    assert (card.closing_day, card.due_day, card.due_offset_months) == (8, 15, 1)


def test_seed_does_not_touch_configured_tables() -> None:
    session = make_session()
    CardService(session).create(CardIn(name="Itau", closing_day=3, due_day=10))

    seed_defaults(session)

    assert [card.name for card in CardService(session).list()] == ["Itau"]


def test_settings_default_and_update() -> None:
    session = make_session()
    service = SettingsService(session)

    assert service.get().currency == "BRL"
    assert service.get().base_year_for_legacy_sheets == 2024

    updated = service.update(
        AppSettingsIn(base_year_for_legacy_sheets=2023, currency="brl")
    )
    assert updated.base_year_for_legacy_sheets == 2023
    assert updated.currency == "BRL"


def test_summary_materializes_bills_before_aggregating() -> None:
    session = make_session()
    food = CategoryService(session).create(
        CategoryIn(name="Food", kind=CategoryKind.expense)
    )
    bill = FixedBillService(session).create(
        FixedBillIn(name="Power", amount_cents=20_000, due_day=14)
    )
    ledger = LedgerService(session)
    ledger.add_transaction(
        TransactionIn(
            date=date(2025, 3, 5),
            description="Salary",
            type=TransactionType.income,
            method=PaymentMethod.wire,
            amount_cents=500_000,
        )
    )
    ledger.add_transaction(expense(date(2025, 3, 6), 15_000, category_id=food.id))

    summary = MonthSummaryService(session).summary("2025-03")

    assert summary["income_cents"] == 500_000
    assert summary["expense_cents"] == 35_000
    assert summary["balance_cents"] == 465_000
    assert summary["categories"] == [
        {"name": "Uncategorized", "amount_cents": 20_000},
        {"name": "Food", "amount_cents": 15_000},
    ]
    rows = session.scalars(
        select(Transaction).where(Transaction.fixed_bill_id == bill.id)
    ).all()
    assert len(rows) == 1

    MonthSummaryService(session).summary("2025-03")
    assert count_rows(session, Transaction) == 3


def test_summary_card_totals_and_projected_toggle() -> None:
    session = make_session()
    card = CardService(session).create(
        CardIn(name="Santander", closing_day=8, due_day=15, due_offset_months=1)
    )
    LedgerService(session).add_transaction(
        expense(date(2025, 2, 20), 10_000, method=PaymentMethod.card, card_id=card.id)
    )
    InstallmentPlanner(session).create_plan(
        InstallmentPlanIn(
            purchase_date=date(2025, 2, 20),
            description="Phone",
            card_id=card.id,
            total_cents=30_000,
            installments=3,
            mode=InstallmentMode.project,
        )
    )

    with_projected = MonthSummaryService(session).summary("2025-03")
    (card_total,) = with_projected["cards"]
    assert card_total["statement_total_cents"] == 20_000
    assert card_total["due_date"] == date(2025, 4, 15)
    assert with_projected["expense_cents"] == 20_000

    without_projected = MonthSummaryService(session).summary(
        "2025-03", include_projected=False
    )
    assert without_projected["expense_cents"] == 10_000
    assert without_projected["cards"][0]["statement_total_cents"] == 10_000


def test_summary_folds_small_categories_into_others() -> None:
    session = make_session()
    ledger = LedgerService(session)
    for index in range(10):
        ledger.add_transaction(
            expense(date(2025, 5, 1), 1_000 * (index + 1), category_id=f"cat-{index}")
        )

    categories = MonthSummaryService(session).summary("2025-05")["categories"]

    assert len(categories) == 8
    assert categories[0] == {"name": "cat-9", "amount_cents": 10_000}
    assert categories[-1] == {"name": "Others", "amount_cents": 1_000 + 2_000 + 3_000}


def test_upcoming_dues_window() -> None:
    session = make_session()
    ledger = LedgerService(session)
    ledger.add_transaction(expense(date(2025, 3, 1), 100, due_date=date(2025, 3, 10)))
    ledger.add_transaction(expense(date(2025, 3, 1), 200, due_date=date(2025, 3, 24)))
    ledger.add_transaction(expense(date(2025, 3, 1), 400, due_date=date(2025, 3, 25)))
    ledger.add_transaction(
        TransactionIn(
            date=date(2025, 3, 1),
            description="Refund",
            type=TransactionType.income,
            method=PaymentMethod.pix,
            amount_cents=800,
            due_date=date(2025, 3, 12),
        )
    )

    data = UpcomingDuesService(session).upcoming(
        Period("window", date(2025, 3, 10), date(2025, 3, 24))
    )

    assert [txn.amount_cents for txn in data["items"]] == [100, 200]
    assert data["total_cents"] == 300


def test_resolve_window_defaults() -> None:
    period = resolve_window(None, None, today=date(2025, 3, 10))
    assert (period.start, period.end) == (date(2025, 3, 10), date(2025, 3, 24))
    period = resolve_window("2025-01-30", 3)
    assert period.end == date(2025, 2, 2)
