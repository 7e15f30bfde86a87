from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import (
    InstallmentMode,
    InstallmentPlan,
    PaymentMethod,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from schemas import CardIn, InstallmentPlanIn, TransactionIn
from services import (
    CardService,
    InstallmentPlanNotFound,
    InstallmentPlanner,
    LedgerService,
    split_amount,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def make_card(session: Session):
    return CardService(session).create(
        CardIn(name="Santander", closing_day=8, due_day=15, due_offset_months=1)
    )


def tv_plan(card_id: str, mode: InstallmentMode, **overrides) -> InstallmentPlanIn:
    values = dict(
        purchase_date=date(2025, 1, 31),
        description="TV",
        category_id="cat-leisure",
        card_id=card_id,
        total_cents=1000,
        installments=3,
        mode=mode,
    )
    values.update(overrides)
    return InstallmentPlanIn(**values)


def test_split_amount_last_installment_absorbs_remainder() -> None:
    assert split_amount(1000, 3) == [333, 333, 334]
    assert split_amount(1001, 2) == [501, 500]
    assert split_amount(999, 3) == [333, 333, 333]


def test_split_amount_conserves_total() -> None:
    for installments in range(2, 13):
        for total in range(installments * installments, 5000, 7):
            amounts = split_amount(total, installments)
            assert len(amounts) == installments
            assert sum(amounts) == total
            assert all(amount > 0 for amount in amounts)


@pytest.mark.parametrize("total,installments", [(1, 3), (11, 12)])
def test_split_amount_refuses_non_positive_installments(total, installments) -> None:
    with pytest.raises(ValueError):
        split_amount(total, installments)


@pytest.mark.parametrize(
    "total,installments,expected",
    [
        (6, 4, [1, 1, 1, 3]),
        (9, 6, [1, 1, 1, 1, 1, 4]),
        (18, 12, [1] * 11 + [7]),
        (12, 12, [1] * 12),
    ],
)
def test_split_amount_floors_when_rounding_overshoots(
    total, installments, expected
) -> None:
    assert split_amount(total, installments) == expected


def test_split_amount_accepts_every_total_at_least_installments() -> None:
    for installments in range(2, 13):
        for total in range(installments, installments * installments):
            amounts = split_amount(total, installments)
            assert sum(amounts) == total
            assert all(amount > 0 for amount in amounts)


def test_plan_requires_at_least_two_installments() -> None:
    with pytest.raises(ValidationError):
        tv_plan("card", InstallmentMode.materialize, installments=1)


def test_materialize_creates_ledger_transactions() -> None:
    with make_session() as session:
        card = make_card(session)
        planner = InstallmentPlanner(session)

        plan_id = planner.create_plan(tv_plan(card.id, InstallmentMode.materialize))

        plan = planner.get_plan(plan_id)
        assert plan.total_cents == 1000
        assert plan.mode == InstallmentMode.materialize

        rows = planner.installments(plan_id)
        assert [row.amount_cents for row in rows] == [333, 333, 334]
        assert sum(row.amount_cents for row in rows) == 1000
        assert [row.date for row in rows] == [
            date(2025, 1, 28),
            date(2025, 2, 28),
            date(2025, 3, 28),
        ]
        assert [row.statement_month for row in rows] == [
            "2025-02",
            "2025-03",
            "2025-04",
        ]
        assert [row.ref_month for row in rows] == ["2025-02", "2025-03", "2025-04"]
        assert rows[0].due_date == date(2025, 3, 15)
        assert [row.description for row in rows] == ["TV (1/3)", "TV (2/3)", "TV (3/3)"]
        for index, row in enumerate(rows, start=1):
            assert row.method == PaymentMethod.card
            assert row.type == TransactionType.expense
            assert row.status == TransactionStatus.pending
            assert row.projected is False
            assert row.installment_plan_id == plan_id
            assert row.installment_index == index
            assert row.installment_count == 3
            assert row.category_id == "cat-leisure"


def test_project_creates_flagged_rows_on_card_cycle() -> None:
    with make_session() as session:
        card = make_card(session)
        planner = InstallmentPlanner(session)

        plan_id = planner.create_plan(tv_plan(card.id, InstallmentMode.project))

        rows = planner.installments(plan_id)
        assert all(row.projected for row in rows)
        assert [row.ref_month for row in rows] == ["2025-02", "2025-03", "2025-04"]
        assert [row.due_date for row in rows] == [
            date(2025, 3, 15),
            date(2025, 4, 15),
            date(2025, 5, 15),
        ]
        assert rows[1].description == "TV (proj. 2/3)"
        assert rows[-1].amount_cents == 334


def test_project_without_card_falls_back_to_calendar_month() -> None:
    with make_session() as session:
        planner = InstallmentPlanner(session)

        plan_id = planner.create_plan(tv_plan("gone", InstallmentMode.project))

        rows = planner.installments(plan_id)
        assert [row.statement_month for row in rows] == [
            "2025-01",
            "2025-02",
            "2025-03",
        ]
        assert all(row.due_date is None for row in rows)


def test_plan_creation_is_all_or_nothing(monkeypatch) -> None:
    original = LedgerService.add_transaction
    calls = {"n": 0}

    def flaky(self, data, *, commit=True):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("store unavailable")
        return original(self, data, commit=commit)

    monkeypatch.setattr(LedgerService, "add_transaction", flaky)

    with make_session() as session:
        card = make_card(session)
        planner = InstallmentPlanner(session)

        with pytest.raises(RuntimeError):
            planner.create_plan(tv_plan(card.id, InstallmentMode.materialize))

        assert session.scalar(select(func.count(InstallmentPlan.id))) == 0
        assert session.scalar(select(func.count(Transaction.id))) == 0


def test_delete_plan_removes_only_its_installments() -> None:
    with make_session() as session:
        card = make_card(session)
        planner = InstallmentPlanner(session)
        plan_id = planner.create_plan(tv_plan(card.id, InstallmentMode.materialize))
        other = LedgerService(session).add_transaction(
            TransactionIn(
                date=date(2025, 2, 1),
                description="Bread",
                type=TransactionType.expense,
                method=PaymentMethod.cash,
                amount_cents=700,
            )
        )

        assert planner.delete_plan(plan_id) == 3

        assert planner.installments(plan_id) == []
        assert session.get(Transaction, other.id) is not None
        with pytest.raises(InstallmentPlanNotFound):
            planner.get_plan(plan_id)
        with pytest.raises(InstallmentPlanNotFound):
            planner.delete_plan(plan_id)


def test_list_plans_returns_every_plan() -> None:
    with make_session() as session:
        card = make_card(session)
        planner = InstallmentPlanner(session)
        first = planner.create_plan(tv_plan(card.id, InstallmentMode.materialize))
        second = planner.create_plan(tv_plan(card.id, InstallmentMode.project))

        assert {plan.id for plan in planner.list_plans()} == {first, second}
