from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    expense = "expense"
    income = "income"
    transfer = "transfer"


class PaymentMethod(str, Enum):
    card = "card"
    pix = "pix"
    cash = "cash"
    billet = "billet"
    wire = "wire"


class TransactionStatus(str, Enum):
    pending = "pending"
    paid = "paid"


class InstallmentMode(str, Enum):
    materialize = "materialize"
    project = "project"


class CategoryKind(str, Enum):
    expense = "expense"
    income = "income"
    both = "both"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[CategoryKind] = mapped_column(SAEnum(CategoryKind), nullable=False)


class Card(Base, TimestampMixin):
    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Stored as entered; clamped to 1..28 whenever used in a computation.
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    due_offset_months: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("due_offset_months >= 0", name="ck_card_due_offset"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    ref_month: Mapped[str] = mapped_column(String(7), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    method: Mapped[PaymentMethod] = mapped_column(SAEnum(PaymentMethod), nullable=False)
    institution: Mapped[Optional[str]] = mapped_column(String(100))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.pending
    )
    card_id: Mapped[Optional[str]] = mapped_column(String(64))
    statement_month: Mapped[Optional[str]] = mapped_column(String(7))
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    fixed_bill_id: Mapped[Optional[str]] = mapped_column(String(64))
    installment_plan_id: Mapped[Optional[str]] = mapped_column(String(64))
    installment_index: Mapped[Optional[int]] = mapped_column(Integer)
    installment_count: Mapped[Optional[int]] = mapped_column(Integer)
    projected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        # One materialized row per fixed bill and accounting month. NULL bill ids
        # never collide, so ordinary transactions are unaffected.
        UniqueConstraint("fixed_bill_id", "ref_month", name="uq_txn_fixed_bill_month"),
        Index("ix_transactions_ref_month", "ref_month"),
        Index("ix_transactions_due_date", "due_date"),
        Index("ix_transactions_plan", "installment_plan_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class InstallmentPlan(Base, TimestampMixin):
    __tablename__ = "installment_plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    card_id: Mapped[str] = mapped_column(String(64), nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    installments: Mapped[int] = mapped_column(Integer, nullable=False)
    mode: Mapped[InstallmentMode] = mapped_column(
        SAEnum(InstallmentMode), nullable=False
    )

    __table_args__ = (
        CheckConstraint("total_cents > 0", name="ck_plan_total_positive"),
        CheckConstraint("installments >= 2", name="ck_plan_installments_min"),
    )


class FixedBill(Base, TimestampMixin):
    __tablename__ = "fixed_bills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    method: Mapped[PaymentMethod] = mapped_column(SAEnum(PaymentMethod), nullable=False)
    institution: Mapped[Optional[str]] = mapped_column(String(100))
    card_id: Mapped[Optional[str]] = mapped_column(String(64))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_fixed_bill_amount_positive"),
        Index("ix_fixed_bills_active", "active"),
    )


class AppSettings(Base, TimestampMixin):
    __tablename__ = "app_settings"

    id: Mapped[str] = mapped_column(String(16), primary_key=True, default="settings")
    base_year_for_legacy_sheets: Mapped[int] = mapped_column(
        Integer, nullable=False, default=2024
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")
