import datetime as dt
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    CategoryKind,
    InstallmentMode,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)

MONTH_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class CardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    closing_day: int = Field(..., ge=1, le=31)
    due_day: int = Field(..., ge=1, le=31)
    due_offset_months: int = Field(default=1, ge=0)
    active: bool = True


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: CategoryKind


class TransactionEntryIn(BaseModel):
    """A transaction as entered by hand."""

    model_config = ConfigDict(extra="forbid")

    date: date
    description: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[str] = None
    type: TransactionType
    method: PaymentMethod
    institution: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., gt=0)
    status: TransactionStatus = TransactionStatus.pending
    card_id: Optional[str] = None
    # Manual overrides; derived from date/method/card when omitted.
    ref_month: Optional[str] = Field(default=None, pattern=MONTH_KEY_PATTERN)
    due_date: Optional[dt.date] = None
    notes: Optional[str] = None


class TransactionIn(TransactionEntryIn):
    """Ledger draft; bill and plan linkage is set only by the engine."""

    fixed_bill_id: Optional[str] = None
    installment_plan_id: Optional[str] = None
    installment_index: Optional[int] = Field(default=None, ge=1)
    installment_count: Optional[int] = Field(default=None, ge=1)
    projected: bool = False


class TransactionPatch(BaseModel):
    """Partial update. Only fields explicitly present are applied."""

    model_config = ConfigDict(extra="forbid")

    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category_id: Optional[str] = None
    type: Optional[TransactionType] = None
    method: Optional[PaymentMethod] = None
    institution: Optional[str] = Field(default=None, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    status: Optional[TransactionStatus] = None
    card_id: Optional[str] = None
    ref_month: Optional[str] = Field(default=None, pattern=MONTH_KEY_PATTERN)
    due_date: Optional[dt.date] = None
    notes: Optional[str] = None


class StatusIn(BaseModel):
    status: TransactionStatus


class InstallmentPlanIn(BaseModel):
    purchase_date: date
    description: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[str] = None
    card_id: str
    total_cents: int = Field(..., gt=0)
    installments: int = Field(..., ge=2)
    mode: InstallmentMode = InstallmentMode.materialize


class FixedBillIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    category_id: Optional[str] = None
    amount_cents: int = Field(..., gt=0)
    due_day: int = Field(..., ge=1, le=31)
    type: Literal[TransactionType.expense, TransactionType.income] = (
        TransactionType.expense
    )
    method: PaymentMethod = PaymentMethod.billet
    institution: Optional[str] = Field(default=None, max_length=100)
    card_id: Optional[str] = None
    active: bool = True
    notes: Optional[str] = None


class ActiveIn(BaseModel):
    active: bool


class AppSettingsIn(BaseModel):
    base_year_for_legacy_sheets: int = Field(..., ge=1970, le=3000)
    currency: str = Field(default="BRL", min_length=3, max_length=3)
