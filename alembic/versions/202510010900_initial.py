"""initial schema

Revision ID: 202510010900
Revises:
Create Date: 2025-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510010900"
down_revision = None
branch_labels = None
depends_on = None

TRANSACTION_TYPE = sa.Enum("expense", "income", "transfer", name="transactiontype")
PAYMENT_METHOD = sa.Enum("card", "pix", "cash", "billet", "wire", name="paymentmethod")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("expense", "income", "both", name="categorykind"),
            nullable=False,
        ),
        *_timestamps(),
    )

    op.create_table(
        "cards",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column(
            "due_offset_months", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("due_offset_months >= 0", name="ck_card_due_offset"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("ref_month", sa.String(length=7), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("category_id", sa.String(length=64)),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("method", PAYMENT_METHOD, nullable=False),
        sa.Column("institution", sa.String(length=100)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", name="transactionstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("card_id", sa.String(length=64)),
        sa.Column("statement_month", sa.String(length=7)),
        sa.Column("due_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        sa.Column("fixed_bill_id", sa.String(length=64)),
        sa.Column("installment_plan_id", sa.String(length=64)),
        sa.Column("installment_index", sa.Integer()),
        sa.Column("installment_count", sa.Integer()),
        sa.Column("projected", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint(
            "fixed_bill_id", "ref_month", name="uq_txn_fixed_bill_month"
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_ref_month", "transactions", ["ref_month"])
    op.create_index("ix_transactions_due_date", "transactions", ["due_date"])
    op.create_index("ix_transactions_plan", "transactions", ["installment_plan_id"])

    op.create_table(
        "installment_plans",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("category_id", sa.String(length=64)),
        sa.Column("card_id", sa.String(length=64), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("installments", sa.Integer(), nullable=False),
        sa.Column(
            "mode",
            sa.Enum("materialize", "project", name="installmentmode"),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("total_cents > 0", name="ck_plan_total_positive"),
        sa.CheckConstraint("installments >= 2", name="ck_plan_installments_min"),
    )

    op.create_table(
        "fixed_bills",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("category_id", sa.String(length=64)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("method", PAYMENT_METHOD, nullable=False),
        sa.Column("institution", sa.String(length=100)),
        sa.Column("card_id", sa.String(length=64)),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_fixed_bill_amount_positive"),
    )
    op.create_index("ix_fixed_bills_active", "fixed_bills", ["active"])

    op.create_table(
        "app_settings",
        sa.Column("id", sa.String(length=16), primary_key=True),
        sa.Column(
            "base_year_for_legacy_sheets",
            sa.Integer(),
            nullable=False,
            server_default="2024",
        ),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="BRL"),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("app_settings")
    op.drop_index("ix_fixed_bills_active", table_name="fixed_bills")
    op.drop_table("fixed_bills")
    op.drop_table("installment_plans")
    op.drop_index("ix_transactions_plan", table_name="transactions")
    op.drop_index("ix_transactions_due_date", table_name="transactions")
    op.drop_index("ix_transactions_ref_month", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("cards")
    op.drop_table("categories")
