"""initial ledger schema

Revision ID: 202511200900
Revises:
Create Date: 2025-11-20 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202511200900"
down_revision = None
branch_labels = None
depends_on = None

EXPENSE_CATEGORIES = (
    "foodDining",
    "transportation",
    "shopping",
    "entertainment",
    "billsUtilities",
    "healthcare",
    "travel",
    "education",
    "business",
    "other",
)
INCOME_CATEGORIES = (
    "salary",
    "freelance",
    "business",
    "investment",
    "rental",
    "other",
)
INCOME_FREQUENCIES = ("weekly", "bi-weekly", "monthly", "quarterly", "yearly")
INVOICE_STATUSES = ("PENDING", "PAID", "OVERDUE", "CANCELLED")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*EXPENSE_CATEGORIES, name="expensecategory"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index("ix_expenses_user_category", "expenses", ["user_id", "category"])

    op.create_table(
        "incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*INCOME_CATEGORIES, name="incomecategory"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("recurring", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frequency", sa.Enum(*INCOME_FREQUENCIES, name="incomefrequency")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_incomes_amount_positive"),
    )
    op.create_index("ix_incomes_user_date", "incomes", ["user_id", "date"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("invoice_number", sa.String(length=64)),
        sa.Column("client_name", sa.String(length=200), nullable=False),
        sa.Column("client_email", sa.String(length=200)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*INVOICE_STATUSES, name="invoicestatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        sa.CheckConstraint("amount_cents > 0", name="ck_invoices_amount_positive"),
    )
    op.create_index(
        "ix_invoices_user_issue_date", "invoices", ["user_id", "issue_date"]
    )
    op.create_index("ix_invoices_user_status", "invoices", ["user_id", "status"])


def downgrade():
    op.drop_index("ix_invoices_user_status", table_name="invoices")
    op.drop_index("ix_invoices_user_issue_date", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_incomes_user_date", table_name="incomes")
    op.drop_table("incomes")
    op.drop_index("ix_expenses_user_category", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
