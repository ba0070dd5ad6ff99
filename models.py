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


class EntryKind(str, Enum):
    expense = "expense"
    income = "income"
    invoice = "invoice"


class ExpenseCategory(str, Enum):
    food_dining = "foodDining"
    transportation = "transportation"
    shopping = "shopping"
    entertainment = "entertainment"
    bills_utilities = "billsUtilities"
    healthcare = "healthcare"
    travel = "travel"
    education = "education"
    business = "business"
    other = "other"


# Order matters: the AI prompts number categories 1-10 in this order.
EXPENSE_CATEGORY_KEYS: tuple[str, ...] = tuple(c.value for c in ExpenseCategory)


class IncomeCategory(str, Enum):
    salary = "salary"
    freelance = "freelance"
    business = "business"
    investment = "investment"
    rental = "rental"
    other = "other"


class IncomeFrequency(str, Enum):
    weekly = "weekly"
    bi_weekly = "bi-weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class InvoiceStatus(str, Enum):
    pending = "PENDING"
    paid = "PAID"
    overdue = "OVERDUE"
    cancelled = "CANCELLED"


def _values_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


EXPENSE_CATEGORY_ENUM = _values_enum(ExpenseCategory, "expensecategory")
INCOME_CATEGORY_ENUM = _values_enum(IncomeCategory, "incomecategory")
INCOME_FREQUENCY_ENUM = _values_enum(IncomeFrequency, "incomefrequency")
INVOICE_STATUS_ENUM = _values_enum(InvoiceStatus, "invoicestatus")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(
        EXPENSE_CATEGORY_ENUM, nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category", "user_id", "category"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[IncomeCategory] = mapped_column(
        INCOME_CATEGORY_ENUM, nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    frequency: Mapped[Optional[IncomeFrequency]] = mapped_column(
        INCOME_FREQUENCY_ENUM
    )

    __table_args__ = (
        Index("ix_incomes_user_date", "user_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_incomes_amount_positive"),
    )


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(64))
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_email: Mapped[Optional[str]] = mapped_column(String(200))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        INVOICE_STATUS_ENUM, nullable=False, default=InvoiceStatus.pending
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        Index("ix_invoices_user_issue_date", "user_id", "issue_date"),
        Index("ix_invoices_user_status", "user_id", "status"),
        CheckConstraint("amount_cents > 0", name="ck_invoices_amount_positive"),
    )
