import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    ExpenseCategory,
    IncomeCategory,
    IncomeFrequency,
    InvoiceStatus,
)


class ExpenseIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    category: ExpenseCategory
    date: dt.date


class IncomeIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    category: IncomeCategory
    date: dt.date
    recurring: bool = False
    frequency: Optional[IncomeFrequency] = None


class InvoiceIn(BaseModel):
    invoice_number: Optional[str] = Field(default=None, max_length=64)
    client_name: str = Field(..., min_length=1, max_length=200)
    client_email: Optional[str] = Field(default=None, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    issue_date: Optional[dt.date] = None
    due_date: dt.date
    status: InvoiceStatus = InvoiceStatus.pending
    notes: Optional[str] = None


class CategorizeIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = Field(..., min_length=1)
    locale: str = "en"


class ParseExpenseIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = Field(..., min_length=1)
    locale: str = "en"


class InsightsIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    locale: str = "en"
