from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from aggregation import (
    CENT,
    DEFAULT_LOOKBACK_MONTHS,
    LedgerEntry,
    build_summary_report,
    compute_category_breakdown,
    compute_monthly_trend,
    compute_totals,
    format_amount,
    trend_window,
)
from models import EntryKind, Expense, Income, Invoice, InvoiceStatus
from periods import Period, PeriodKind, add_months, local_now, month_range
from schemas import ExpenseIn, IncomeIn, InvoiceIn
from text_understanding import (
    InsightMetrics,
    InsightReport,
    TextUnderstandingService,
)

DEFAULT_USER_ID = 1
RECENT_LIMIT = 5
INSIGHT_TREND_MONTHS = 6


def get_current_user_id() -> int:
    return DEFAULT_USER_ID


def to_cents(amount: Decimal) -> int:
    quantized = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(quantized * 100)


def cents_to_amount(cents: int) -> Decimal:
    return Decimal(cents) / 100


def serialize_expense(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "amount": format_amount(cents_to_amount(expense.amount_cents)),
        "description": expense.description,
        "category": expense.category.value,
        "date": expense.date.isoformat(),
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
    }


def serialize_income(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "amount": format_amount(cents_to_amount(income.amount_cents)),
        "description": income.description,
        "category": income.category.value,
        "date": income.date.isoformat(),
        "recurring": income.recurring,
        "frequency": income.frequency.value if income.frequency else None,
        "created_at": income.created_at.isoformat() if income.created_at else None,
    }


def serialize_invoice(invoice: Invoice) -> dict[str, object]:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "client_name": invoice.client_name,
        "client_email": invoice.client_email,
        "amount": format_amount(cents_to_amount(invoice.amount_cents)),
        "description": invoice.description,
        "issue_date": invoice.issue_date.isoformat(),
        "due_date": invoice.due_date.isoformat(),
        "status": invoice.status.value,
        "notes": invoice.notes,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }


@dataclass
class LedgerFilters:
    category: Optional[str] = None
    status: Optional[InvoiceStatus] = None
    start: Optional[date] = None
    end: Optional[date] = None
    recurring: Optional[bool] = None
    search: Optional[str] = None


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense or expense.user_id != self.user_id:
            raise ValueError("Expense not found")
        return expense

    def list(
        self, filters: LedgerFilters, *, limit: int = 10, offset: int = 0
    ) -> tuple[list[Expense], int]:
        stmt = select(Expense).where(Expense.user_id == self.user_id)
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.start and filters.end:
            stmt = stmt.where(Expense.date.between(filters.start, filters.end))
        total = self.session.scalar(
            select(func.count()).select_from(stmt.subquery())
        )
        items = self.session.scalars(
            stmt.order_by(Expense.date.desc(), Expense.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()
        return list(items), int(total or 0)

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            description=data.description.strip(),
            category=data.category,
            date=data.date,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        expense.amount_cents = to_cents(data.amount)
        expense.description = data.description.strip()
        expense.category = data.category
        expense.date = data.date
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()


class IncomeService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, income_id: int) -> Income:
        income = self.session.get(Income, income_id)
        if not income or income.user_id != self.user_id:
            raise ValueError("Income not found")
        return income

    def list(
        self, filters: LedgerFilters, *, limit: int = 10, offset: int = 0
    ) -> tuple[list[Income], int]:
        stmt = select(Income).where(Income.user_id == self.user_id)
        if filters.category:
            stmt = stmt.where(Income.category == filters.category)
        if filters.recurring is not None:
            stmt = stmt.where(Income.recurring == filters.recurring)
        if filters.start and filters.end:
            stmt = stmt.where(Income.date.between(filters.start, filters.end))
        total = self.session.scalar(
            select(func.count()).select_from(stmt.subquery())
        )
        items = self.session.scalars(
            stmt.order_by(Income.date.desc(), Income.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()
        return list(items), int(total or 0)

    def create(self, data: IncomeIn) -> Income:
        income = Income(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            description=data.description.strip(),
            category=data.category,
            date=data.date,
            recurring=data.recurring,
            frequency=data.frequency if data.recurring else None,
        )
        self.session.add(income)
        self.session.commit()
        self.session.refresh(income)
        return income

    def update(self, income_id: int, data: IncomeIn) -> Income:
        income = self.get(income_id)
        income.amount_cents = to_cents(data.amount)
        income.description = data.description.strip()
        income.category = data.category
        income.date = data.date
        income.recurring = data.recurring
        income.frequency = data.frequency if data.recurring else None
        self.session.commit()
        self.session.refresh(income)
        return income

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        self.session.delete(income)
        self.session.commit()


class InvoiceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, invoice_id: int) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if not invoice or invoice.user_id != self.user_id:
            raise ValueError("Invoice not found")
        return invoice

    def list(
        self, filters: LedgerFilters, *, limit: int = 10, offset: int = 0
    ) -> tuple[list[Invoice], int]:
        stmt = select(Invoice).where(Invoice.user_id == self.user_id)
        if filters.status:
            stmt = stmt.where(Invoice.status == filters.status)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Invoice.client_name).like(pattern),
                    func.lower(Invoice.client_email).like(pattern),
                    func.lower(Invoice.invoice_number).like(pattern),
                    func.lower(Invoice.description).like(pattern),
                )
            )
        if filters.start and filters.end:
            stmt = stmt.where(Invoice.issue_date.between(filters.start, filters.end))
        total = self.session.scalar(
            select(func.count()).select_from(stmt.subquery())
        )
        items = self.session.scalars(
            stmt.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()
        return list(items), int(total or 0)

    def _ensure_number_free(
        self, invoice_number: Optional[str], invoice_id: Optional[int] = None
    ) -> None:
        if not invoice_number:
            return
        stmt = select(Invoice.id).where(Invoice.invoice_number == invoice_number)
        if invoice_id is not None:
            stmt = stmt.where(Invoice.id != invoice_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError(f"Invoice number already in use: {invoice_number}")

    def create(self, data: InvoiceIn) -> Invoice:
        self._ensure_number_free(data.invoice_number)
        invoice = Invoice(
            user_id=self.user_id,
            invoice_number=data.invoice_number or None,
            client_name=data.client_name.strip(),
            client_email=data.client_email or None,
            amount_cents=to_cents(data.amount),
            description=data.description.strip(),
            issue_date=data.issue_date or local_now().date(),
            due_date=data.due_date,
            status=data.status,
            notes=data.notes,
        )
        self.session.add(invoice)
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def update(self, invoice_id: int, data: InvoiceIn) -> Invoice:
        invoice = self.get(invoice_id)
        self._ensure_number_free(data.invoice_number, invoice_id)
        invoice.invoice_number = data.invoice_number or None
        invoice.client_name = data.client_name.strip()
        invoice.client_email = data.client_email or None
        invoice.amount_cents = to_cents(data.amount)
        invoice.description = data.description.strip()
        if data.issue_date:
            invoice.issue_date = data.issue_date
        invoice.due_date = data.due_date
        invoice.status = data.status
        invoice.notes = data.notes
        self.session.commit()
        self.session.refresh(invoice)
        return invoice

    def delete(self, invoice_id: int) -> None:
        invoice = self.get(invoice_id)
        self.session.delete(invoice)
        self.session.commit()


class LedgerService:
    """Read side shared by the summary and insights reports."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_entries(
        self, date_range: Optional[Period] = None
    ) -> list[LedgerEntry]:
        if date_range is None or date_range.kind == PeriodKind.all:
            return self.entries_between(None, None)
        return self.entries_between(date_range.start.date(), date_range.end.date())

    def entries_between(
        self, start: Optional[date], end: Optional[date]
    ) -> list[LedgerEntry]:
        expense_stmt = select(Expense).where(Expense.user_id == self.user_id)
        income_stmt = select(Income).where(Income.user_id == self.user_id)
        invoice_stmt = select(Invoice).where(Invoice.user_id == self.user_id)
        if start is not None and end is not None:
            expense_stmt = expense_stmt.where(Expense.date.between(start, end))
            income_stmt = income_stmt.where(Income.date.between(start, end))
            invoice_stmt = invoice_stmt.where(Invoice.issue_date.between(start, end))

        entries: list[LedgerEntry] = []
        for expense in self.session.scalars(expense_stmt):
            entries.append(
                LedgerEntry(
                    kind=EntryKind.expense,
                    amount=cents_to_amount(expense.amount_cents),
                    occurred_at=expense.date,
                    owner_id=expense.user_id,
                    category=expense.category.value,
                )
            )
        for income in self.session.scalars(income_stmt):
            entries.append(
                LedgerEntry(
                    kind=EntryKind.income,
                    amount=cents_to_amount(income.amount_cents),
                    occurred_at=income.date,
                    owner_id=income.user_id,
                    category=income.category.value,
                )
            )
        for invoice in self.session.scalars(invoice_stmt):
            entries.append(
                LedgerEntry(
                    kind=EntryKind.invoice,
                    amount=cents_to_amount(invoice.amount_cents),
                    occurred_at=invoice.issue_date,
                    owner_id=invoice.user_id,
                    status=invoice.status,
                )
            )
        return entries

    def recent(
        self, kind: EntryKind, limit: int = RECENT_LIMIT
    ) -> list[dict[str, object]]:
        if kind == EntryKind.expense:
            rows = self.session.scalars(
                select(Expense)
                .where(Expense.user_id == self.user_id)
                .order_by(Expense.created_at.desc(), Expense.id.desc())
                .limit(limit)
            )
            return [serialize_expense(row) for row in rows]
        if kind == EntryKind.income:
            rows = self.session.scalars(
                select(Income)
                .where(Income.user_id == self.user_id)
                .order_by(Income.created_at.desc(), Income.id.desc())
                .limit(limit)
            )
            return [serialize_income(row) for row in rows]
        rows = self.session.scalars(
            select(Invoice)
            .where(Invoice.user_id == self.user_id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .limit(limit)
        )
        return [serialize_invoice(row) for row in rows]


class SummaryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.ledger = LedgerService(session, self.user_id)

    def summary(
        self,
        period: Period,
        *,
        lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
        now: Optional[datetime] = None,
    ) -> dict[str, object]:
        now = now or local_now()
        today = now.date()
        period_entries = self.ledger.list_entries(period)
        trend_start, trend_end = trend_window(lookback_months, today=today)
        trend_entries = self.ledger.entries_between(trend_start, trend_end)
        report = build_summary_report(
            period_entries,
            trend_entries,
            lookback_months=lookback_months,
            today=today,
        )

        month_start, month_end = month_range(today.year, today.month)
        this_month = self.ledger.entries_between(month_start.date(), month_end.date())
        this_month_totals = compute_totals(this_month).as_dict()
        this_month_totals["month_name"] = month_start.strftime("%B %Y")

        out = report.as_dict()
        out["this_month"] = this_month_totals
        out["selected_period"] = (
            None
            if period.kind == PeriodKind.all
            else {"kind": period.kind.value, "name": period.label}
        )
        out["recent"] = {kind.value: self.ledger.recent(kind) for kind in EntryKind}
        bounded = period.kind != PeriodKind.all
        out["meta"] = {
            "period": period.kind.value,
            "start_date": period.start.isoformat() if bounded else None,
            "end_date": period.end.isoformat() if bounded else None,
            "generated_at": now.isoformat(),
        }
        return out


class InsightsService:
    def __init__(
        self,
        session: Session,
        text_service: TextUnderstandingService,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.ledger = LedgerService(session, self.user_id)
        self.text_service = text_service

    def metrics(self, *, today: Optional[date] = None) -> InsightMetrics:
        today = today or local_now().date()
        entries = self.ledger.list_entries()
        totals = compute_totals(entries)

        current_start = today.replace(day=1)
        current_end = add_months(current_start, 1) - date.resolution
        previous_start = add_months(current_start, -1)
        previous_end = current_start - date.resolution

        def month_expenses(start: date, end: date) -> Decimal:
            scoped = [e for e in entries if start <= e.occurred_at <= end]
            return compute_totals(scoped)[EntryKind.expense].amount

        trend = compute_monthly_trend(
            entries, INSIGHT_TREND_MONTHS, kind=EntryKind.expense, today=today
        )
        by_month = {bucket.month_key: bucket.amount for bucket in trend}
        # One entry per month, oldest first, zero for quiet months.
        months = [
            add_months(current_start, -offset)
            for offset in range(INSIGHT_TREND_MONTHS - 1, -1, -1)
        ]
        keys = [f"{m.year:04d}-{m.month:02d}" for m in months]
        return InsightMetrics(
            total_expenses=totals[EntryKind.expense].amount,
            total_income=totals[EntryKind.income].amount,
            expenses_by_category=compute_category_breakdown(
                entries, EntryKind.expense
            ),
            monthly_trend=[(key, by_month.get(key, Decimal("0"))) for key in keys],
            current_month_total=month_expenses(current_start, current_end),
            previous_month_total=month_expenses(previous_start, previous_end),
        )

    def generate(
        self, locale: str = "en", *, today: Optional[date] = None
    ) -> InsightReport:
        return self.text_service.generate_insights(self.metrics(today=today), locale)

