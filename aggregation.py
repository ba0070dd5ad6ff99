"""Read-only aggregation over ledger entries.

Every function here is pure: it takes an already-fetched sequence of
``LedgerEntry`` objects (scoped to one owner and, where relevant, one date
range) and returns freshly built result objects. Entries with a non-positive
or non-numeric amount, or without a usable date, are skipped rather than
failing the whole computation.

Money stays in ``Decimal`` until ``format_amount`` renders it for output.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence

from models import EntryKind, InvoiceStatus
from periods import add_months, local_today

ZERO = Decimal("0")
CENT = Decimal("0.01")
DEFAULT_LOOKBACK_MONTHS = 12


@dataclass(frozen=True)
class LedgerEntry:
    kind: EntryKind
    amount: Decimal
    occurred_at: date
    owner_id: int = 1
    category: Optional[str] = None
    status: Optional[InvoiceStatus] = None

    @property
    def group_key(self) -> str:
        if self.kind == EntryKind.invoice:
            return (self.status or InvoiceStatus.pending).value
        return self.category or "other"


@dataclass(frozen=True)
class KindTotal:
    amount: Decimal = ZERO
    count: int = 0

    def as_dict(self) -> dict[str, object]:
        return {"amount": format_amount(self.amount), "count": self.count}


@dataclass(frozen=True)
class Totals:
    by_kind: dict[EntryKind, KindTotal]
    paid_invoices: KindTotal = field(default_factory=KindTotal)

    def __getitem__(self, kind: EntryKind) -> KindTotal:
        return self.by_kind.get(kind, KindTotal())

    @property
    def amount_by_kind(self) -> dict[EntryKind, Decimal]:
        return {kind: total.amount for kind, total in self.by_kind.items()}

    @property
    def count_by_kind(self) -> dict[EntryKind, int]:
        return {kind: total.count for kind, total in self.by_kind.items()}

    def as_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            kind.value: self[kind].as_dict() for kind in EntryKind
        }
        out["invoice_paid"] = self.paid_invoices.as_dict()
        out["net_income"] = format_amount(compute_net_income(self))
        return out


@dataclass(frozen=True)
class BreakdownRow:
    category: str
    amount: Decimal
    count: int

    def as_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "amount": format_amount(self.amount),
            "count": self.count,
        }


@dataclass(frozen=True)
class TrendBucket:
    month_key: str
    amount: Decimal
    count: int

    def as_dict(self) -> dict[str, object]:
        return {
            "month": self.month_key,
            "amount": format_amount(self.amount),
            "count": self.count,
        }


@dataclass(frozen=True)
class SummaryReport:
    totals: Totals
    net_income: Decimal
    category_breakdown: dict[EntryKind, list[BreakdownRow]]
    monthly_trend: dict[EntryKind, list[TrendBucket]]
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS

    def as_dict(self) -> dict[str, object]:
        return {
            "totals": self.totals.as_dict(),
            "net_income": format_amount(self.net_income),
            "category_breakdown": {
                kind.value: [row.as_dict() for row in rows]
                for kind, rows in self.category_breakdown.items()
            },
            "monthly_trend": {
                kind.value: [bucket.as_dict() for bucket in buckets]
                for kind, buckets in self.monthly_trend.items()
            },
            "lookback_months": self.lookback_months,
        }


def format_amount(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _valid_amount(entry: LedgerEntry) -> Optional[Decimal]:
    amount = entry.amount
    if not isinstance(amount, Decimal):
        try:
            amount = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return None
    if not amount.is_finite() or amount <= ZERO:
        return None
    return amount


def _entry_date(entry: LedgerEntry) -> Optional[date]:
    occurred = entry.occurred_at
    if isinstance(occurred, datetime):
        return occurred.date()
    if isinstance(occurred, date):
        return occurred
    return None


def _usable(entry: LedgerEntry) -> Optional[tuple[Decimal, date]]:
    amount = _valid_amount(entry)
    day = _entry_date(entry)
    if amount is None or day is None:
        return None
    return amount, day


def compute_totals(entries: Sequence[LedgerEntry]) -> Totals:
    amounts: dict[EntryKind, Decimal] = {kind: ZERO for kind in EntryKind}
    counts: dict[EntryKind, int] = {kind: 0 for kind in EntryKind}
    paid_amount = ZERO
    paid_count = 0
    for entry in entries:
        usable = _usable(entry)
        if usable is None or entry.kind not in amounts:
            continue
        amount, _ = usable
        amounts[entry.kind] += amount
        counts[entry.kind] += 1
        if entry.kind == EntryKind.invoice and entry.status == InvoiceStatus.paid:
            paid_amount += amount
            paid_count += 1
    return Totals(
        by_kind={kind: KindTotal(amounts[kind], counts[kind]) for kind in EntryKind},
        paid_invoices=KindTotal(paid_amount, paid_count),
    )


def compute_category_breakdown(
    entries: Sequence[LedgerEntry], kind: EntryKind
) -> list[BreakdownRow]:
    amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[str, int] = defaultdict(int)
    for entry in entries:
        if entry.kind != kind:
            continue
        usable = _usable(entry)
        if usable is None:
            continue
        key = entry.group_key
        amounts[key] += usable[0]
        counts[key] += 1
    rows = [BreakdownRow(key, amounts[key], counts[key]) for key in amounts]
    rows.sort(key=lambda row: (-row.amount, row.category))
    return rows


def trend_window(
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS, *, today: Optional[date] = None
) -> tuple[date, date]:
    """First and last day covered by a trailing ``lookback_months`` window."""
    current = (today or local_today()).replace(day=1)
    start = add_months(current, -(max(lookback_months, 1) - 1))
    end = add_months(current, 1) - date.resolution
    return start, end


def compute_monthly_trend(
    entries: Sequence[LedgerEntry],
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    *,
    kind: Optional[EntryKind] = None,
    today: Optional[date] = None,
) -> list[TrendBucket]:
    """Bucket in-window entries by ``YYYY-MM``, most recent month first.

    Months without entries are omitted rather than zero-filled, so the sum of
    all bucket amounts equals the total of the in-window entries.
    """
    if lookback_months < 1:
        return []
    start, end = trend_window(lookback_months, today=today)
    amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[str, int] = defaultdict(int)
    for entry in entries:
        if kind is not None and entry.kind != kind:
            continue
        usable = _usable(entry)
        if usable is None:
            continue
        amount, day = usable
        if not start <= day <= end:
            continue
        key = f"{day.year:04d}-{day.month:02d}"
        amounts[key] += amount
        counts[key] += 1
    return [
        TrendBucket(key, amounts[key], counts[key])
        for key in sorted(amounts, reverse=True)
    ]


def compute_net_income(totals: Totals) -> Decimal:
    return (
        totals[EntryKind.income].amount
        + totals.paid_invoices.amount
        - totals[EntryKind.expense].amount
    )


def build_summary_report(
    period_entries: Sequence[LedgerEntry],
    trend_entries: Optional[Sequence[LedgerEntry]] = None,
    *,
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
    today: Optional[date] = None,
) -> SummaryReport:
    """Assemble totals, breakdowns and trends into one report.

    ``trend_entries`` covers the trailing trend window independently of the
    reporting period; it defaults to ``period_entries``.
    """
    if trend_entries is None:
        trend_entries = period_entries
    totals = compute_totals(period_entries)
    return SummaryReport(
        totals=totals,
        net_income=compute_net_income(totals),
        category_breakdown={
            kind: compute_category_breakdown(period_entries, kind)
            for kind in EntryKind
        },
        monthly_trend={
            kind: compute_monthly_trend(
                trend_entries, lookback_months, kind=kind, today=today
            )
            for kind in EntryKind
        },
        lookback_months=lookback_months,
    )
