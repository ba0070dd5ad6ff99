from datetime import date, datetime
from decimal import Decimal

from aggregation import (
    LedgerEntry,
    build_summary_report,
    compute_category_breakdown,
    compute_monthly_trend,
    compute_net_income,
    compute_totals,
    format_amount,
)
from models import EntryKind, InvoiceStatus

TODAY = date(2025, 11, 20)


def _expense(amount: str, category: str, day: date) -> LedgerEntry:
    return LedgerEntry(EntryKind.expense, Decimal(amount), day, category=category)


def _income(amount: str, day: date, category: str = "salary") -> LedgerEntry:
    return LedgerEntry(EntryKind.income, Decimal(amount), day, category=category)


def _invoice(amount: str, status: InvoiceStatus, day: date) -> LedgerEntry:
    return LedgerEntry(EntryKind.invoice, Decimal(amount), day, status=status)


def test_totals_breakdown_and_net_income_for_simple_month() -> None:
    entries = [
        _expense("50", "foodDining", date(2025, 11, 1)),
        _expense("30", "transportation", date(2025, 11, 5)),
        _income("1000", date(2025, 11, 1)),
    ]

    totals = compute_totals(entries)

    assert totals[EntryKind.expense].amount == Decimal("80")
    assert totals[EntryKind.expense].count == 2
    assert totals[EntryKind.income].amount == Decimal("1000")
    assert totals[EntryKind.income].count == 1
    assert totals[EntryKind.invoice].count == 0
    assert compute_net_income(totals) == Decimal("920")

    breakdown = compute_category_breakdown(entries, EntryKind.expense)
    assert [(r.category, r.amount, r.count) for r in breakdown] == [
        ("foodDining", Decimal("50"), 1),
        ("transportation", Decimal("30"), 1),
    ]


def test_net_income_only_counts_paid_invoices() -> None:
    entries = [
        _income("100.10", date(2025, 10, 2)),
        _invoice("200.20", InvoiceStatus.paid, date(2025, 10, 3)),
        _invoice("999.99", InvoiceStatus.pending, date(2025, 10, 4)),
        _invoice("50", InvoiceStatus.cancelled, date(2025, 10, 4)),
        _expense("0.30", "other", date(2025, 10, 5)),
    ]

    totals = compute_totals(entries)

    assert totals.paid_invoices.amount == Decimal("200.20")
    assert totals.paid_invoices.count == 1
    assert totals[EntryKind.invoice].amount == Decimal("1250.19")
    assert compute_net_income(totals) == (
        totals[EntryKind.income].amount
        + totals.paid_invoices.amount
        - totals[EntryKind.expense].amount
    )
    assert compute_net_income(totals) == Decimal("300.00")


def test_decimal_sums_do_not_drift() -> None:
    entries = [_expense("0.10", "other", date(2025, 11, 1)) for _ in range(3)]

    assert compute_totals(entries)[EntryKind.expense].amount == Decimal("0.30")


def test_breakdown_sums_match_totals_per_kind() -> None:
    entries = [
        _expense("12.34", "shopping", date(2025, 1, 1)),
        _expense("7.66", "shopping", date(2025, 2, 1)),
        _expense("100", "travel", date(2025, 3, 1)),
        _income("500", date(2025, 3, 1), "freelance"),
        _income("1500", date(2025, 3, 2)),
        _invoice("80", InvoiceStatus.paid, date(2025, 3, 3)),
        _invoice("20", InvoiceStatus.overdue, date(2025, 3, 4)),
    ]
    totals = compute_totals(entries)

    for kind in EntryKind:
        rows = compute_category_breakdown(entries, kind)
        assert sum((r.amount for r in rows), Decimal("0")) == totals[kind].amount
        assert sum(r.count for r in rows) == totals[kind].count

    statuses = compute_category_breakdown(entries, EntryKind.invoice)
    assert [r.category for r in statuses] == ["PAID", "OVERDUE"]


def test_breakdown_ties_sort_by_category_name() -> None:
    entries = [
        _expense("10", "travel", date(2025, 1, 1)),
        _expense("10", "business", date(2025, 1, 1)),
        _expense("25", "shopping", date(2025, 1, 1)),
    ]

    rows = compute_category_breakdown(entries, EntryKind.expense)

    assert [r.category for r in rows] == ["shopping", "business", "travel"]


def test_invalid_entries_are_skipped() -> None:
    entries = [
        _expense("10", "other", date(2025, 1, 1)),
        _expense("0", "other", date(2025, 1, 1)),
        _expense("-5", "other", date(2025, 1, 1)),
        LedgerEntry(EntryKind.expense, Decimal("NaN"), date(2025, 1, 1)),
        LedgerEntry(EntryKind.expense, "not-a-number", date(2025, 1, 1)),  # type: ignore[arg-type]
        LedgerEntry(EntryKind.expense, Decimal("3"), "2025-01-01"),  # type: ignore[arg-type]
    ]

    totals = compute_totals(entries)

    assert totals[EntryKind.expense].amount == Decimal("10")
    assert totals[EntryKind.expense].count == 1
    assert len(compute_category_breakdown(entries, EntryKind.expense)) == 1
    assert len(compute_monthly_trend(entries, today=date(2025, 1, 31))) == 1


def test_empty_input_yields_zero_results() -> None:
    totals = compute_totals([])

    assert all(totals[kind].amount == 0 for kind in EntryKind)
    assert compute_net_income(totals) == 0
    assert compute_category_breakdown([], EntryKind.expense) == []
    assert compute_monthly_trend([], today=TODAY) == []


def test_monthly_trend_buckets_sum_to_in_window_total() -> None:
    entries = [
        _expense("5", "other", date(2024, 11, 30)),  # before the window
        _expense("10", "other", date(2024, 12, 1)),
        _expense("20", "other", date(2025, 3, 15)),
        _expense("30", "other", date(2025, 3, 16)),
        _expense("40", "other", date(2025, 11, 20)),
        _expense("60", "other", date(2025, 12, 1)),  # after the current month
    ]

    trend = compute_monthly_trend(entries, 12, today=TODAY)

    assert [b.month_key for b in trend] == ["2025-11", "2025-03", "2024-12"]
    assert [b.count for b in trend] == [1, 2, 1]
    in_window = [
        e for e in entries if date(2024, 12, 1) <= e.occurred_at <= date(2025, 11, 30)
    ]
    assert sum(b.amount for b in trend) == sum(e.amount for e in in_window)


def test_monthly_trend_respects_lookback_and_kind() -> None:
    entries = [
        _expense("10", "other", date(2025, 9, 1)),
        _expense("20", "other", date(2025, 10, 1)),
        _income("300", date(2025, 11, 1)),
    ]

    trend = compute_monthly_trend(entries, 2, kind=EntryKind.expense, today=TODAY)

    assert [(b.month_key, b.amount) for b in trend] == [("2025-10", Decimal("20"))]
    assert compute_monthly_trend(entries, 0, today=TODAY) == []


def test_inputs_are_not_mutated() -> None:
    entries = [
        _expense("1", "travel", date(2025, 11, 1)),
        _expense("2", "business", date(2025, 11, 2)),
    ]
    snapshot = list(entries)

    build_summary_report(entries, today=TODAY)

    assert entries == snapshot


def test_summary_report_renders_rounded_amounts() -> None:
    entries = [
        _expense("10.005", "foodDining", date(2025, 11, 1)),
        _income("1000", datetime(2025, 11, 2, 9, 0)),
    ]

    report = build_summary_report(entries, today=TODAY).as_dict()

    assert report["totals"]["expense"] == {"amount": 10.01, "count": 1}
    assert report["net_income"] == 990.0
    assert report["category_breakdown"]["expense"] == [
        {"category": "foodDining", "amount": 10.01, "count": 1}
    ]
    assert report["monthly_trend"]["income"] == [
        {"month": "2025-11", "amount": 1000.0, "count": 1}
    ]
    assert report["category_breakdown"]["invoice"] == []


def test_format_amount_rounds_half_up() -> None:
    assert format_amount(Decimal("2.675")) == 2.68
    assert format_amount(Decimal("-1.005")) == -1.01
