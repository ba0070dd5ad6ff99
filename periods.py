from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings


class PeriodKind(str, Enum):
    all = "all"
    month = "month"
    year = "year"


@dataclass(frozen=True)
class Period:
    kind: PeriodKind
    start: datetime
    end: datetime
    label: str

    def contains(self, day: date) -> bool:
        return self.start.date() <= day <= self.end.date()


def local_now() -> datetime:
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def add_months(day: date, count: int) -> date:
    month_index = (day.year * 12) + (day.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_range(year: int, month: int) -> tuple[datetime, datetime]:
    first = date(year, month, 1)
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    last = next_month - date.resolution
    return (
        datetime.combine(first, time.min),
        datetime.combine(last, time(23, 59, 59)),
    )


def _coerce_int(value: Union[int, str, None]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def resolve_period(
    kind: Union[PeriodKind, str, None],
    year: Union[int, str, None] = None,
    month: Union[int, str, None] = None,
    *,
    today: Optional[datetime] = None,
) -> Period:
    """Resolve a reporting period descriptor to an inclusive range.

    Invalid or missing ``year``/``month`` values fall back to the current
    year/month and unknown kinds fall back to ``all``; nothing here raises.
    """
    now = today or local_now()
    try:
        period_kind = PeriodKind(kind) if kind else PeriodKind.all
    except ValueError:
        period_kind = PeriodKind.all

    year_value = _coerce_int(year)
    if year_value is None or not 1 <= year_value <= 9998:
        year_value = now.year

    if period_kind == PeriodKind.month:
        month_value = _coerce_int(month)
        if month_value is None or not 1 <= month_value <= 12:
            month_value = now.month
        start, end = month_range(year_value, month_value)
        return Period(period_kind, start, end, start.strftime("%B %Y"))

    if period_kind == PeriodKind.year:
        start = datetime(year_value, 1, 1)
        end = datetime(year_value, 12, 31, 23, 59, 59)
        return Period(period_kind, start, end, f"Year {year_value}")

    return Period(PeriodKind.all, datetime.min, now, "All time")
