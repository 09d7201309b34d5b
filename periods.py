from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def local_today() -> date:
    settings = get_settings()
    if not settings.timezone:
        return date.today()
    return datetime.now(ZoneInfo(settings.timezone)).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by whole calendar months, clamping the day to the
    length of the target month (Jan 31 + 1 month -> Feb 28/29)."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def month_period(today: Optional[date] = None) -> Period:
    today = today or local_today()
    first = today.replace(day=1)
    end = first.replace(day=days_in_month(first.year, first.month))
    return Period("this_month", first, end)
