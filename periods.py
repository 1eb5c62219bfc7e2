from dataclasses import dataclass
from datetime import date, datetime, timezone
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
    return datetime.now(ZoneInfo(settings.timezone)).date()


def local_date(moment: datetime) -> date:
    """Calendar date of ``moment`` in the configured zone; naive values are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(get_settings().timezone)).date()


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    if month == 12:
        next_month = first.replace(year=year + 1, month=1)
    else:
        next_month = first.replace(month=month + 1)
    return Period(f"{year:04d}-{month:02d}", first, next_month - date.resolution)


def current_month(today: Optional[date] = None) -> Period:
    today = today or local_today()
    return month_period(today.year, today.month)


def previous_month(today: Optional[date] = None) -> Period:
    today = today or local_today()
    last_month_end = today.replace(day=1) - date.resolution
    return month_period(last_month_end.year, last_month_end.month)
