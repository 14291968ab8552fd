"""Calendar bucketing helpers and reporting windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from .errors import InvalidInputError

PERIOD_DAYS = {"week": 7, "month": 30}


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    raise InvalidInputError("expected a date or datetime")


def week_number(value: date | datetime) -> int:
    """ISO-8601 week number (1-53); weeks start on Monday."""

    return _as_date(value).isocalendar()[1]


def iso_year(value: date | datetime) -> int:
    """ISO year owning the week, which differs from the calendar year around New Year."""

    return _as_date(value).isocalendar()[0]


def month_number(value: date | datetime) -> int:
    return _as_date(value).month


def year(value: date | datetime) -> int:
    return _as_date(value).year


def week_start(value: date | datetime) -> date:
    """Monday of the ISO week containing ``value``."""

    day = _as_date(value)
    return day - timedelta(days=day.weekday())


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open ``[start, end)`` range; ``end`` of ``None`` means open-ended."""

    start: datetime
    end: Optional[datetime] = None

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def last_date(self) -> Optional[date]:
        if self.end is None:
            return None
        return (self.end - timedelta(days=1)).date()


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def resolve_window(
    period: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    *,
    today: Optional[date] = None,
    default: str = "week",
) -> TimeWindow:
    """Turn a period keyword or explicit date range into a ``TimeWindow``.

    An explicit range wins over the keyword and includes the whole end day.
    ``week`` and ``month`` reach back 7 and 30 days from the start of today.
    """

    if start_date and end_date:
        if end_date < start_date:
            raise InvalidInputError("end_date must not be before start_date")
        return TimeWindow(_midnight(start_date), _midnight(end_date + timedelta(days=1)))
    if (start_date is None) != (end_date is None):
        raise InvalidInputError("start_date and end_date must be given together")

    key = period or default
    if key not in PERIOD_DAYS:
        raise InvalidInputError("period must be one of: week, month")
    today = today or datetime.now(timezone.utc).date()
    return TimeWindow(_midnight(today - timedelta(days=PERIOD_DAYS[key])))


__all__ = [
    "PERIOD_DAYS",
    "week_number",
    "iso_year",
    "month_number",
    "year",
    "week_start",
    "TimeWindow",
    "resolve_window",
]
