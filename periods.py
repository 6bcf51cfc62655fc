import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


class Horizon(str, Enum):
    today = "today"
    week = "week"
    month = "month"
    year = "year"


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    return date(year, month, days_in_month(year, month))


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    try:
        year_str, month_str = key.split("-", 1)
        year, month = int(year_str), int(month_str)
    except ValueError as exc:
        raise ValueError(f"Invalid month {key!r}, expected YYYY-MM") from exc
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month {key!r}, expected YYYY-MM")
    return year, month


def add_months(base: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def week_end(today: date) -> date:
    # ISO weeks run Monday..Sunday
    days_left = timedelta(days=6 - today.weekday())
    if date.max - today < days_left:
        return date.max
    return today + days_left


def year_end(today: date) -> date:
    return date(today.year, 12, 31)


def horizon_end(horizon: Horizon, today: date) -> date:
    if horizon == Horizon.today:
        return today
    if horizon == Horizon.week:
        return week_end(today)
    if horizon == Horizon.month:
        return month_end(today.year, today.month)
    return year_end(today)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", date.min, date.max)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), year_end(today))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    return Period(
        "this_month",
        month_start(today.year, today.month),
        month_end(today.year, today.month),
    )
