"""Date manipulation utilities"""

import calendar
import re
from datetime import date, datetime, time, timezone
from typing import List, Tuple

from fee_ledger.domain.exceptions import InvalidInputError

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database hands back"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def days_since(moment: datetime, day: date) -> int:
    """Whole days elapsed from midnight of `day` to `moment` (floored)"""
    return (moment - start_of_day(day)).days


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, pulling day-of-month back to the month's last day"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def parse_academic_year(academic_year: str) -> Tuple[int, int]:
    """Split "2025-2026" into (2025, 2026)"""
    match = ACADEMIC_YEAR_PATTERN.match(academic_year or "")
    if not match:
        raise InvalidInputError(f"Academic year must be in format YYYY-YYYY, got {academic_year!r}")
    start, end = int(match.group(1)), int(match.group(2))
    if end != start + 1:
        raise InvalidInputError(f"Academic year must span consecutive years, got {academic_year!r}")
    return start, end


def current_academic_year(today: date, start_month: int = 4) -> str:
    """Academic year containing `today`, for years starting in `start_month`"""
    if today.month >= start_month:
        return f"{today.year}-{today.year + 1}"
    return f"{today.year - 1}-{today.year}"


def academic_months(start_month: int = 4) -> List[int]:
    """Calendar month numbers in academic order, e.g. [4, 5, ..., 12, 1, 2, 3]"""
    return [((start_month + i - 1) % 12) + 1 for i in range(12)]


def month_bounds(day: date) -> Tuple[date, date]:
    """First day of `day`'s month and first day of the following month"""
    first = day.replace(day=1)
    if first.month == 12:
        return first, date(first.year + 1, 1, 1)
    return first, date(first.year, first.month + 1, 1)
