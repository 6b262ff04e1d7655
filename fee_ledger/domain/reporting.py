"""Report windows and aggregate shapes for financial reporting"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from fee_ledger.domain.exceptions import InvalidInputError
from fee_ledger.utils.date_utils import month_bounds, start_of_day

REPORT_TYPES = ("daily", "weekly", "monthly", "yearly")


@dataclass
class ReportWindow:
    """Half-open time window [start, end)"""

    start: datetime
    end: datetime


@dataclass
class CollectionBucket:
    """Money collected for one grouping key (method, day, grade, collector)"""

    key: str
    total_amount: int
    count: int


@dataclass
class ReportSummary:
    total_amount: int
    total_transactions: int
    average_transaction: Decimal
    pending_dues: int = 0
    total_defaulters: int = 0


@dataclass
class FinancialReport:
    report_type: str
    window: ReportWindow
    summary: ReportSummary
    by_payment_method: List[CollectionBucket] = field(default_factory=list)
    daily_breakdown: List[CollectionBucket] = field(default_factory=list)
    by_grade: List[CollectionBucket] = field(default_factory=list)
    top_accountants: List[CollectionBucket] = field(default_factory=list)


def resolve_report_window(
    report_type: str,
    today: date,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> ReportWindow:
    """
    Resolve the reporting period, whole days in both directions.

    Implied windows (relative to `today`):
    - daily:   today
    - weekly:  the 7 days before today, through today
    - monthly: the calendar month containing today
    - yearly:  the calendar year containing today

    Explicit `start`/`end` dates replace the implied bound on their side.
    """
    if report_type == "daily":
        first, last = today, today
    elif report_type == "weekly":
        first, last = today - timedelta(days=7), today
    elif report_type == "monthly":
        first, next_month = month_bounds(today)
        last = next_month - timedelta(days=1)
    elif report_type == "yearly":
        first, last = date(today.year, 1, 1), date(today.year, 12, 31)
    else:
        raise InvalidInputError(f"Unknown report type {report_type!r}; expected one of {', '.join(REPORT_TYPES)}")

    first = start or first
    last = end or last
    if first > last:
        raise InvalidInputError("Report start date must not be after end date")

    return ReportWindow(start=start_of_day(first), end=start_of_day(last + timedelta(days=1)))


def average_amount(total_amount: int, count: int) -> Decimal:
    if count == 0:
        return Decimal("0.00")
    return (Decimal(total_amount) / count).quantize(Decimal("0.01"))
