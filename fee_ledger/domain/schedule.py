"""Monthly payment schedule generation for an academic year"""

from typing import List

from fee_ledger.domain.models import MonthlyPayment
from fee_ledger.utils.date_utils import academic_months, clamp_day, parse_academic_year


def generate_monthly_schedule(
    monthly_amount: int,
    due_day: int,
    academic_year: str,
    start_month: int = 4,
    default_due_day: int = 10,
) -> List[MonthlyPayment]:
    """
    Generate the 12 monthly installments of an academic year.

    Requirements:
    - One entry per calendar month, starting at `start_month` (April by default)
    - Each due on `due_day`; months wrapping past December fall in the second year
    - A due day outside 1-31 falls back to `default_due_day`
    - A due day past the month's end is clamped to its last day (31 -> Apr 30)

    Example:
        academic_year="2025-2026", due_day=10
        -> Apr 10 2025, May 10 2025, ..., Dec 10 2025, Jan 10 2026, ..., Mar 10 2026
    """
    first_year, _ = parse_academic_year(academic_year)
    day = due_day if due_day and 1 <= due_day <= 31 else default_due_day

    schedule = []
    for month in academic_months(start_month):
        # Months before the epoch month belong to the second calendar year
        year = first_year + (1 if month < start_month else 0)
        entry = MonthlyPayment(
            month=month,
            due_amount=monthly_amount,
            due_date=clamp_day(year, month, day),
        )
        # A zero-priced installment is settled from the start
        entry.refresh_status()
        schedule.append(entry)

    return schedule
