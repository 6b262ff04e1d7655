"""Arrears detection, severity classification and reminder policy"""

from datetime import datetime, timedelta
from typing import List, Optional

from fee_ledger.domain.models import DefaulterSnapshot, MonthlyPayment, PaymentStatus, StudentFeeLedger
from fee_ledger.utils.date_utils import days_since, start_of_day

SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"


def overdue_installments(ledger: StudentFeeLedger, cutoff: datetime) -> List[MonthlyPayment]:
    """Unpaid, un-waived installments with money owed that fell due before `cutoff`"""
    return [
        p
        for p in ledger.schedule()
        if p.status in (PaymentStatus.PENDING, PaymentStatus.PARTIAL)
        and not p.waived
        and p.due_amount - p.paid_amount + p.late_fee > 0
        and start_of_day(p.due_date) < cutoff
    ]


def build_defaulter_snapshot(
    ledger: StudentFeeLedger,
    now: datetime,
    grace_period_days: int,
) -> Optional[DefaulterSnapshot]:
    """
    Derive the arrears row for one ledger, or None if it is in good standing.

    Amount owed per overdue month is dueAmount - paidAmount + lateFee;
    daysSinceFirstDue counts whole days since the earliest overdue due date.
    """
    cutoff = now - timedelta(days=grace_period_days)
    overdue = overdue_installments(ledger, cutoff)
    if not overdue:
        return None

    first_due = min(p.due_date for p in overdue)
    return DefaulterSnapshot(
        student_id=ledger.student_id,
        ledger_id=ledger.id,
        school_id=ledger.school_id,
        grade=ledger.grade,
        total_due_amount=sum(p.due_amount - p.paid_amount + p.late_fee for p in overdue),
        overdue_months=[p.month for p in overdue],
        days_since_first_due=days_since(now, first_due),
    )


def severity_level(days_since_first_due: int, total_due_amount: int) -> str:
    """
    Map arrears age and size to a severity band.

    - critical: > 60 days or > ₹50,000
    - high:     > 30 days or > ₹20,000
    - medium:   > 14 days or > ₹10,000
    - low:      everything else
    """
    if days_since_first_due > 60 or total_due_amount > 50_000:
        return SEVERITY_CRITICAL
    elif days_since_first_due > 30 or total_due_amount > 20_000:
        return SEVERITY_HIGH
    elif days_since_first_due > 14 or total_due_amount > 10_000:
        return SEVERITY_MEDIUM
    return SEVERITY_LOW
