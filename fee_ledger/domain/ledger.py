"""Ledger lifecycle: creation, fee structure migration, late fees and waivers"""

import copy
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Union

from fee_ledger.domain.exceptions import AlreadySettledError, InvalidInputError
from fee_ledger.domain.models import (
    FeeStructure,
    MonthlyPayment,
    OneTimeFee,
    PaymentStatus,
    StudentFeeLedger,
)
from fee_ledger.domain.schedule import generate_monthly_schedule
from fee_ledger.utils.date_utils import start_of_day


def _fresh_one_time_fee(fee_type: str, amount: int) -> OneTimeFee:
    fee = OneTimeFee(fee_type=fee_type, due_amount=amount)
    # Zero-priced components are settled from the start
    fee.refresh_status()
    return fee


def create_ledger(
    student_id: str,
    structure: FeeStructure,
    start_month: int = 4,
    default_due_day: int = 10,
) -> StudentFeeLedger:
    """
    Open a fresh ledger for a student from the governing fee structure.

    totalFeeAmount = monthlyAmount x 12 + one-time components, nothing paid yet.
    """
    schedule = generate_monthly_schedule(
        structure.monthly_amount,
        structure.due_day,
        structure.academic_year,
        start_month=start_month,
        default_due_day=default_due_day,
    )
    one_time_fees = {
        c.fee_type: _fresh_one_time_fee(c.fee_type, c.amount)
        for c in structure.one_time_components
        if c.is_one_time
    }

    ledger = StudentFeeLedger(
        student_id=student_id,
        school_id=structure.school_id,
        grade=structure.grade,
        academic_year=structure.academic_year,
        fee_structure_id=structure.id,
        total_fee_amount=structure.total_yearly_amount,
        monthly_payments={p.month: p for p in schedule},
        one_time_fees=one_time_fees,
    )
    ledger.refresh_totals()
    return ledger


def _carry_forward_month(old: MonthlyPayment, new: MonthlyPayment) -> MonthlyPayment:
    # Settled installments are frozen: collected money is never re-priced
    if old.status == PaymentStatus.PAID:
        return copy.copy(old)

    new.paid_amount = old.paid_amount
    new.paid_date = old.paid_date
    new.late_fee = old.late_fee
    new.waived = old.waived
    new.waiver_reason = old.waiver_reason
    new.waived_by = old.waived_by
    new.waiver_date = old.waiver_date
    new.refresh_status()
    return new


def migrate_ledger(
    ledger: StudentFeeLedger,
    structure: FeeStructure,
    start_month: int = 4,
    default_due_day: int = 10,
) -> bool:
    """
    Move a ledger onto a newer fee structure in place.

    The schedule and one-time fees are rebuilt from the new structure while
    money already collected is carried forward untouched:
    - paid months keep their original due and paid amounts
    - partially paid months keep their paid amount against the new due
    - waivers and late fees survive
    - paid one-time fees stay paid; partial ones keep their paid amount
    - a dropped one-time component that already holds money is kept as settled

    Returns False (and changes nothing) when the ledger already references
    `structure`, which makes repeated calls idempotent.
    """
    if ledger.fee_structure_id == structure.id:
        return False

    schedule = generate_monthly_schedule(
        structure.monthly_amount,
        structure.due_day,
        structure.academic_year,
        start_month=start_month,
        default_due_day=default_due_day,
    )
    monthly_payments: Dict[int, MonthlyPayment] = {}
    for entry in schedule:
        old = ledger.monthly_payments.get(entry.month)
        monthly_payments[entry.month] = _carry_forward_month(old, entry) if old else entry

    one_time_fees: Dict[str, OneTimeFee] = {}
    for component in structure.one_time_components:
        if not component.is_one_time:
            continue
        old_fee = ledger.one_time_fees.get(component.fee_type)
        if old_fee and old_fee.status == PaymentStatus.PAID:
            one_time_fees[component.fee_type] = copy.copy(old_fee)
            continue
        fee = _fresh_one_time_fee(component.fee_type, component.amount)
        if old_fee:
            fee.paid_amount = old_fee.paid_amount
            fee.paid_date = old_fee.paid_date
            fee.refresh_status()
        one_time_fees[component.fee_type] = fee

    for fee_type, old_fee in ledger.one_time_fees.items():
        if fee_type not in one_time_fees and old_fee.paid_amount > 0:
            one_time_fees[fee_type] = OneTimeFee(
                fee_type=fee_type,
                due_amount=old_fee.paid_amount,
                paid_amount=old_fee.paid_amount,
                status=PaymentStatus.PAID,
                paid_date=old_fee.paid_date,
            )

    ledger.fee_structure_id = structure.id
    ledger.grade = structure.grade
    ledger.total_fee_amount = structure.total_yearly_amount
    ledger.monthly_payments = monthly_payments
    ledger.one_time_fees = one_time_fees
    ledger.refresh_totals()
    return True


def apply_late_fee(
    ledger: StudentFeeLedger,
    month: int,
    percentage: Union[int, float, Decimal],
    now: datetime,
) -> bool:
    """
    Charge a late fee on an overdue installment.

    The fee is a percentage of the installment's due amount, rounded half-up
    to a whole rupee. Paid, waived or not-yet-due months are left alone.
    """
    pct = Decimal(str(percentage))
    if pct < 0 or pct > 100:
        raise InvalidInputError(f"Late fee percentage must be between 0 and 100, got {percentage}")

    entry = ledger.get_month(month)
    if entry.is_settled or now <= start_of_day(entry.due_date):
        return False

    late_fee = (Decimal(entry.due_amount) * pct / 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    entry.late_fee = int(late_fee)
    return True


def waive_month(
    ledger: StudentFeeLedger,
    month: int,
    reason: str,
    waived_by: str,
    now: datetime,
) -> MonthlyPayment:
    """Waive an unpaid installment; collections and arrears skip it afterwards"""
    entry = ledger.get_month(month)
    if entry.status == PaymentStatus.PAID:
        raise AlreadySettledError("This month's fee is already fully paid")
    if entry.waived:
        raise AlreadySettledError("This month's fee has been waived")
    if not reason or not reason.strip():
        raise InvalidInputError("A waiver reason is required")

    entry.waived = True
    entry.waiver_reason = reason.strip()
    entry.waived_by = waived_by
    entry.waiver_date = now
    return entry
