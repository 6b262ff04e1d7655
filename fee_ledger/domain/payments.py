"""Payment validation and application - core business logic for fee collection"""

from datetime import datetime
from typing import List

from fee_ledger.domain.exceptions import AlreadySettledError, InvalidInputError, NotFoundError
from fee_ledger.domain.models import (
    OneTimeFee,
    PaymentApplication,
    PaymentStatus,
    PendingOneTimeFee,
    StudentFeeLedger,
    ValidationResult,
)
from fee_ledger.utils.date_utils import days_since, start_of_day


def validate_payment(
    ledger: StudentFeeLedger,
    month: int,
    amount: int,
    include_late_fee: bool,
    now: datetime,
) -> ValidationResult:
    """
    Check a proposed monthly collection against the ledger's current state.

    Blocking errors:
    - month already paid or waived (settled)
    - non-positive amount
    - first payment too small to clear pending one-time fees together with
      part of the month. While the month still has a balance the amount must
      be strictly greater than the one-time total: paying exactly the one-time
      total is refused, even though it would clear those fees on its own.
      Collect one-time fees alone through the one-time collection path.

    Warnings (payment still accepted):
    - one-time fees ride along with the first payment
    - overpayment, partial payment (with remaining balance)
    - month overdue, earlier months still unpaid (order is not enforced)
    """
    entry = ledger.get_month(month)
    warnings: List[str] = []
    errors: List[str] = []
    settled = False

    if amount <= 0:
        errors.append("Amount must be greater than zero")

    if entry.status == PaymentStatus.PAID:
        errors.append("This month's fee is already fully paid")
        settled = True

    if entry.waived:
        errors.append("This month's fee has been waived")
        settled = True

    # One-time fees are due with the very first money received on the ledger
    is_first_payment = ledger.total_paid_amount == 0
    pending_fees = ledger.outstanding_one_time_fees() if is_first_payment else []

    total_one_time = sum(f.remaining for f in pending_fees)
    if total_one_time > 0:
        fee_types = ", ".join(f.fee_type for f in pending_fees)
        warnings.append(f"First payment must include ₹{total_one_time} one-time fees ({fee_types})")

    late_fee_amount = entry.late_fee if include_late_fee else 0
    monthly_expected = entry.remaining + late_fee_amount
    total_expected = monthly_expected + total_one_time

    if amount > total_expected:
        breakdown = f"Monthly: ₹{monthly_expected}"
        if total_one_time > 0:
            breakdown += f" + One-time: ₹{total_one_time}"
        warnings.append(
            f"Amount exceeds due amount. Due: ₹{total_expected} ({breakdown}), Received: ₹{amount}"
        )

    if 0 < amount < total_expected:
        if total_one_time > 0 and amount <= total_one_time:
            errors.append(
                f"Insufficient amount. First payment must be more than ₹{total_one_time} to cover "
                f"one-time fees together with the monthly fee. The monthly fee can be paid partially."
            )
        else:
            warnings.append(
                f"Partial payment. Due: ₹{total_expected}, Received: ₹{amount}, "
                f"Remaining: ₹{total_expected - amount}"
            )

    if entry.status == PaymentStatus.PENDING and not entry.waived and start_of_day(entry.due_date) < now:
        warnings.append(f"Payment is overdue by {days_since(now, entry.due_date)} days")

    # Earlier in the academic schedule, not by calendar month number
    earlier_unpaid = 0
    for previous in ledger.schedule():
        if previous.month == month:
            break
        if previous.status != PaymentStatus.PAID and not previous.waived:
            earlier_unpaid += 1
    if earlier_unpaid:
        warnings.append(f"{earlier_unpaid} previous month(s) are still pending")

    return ValidationResult(
        valid=not errors,
        warnings=warnings,
        errors=errors,
        settled=settled,
        month=entry,
        expected_amount=total_expected,
        monthly_expected_amount=monthly_expected,
        total_one_time_fee_amount=total_one_time,
        late_fee_amount=late_fee_amount,
        include_late_fee=include_late_fee,
        is_first_payment=is_first_payment,
        pending_one_time_fees=[PendingOneTimeFee(f.fee_type, f.remaining) for f in pending_fees],
    )


def apply_payment(
    ledger: StudentFeeLedger,
    month: int,
    amount: int,
    include_late_fee: bool,
    now: datetime,
) -> PaymentApplication:
    """
    Re-validate and apply a monthly collection to the ledger in place.

    Nothing is mutated unless every check passes. On success:
    1. the month receives `amount - one-time total` (if positive)
    2. on a first payment every pending one-time fee is cleared in full
    3. ledger totals grow by the full submitted amount

    Raises:
        AlreadySettledError: month already paid or waived
        InvalidInputError: bad month/amount, or first payment too small
    """
    if amount <= 0:
        raise InvalidInputError("Amount must be greater than zero")

    validation = validate_payment(ledger, month, amount, include_late_fee, now)
    if not validation.valid:
        message = "; ".join(validation.errors)
        if validation.settled:
            raise AlreadySettledError(message)
        raise InvalidInputError(message)

    total_one_time = validation.total_one_time_fee_amount
    monthly_amount = amount - total_one_time
    if monthly_amount < 0:
        raise InvalidInputError(f"Amount must be at least ₹{total_one_time} to cover one-time fees")

    if monthly_amount > 0:
        entry = ledger.get_month(month)
        entry.paid_amount += monthly_amount
        entry.paid_date = now
        entry.status = PaymentStatus.PAID if entry.paid_amount >= entry.due_amount else PaymentStatus.PARTIAL

    one_time_payments: List[PendingOneTimeFee] = []
    if validation.is_first_payment and total_one_time > 0:
        for fee in ledger.outstanding_one_time_fees():
            amount_to_pay = fee.remaining
            fee.paid_amount += amount_to_pay
            fee.paid_date = now
            fee.status = PaymentStatus.PAID
            if amount_to_pay > 0:
                one_time_payments.append(PendingOneTimeFee(fee.fee_type, amount_to_pay))

    ledger.record_received(amount)

    return PaymentApplication(
        validation=validation,
        monthly_amount_recorded=max(monthly_amount, 0),
        # The monthly receipt always shows money received, even if one-time fees took it all
        monthly_transaction_amount=monthly_amount if monthly_amount > 0 else amount,
        one_time_payments=one_time_payments,
    )


def apply_one_time_payment(
    ledger: StudentFeeLedger,
    fee_type: str,
    amount: int,
    now: datetime,
) -> OneTimeFee:
    """Collect (part of) a single one-time fee outside the monthly flow"""
    if amount <= 0:
        raise InvalidInputError("Amount must be greater than zero")

    fee = ledger.one_time_fees.get(fee_type)
    if fee is None or not fee.is_outstanding:
        raise NotFoundError(f"{fee_type} fee not found or already paid")

    remaining = fee.remaining
    if amount > remaining:
        raise InvalidInputError(
            f"Payment amount ({amount}) exceeds remaining due amount ({remaining})"
        )

    fee.paid_amount += amount
    if fee.paid_amount >= fee.due_amount:
        fee.status = PaymentStatus.PAID
        fee.paid_date = now
    else:
        fee.status = PaymentStatus.PARTIAL

    ledger.record_received(amount)
    return fee
