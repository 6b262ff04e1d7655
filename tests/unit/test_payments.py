"""Unit tests for payment validation and application"""

import uuid
import pytest
from datetime import datetime

from fee_ledger.domain.exceptions import AlreadySettledError, InvalidInputError, NotFoundError
from fee_ledger.domain.ledger import create_ledger, waive_month
from fee_ledger.domain.models import FeeComponent, FeeStructure, PaymentStatus, StudentFeeLedger
from fee_ledger.domain.payments import apply_one_time_payment, apply_payment, validate_payment

NOW = datetime(2025, 6, 15, 10, 0, 0)


def build_ledger(monthly_amount: int = 1000, one_time: int = 500) -> StudentFeeLedger:
    components = [FeeComponent(fee_type="admission", amount=one_time)] if one_time else []
    structure = FeeStructure(
        id=uuid.uuid4(),
        school_id="SCH-1",
        grade="5",
        academic_year="2025-2026",
        monthly_amount=monthly_amount,
        one_time_components=components,
        due_day=10,
        is_active=True,
        created_at=datetime(2025, 3, 1),
    )
    ledger = create_ledger("STU-1", structure)
    ledger.id = uuid.uuid4()
    return ledger


def assert_ledger_consistent(ledger: StudentFeeLedger):
    assert ledger.total_paid_amount == ledger.paid_from_components
    assert ledger.total_due_amount == ledger.total_fee_amount - ledger.total_paid_amount
    assert ledger.total_due_amount >= 0


def test_new_ledger_totals():
    ledger = build_ledger()

    assert ledger.total_fee_amount == 12500
    assert ledger.total_due_amount == 12500
    assert ledger.total_paid_amount == 0
    assert ledger.status == PaymentStatus.PENDING
    assert_ledger_consistent(ledger)


def test_first_payment_equal_to_one_time_total_is_insufficient():
    """₹500 against ₹500 admission + ₹1000 month is refused and changes nothing"""
    ledger = build_ledger()
    before = ledger.monthly_payments[1].paid_amount, ledger.total_due_amount

    result = validate_payment(ledger, 1, 500, False, NOW)
    assert result.valid is False
    assert result.errors[0].startswith("Insufficient amount")

    with pytest.raises(InvalidInputError, match="Insufficient amount"):
        apply_payment(ledger, 1, 500, False, NOW)

    assert (ledger.monthly_payments[1].paid_amount, ledger.total_due_amount) == before
    assert ledger.one_time_fees["admission"].status == PaymentStatus.PENDING


def test_first_payment_threshold_is_strictly_above_one_time_total():
    ledger = build_ledger()

    assert "more than ₹500" in validate_payment(ledger, 1, 500, False, NOW).errors[0]

    apply_payment(ledger, 1, 501, False, NOW)

    assert ledger.one_time_fees["admission"].status == PaymentStatus.PAID
    assert ledger.monthly_payments[1].paid_amount == 1
    assert ledger.monthly_payments[1].status == PaymentStatus.PARTIAL
    assert_ledger_consistent(ledger)


def test_first_payment_clears_one_time_fees_and_month():
    ledger = build_ledger()
    due_before = ledger.total_due_amount

    application = apply_payment(ledger, 1, 1500, False, NOW)

    assert ledger.monthly_payments[1].status == PaymentStatus.PAID
    assert ledger.monthly_payments[1].paid_amount == 1000
    assert ledger.one_time_fees["admission"].status == PaymentStatus.PAID
    assert ledger.one_time_fees["admission"].paid_amount == 500
    assert ledger.total_due_amount == due_before - 1500
    assert application.monthly_transaction_amount == 1000
    assert [(p.fee_type, p.amount) for p in application.one_time_payments] == [("admission", 500)]
    assert application.validation.is_first_payment is True
    assert_ledger_consistent(ledger)


def test_first_payment_warns_about_one_time_fees():
    ledger = build_ledger()
    result = validate_payment(ledger, 4, 1500, False, NOW)

    assert result.valid is True
    assert "First payment must include ₹500 one-time fees (admission)" in result.warnings
    assert result.expected_amount == 1500
    assert [(f.fee_type, f.amount) for f in result.pending_one_time_fees] == [("admission", 500)]


def test_first_partial_payment_above_one_time_total():
    """₹800 clears admission and leaves ₹300 against the month"""
    ledger = build_ledger()

    application = apply_payment(ledger, 6, 800, False, NOW)

    month = ledger.monthly_payments[6]
    assert month.status == PaymentStatus.PARTIAL
    assert month.paid_amount == 300
    assert application.monthly_transaction_amount == 300
    assert any("Remaining: ₹700" in w for w in application.validation.warnings)
    assert_ledger_consistent(ledger)


def test_partial_payment_warning_and_totals():
    ledger = build_ledger(one_time=0)
    due_before = ledger.total_due_amount

    application = apply_payment(ledger, 2, 400, False, NOW)

    month = ledger.monthly_payments[2]
    assert month.status == PaymentStatus.PARTIAL
    assert month.paid_amount == 400
    assert any("Remaining: ₹600" in w for w in application.validation.warnings)
    assert ledger.total_due_amount == due_before - 400
    assert ledger.status == PaymentStatus.PARTIAL
    assert_ledger_consistent(ledger)


def test_partial_then_remaining_settles_month():
    ledger = build_ledger(one_time=0)
    apply_payment(ledger, 2, 400, False, NOW)

    result = validate_payment(ledger, 2, 600, False, NOW)
    assert result.is_first_payment is False
    assert result.expected_amount == 600

    apply_payment(ledger, 2, 600, False, NOW)
    assert ledger.monthly_payments[2].status == PaymentStatus.PAID
    assert_ledger_consistent(ledger)


def test_overpayment_is_a_warning():
    ledger = build_ledger(one_time=0)

    result = validate_payment(ledger, 7, 1200, False, NOW)

    assert result.valid is True
    assert "Amount exceeds due amount. Due: ₹1000 (Monthly: ₹1000), Received: ₹1200" in result.warnings


def test_overpayment_breakdown_mentions_one_time_fees():
    ledger = build_ledger()
    result = validate_payment(ledger, 7, 2000, False, NOW)
    assert "Amount exceeds due amount. Due: ₹1500 (Monthly: ₹1000 + One-time: ₹500), Received: ₹2000" in result.warnings


@pytest.mark.parametrize("amount", [0, -100])
def test_non_positive_amount_rejected(amount):
    ledger = build_ledger()

    result = validate_payment(ledger, 4, amount, False, NOW)
    assert "Amount must be greater than zero" in result.errors

    with pytest.raises(InvalidInputError):
        apply_payment(ledger, 4, amount, False, NOW)


def test_invalid_month_rejected():
    ledger = build_ledger()
    with pytest.raises(InvalidInputError, match="Invalid month selected: 13"):
        validate_payment(ledger, 13, 1000, False, NOW)


def test_paid_month_is_already_settled():
    ledger = build_ledger(one_time=0)
    apply_payment(ledger, 4, 1000, False, NOW)

    result = validate_payment(ledger, 4, 1000, False, NOW)
    assert result.settled is True
    assert "This month's fee is already fully paid" in result.errors

    with pytest.raises(AlreadySettledError):
        apply_payment(ledger, 4, 1000, False, NOW)


def test_waived_month_is_already_settled():
    ledger = build_ledger(one_time=0)
    waive_month(ledger, 5, "Scholarship", "admin-1", NOW)

    with pytest.raises(AlreadySettledError, match="waived"):
        apply_payment(ledger, 5, 1000, False, NOW)


def test_overdue_warning_counts_days():
    """April 10 due, checked June 15 10:00 -> 66 days"""
    ledger = build_ledger(one_time=0)
    result = validate_payment(ledger, 4, 1000, False, NOW)
    assert "Payment is overdue by 66 days" in result.warnings


def test_no_overdue_warning_for_future_month():
    ledger = build_ledger(one_time=0)
    result = validate_payment(ledger, 9, 1000, False, NOW)
    assert not any(w.startswith("Payment is overdue") for w in result.warnings)


def test_earlier_pending_months_follow_academic_order():
    """January is preceded by April..December, not by calendar months"""
    ledger = build_ledger(one_time=0)
    apply_payment(ledger, 4, 1000, False, NOW)

    jan = validate_payment(ledger, 1, 1000, False, NOW)
    assert "8 previous month(s) are still pending" in jan.warnings

    may = validate_payment(ledger, 5, 1000, False, NOW)
    assert not any("previous month" in w for w in may.warnings)


def test_late_fee_included_in_expected_amount():
    ledger = build_ledger(one_time=0)
    ledger.monthly_payments[4].late_fee = 50

    without = validate_payment(ledger, 4, 1000, False, NOW)
    with_fee = validate_payment(ledger, 4, 1050, True, NOW)

    assert without.expected_amount == 1000
    assert with_fee.expected_amount == 1050
    assert with_fee.late_fee_amount == 50
    assert not any(w.startswith("Partial payment") for w in with_fee.warnings)


def test_one_time_payment_partial_then_full():
    ledger = build_ledger()

    fee = apply_one_time_payment(ledger, "admission", 200, NOW)
    assert fee.status == PaymentStatus.PARTIAL
    assert fee.paid_amount == 200

    fee = apply_one_time_payment(ledger, "admission", 300, NOW)
    assert fee.status == PaymentStatus.PAID
    assert fee.paid_date == NOW
    assert ledger.total_paid_amount == 500
    assert_ledger_consistent(ledger)


def test_one_time_payment_over_remaining_rejected():
    ledger = build_ledger()
    with pytest.raises(InvalidInputError, match=r"Payment amount \(600\) exceeds remaining due amount \(500\)"):
        apply_one_time_payment(ledger, "admission", 600, NOW)


def test_one_time_payment_unknown_or_paid_fee():
    ledger = build_ledger()
    with pytest.raises(NotFoundError, match="transport fee not found or already paid"):
        apply_one_time_payment(ledger, "transport", 100, NOW)

    apply_one_time_payment(ledger, "admission", 500, NOW)
    with pytest.raises(NotFoundError):
        apply_one_time_payment(ledger, "admission", 1, NOW)


def test_after_one_time_paid_separately_no_longer_first_payment_bundle():
    """Once money is on the ledger, monthly collections carry no one-time fees"""
    ledger = build_ledger()
    apply_one_time_payment(ledger, "admission", 200, NOW)

    result = validate_payment(ledger, 4, 1000, False, NOW)
    assert result.is_first_payment is False
    assert result.total_one_time_fee_amount == 0
    assert result.expected_amount == 1000
