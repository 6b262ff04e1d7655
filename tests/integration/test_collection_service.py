"""Integration tests for fee collection against a real database"""

import random
import pytest
from datetime import datetime
from sqlalchemy.orm import Session

from fee_ledger.domain.exceptions import AlreadySettledError, ConflictError, InvalidInputError, NotFoundError
from fee_ledger.domain.models import AuditInfo, PaymentMethod, PaymentStatus
from fee_ledger.infrastructure.database.filters import StudentFilter
from fee_ledger.infrastructure.database.models import FeeTransactionRecord, StudentFeeRecord
from fee_ledger.infrastructure.database.repositories import FeeStructureRepository, ledger_from_record
from fee_ledger.services.collection import FeeCollectionService
from fee_ledger.utils.ids import TransactionIdGenerator

from conftest import ACADEMIC_YEAR, SCHOOL_ID, TestingSessionLocal, make_structure


def stored_ledger(db: Session, student_id: str):
    db.expire_all()
    record = (
        db.query(StudentFeeRecord)
        .filter(StudentFeeRecord.student_id == student_id, StudentFeeRecord.academic_year == ACADEMIC_YEAR)
        .one()
    )
    return ledger_from_record(record)


def assert_ledger_consistent(ledger):
    assert ledger.total_paid_amount == ledger.paid_from_components
    assert ledger.total_due_amount == ledger.total_fee_amount - ledger.total_paid_amount
    assert ledger.total_due_amount >= 0


def transactions_for(db: Session, student_id: str):
    return (
        db.query(FeeTransactionRecord)
        .filter(FeeTransactionRecord.student_id == student_id)
        .order_by(FeeTransactionRecord.created_at, FeeTransactionRecord.amount)
        .all()
    )


def collect(service: FeeCollectionService, student_id: str, month: int, amount: int, **kwargs):
    return service.collect_fee(
        student_id,
        SCHOOL_ID,
        month,
        amount,
        PaymentMethod.CASH,
        "acct-1",
        academic_year=ACADEMIC_YEAR,
        **kwargs,
    )


def test_fee_status_creates_ledger_lazily(collection_service: FeeCollectionService, db: Session):
    status = collection_service.get_fee_status("STU-1", SCHOOL_ID, ACADEMIC_YEAR)

    assert status.ledger.total_fee_amount == 12500
    assert status.ledger.total_due_amount == 12500
    assert status.monthly_dues == 12000
    assert status.one_time_dues == 500
    assert status.pending_months == 12
    assert status.upcoming_due.month == 4
    assert status.upcoming_due.is_overdue is True
    assert status.recent_transactions == []

    collection_service.get_fee_status("STU-1", SCHOOL_ID, ACADEMIC_YEAR)
    assert db.query(StudentFeeRecord).count() == 1


def test_fee_status_defaults_to_current_academic_year(collection_service: FeeCollectionService):
    status = collection_service.get_fee_status("STU-1", SCHOOL_ID)
    assert status.ledger.academic_year == ACADEMIC_YEAR


def test_student_from_another_school_is_not_found(collection_service: FeeCollectionService):
    with pytest.raises(NotFoundError, match="Student not found"):
        collection_service.get_fee_status("STU-9", SCHOOL_ID, ACADEMIC_YEAR)


def test_missing_fee_structure_is_not_found(collection_service: FeeCollectionService, db: Session):
    with pytest.raises(NotFoundError, match="No fee structure has been set for Grade 7"):
        collection_service.get_fee_status("STU-4", SCHOOL_ID, ACADEMIC_YEAR)
    assert db.query(StudentFeeRecord).count() == 0


def test_malformed_academic_year_is_invalid(collection_service: FeeCollectionService):
    with pytest.raises(InvalidInputError):
        collection_service.get_fee_status("STU-1", SCHOOL_ID, "2025")


def test_first_payment_too_small_leaves_no_trace(collection_service: FeeCollectionService, db: Session):
    with pytest.raises(InvalidInputError, match="Insufficient amount"):
        collect(collection_service, "STU-1", 1, 500)

    assert db.query(FeeTransactionRecord).count() == 0
    status = collection_service.get_fee_status("STU-1", SCHOOL_ID, ACADEMIC_YEAR)
    assert status.ledger.total_paid_amount == 0
    assert status.ledger.one_time_fees["admission"].status == PaymentStatus.PENDING


def test_first_payment_records_one_time_and_monthly_transactions(
    collection_service: FeeCollectionService, db: Session
):
    receipt = collect(
        collection_service,
        "STU-1",
        1,
        1500,
        audit_info=AuditInfo(ip_address="10.0.0.5", device_info="counter-2"),
    )

    assert receipt.is_first_payment is True
    assert receipt.total_one_time_fee_amount == 500
    assert receipt.transaction.amount == 1000
    assert receipt.transaction.month == 1
    assert receipt.transaction.remarks == "First payment including ₹500 one-time fees"
    assert len(receipt.one_time_transactions) == 1
    one_time = receipt.one_time_transactions[0]
    assert (one_time.fee_type, one_time.amount) == ("admission", 500)
    assert one_time.remarks == "One-time fee (admission) - Collected with first payment"
    assert receipt.transaction.transaction_id != one_time.transaction_id

    ledger = stored_ledger(db, "STU-1")
    assert ledger.total_due_amount == 12500 - 1500
    assert ledger.monthly_payments[1].status == PaymentStatus.PAID
    assert ledger.one_time_fees["admission"].status == PaymentStatus.PAID
    assert_ledger_consistent(ledger)

    rows = transactions_for(db, "STU-1")
    assert sorted(r.amount for r in rows) == [500, 1000]
    assert all(r.collected_by == "acct-1" and r.payment_method == "cash" for r in rows)
    assert all(r.audit_ip_address == "10.0.0.5" and r.audit_device_info == "counter-2" for r in rows)
    assert all(r.created_at == datetime(2025, 6, 15, 10, 0, 0) for r in rows)


def test_explicit_remarks_kept_on_first_payment(collection_service: FeeCollectionService):
    receipt = collect(collection_service, "STU-1", 4, 1500, remarks="Paid by guardian")
    assert receipt.transaction.remarks == "Paid by guardian"


def test_partial_payment_reduces_due_by_amount(collection_service: FeeCollectionService, db: Session):
    collect(collection_service, "STU-1", 1, 1500)
    before = stored_ledger(db, "STU-1").total_due_amount

    receipt = collect(collection_service, "STU-1", 2, 400)

    assert any("Remaining: ₹600" in w for w in receipt.warnings)
    assert receipt.is_first_payment is False
    ledger = stored_ledger(db, "STU-1")
    assert ledger.monthly_payments[2].status == PaymentStatus.PARTIAL
    assert ledger.monthly_payments[2].paid_amount == 400
    assert ledger.total_due_amount == before - 400
    assert_ledger_consistent(ledger)


def test_second_full_payment_for_month_is_already_settled(collection_service: FeeCollectionService, db: Session):
    collect(collection_service, "STU-3", 4, 2000)

    with pytest.raises(AlreadySettledError, match="already fully paid"):
        collect(collection_service, "STU-3", 4, 2000)

    assert len(transactions_for(db, "STU-3")) == 1


def test_concurrent_full_payments_record_only_one(collection_service: FeeCollectionService, db: Session, clock):
    """
    A second writer commits between our read and our write; the version
    guard forces a re-read and the month is then already settled.
    """
    collection_service.get_fee_status("STU-3", SCHOOL_ID, ACADEMIC_YEAR)

    other_db = TestingSessionLocal()
    try:
        other = FeeCollectionService(
            other_db,
            clock=clock,
            id_generator=TransactionIdGenerator(clock=clock, rng=random.Random(99)),
        )
        original_save = collection_service.ledgers.save
        raced = []

        def racing_save(record, ledger):
            if not raced:
                raced.append(True)
                collect(other, "STU-3", 4, 2000)
            return original_save(record, ledger)

        collection_service.ledgers.save = racing_save

        with pytest.raises(AlreadySettledError):
            collect(collection_service, "STU-3", 4, 2000)
    finally:
        other_db.close()

    ledger = stored_ledger(db, "STU-3")
    assert ledger.monthly_payments[4].paid_amount == 2000
    assert ledger.total_paid_amount == 2000
    assert len(transactions_for(db, "STU-3")) == 1


def test_transaction_id_collision_is_redrawn(db: Session, clock, seeded):
    ids = iter(["TXN-1-AAAAAA", "TXN-1-AAAAAA", "TXN-1-BBBBBB"])
    service = FeeCollectionService(db, clock=clock, id_generator=lambda: next(ids))

    first = collect(service, "STU-3", 4, 2000)
    second = collect(service, "STU-3", 5, 2000)

    assert first.transaction.transaction_id == "TXN-1-AAAAAA"
    assert second.transaction.transaction_id == "TXN-1-BBBBBB"


def test_transaction_id_exhaustion_is_a_conflict(db: Session, clock, seeded):
    service = FeeCollectionService(db, clock=clock, id_generator=lambda: "TXN-1-AAAAAA")
    collect(service, "STU-3", 4, 2000)

    with pytest.raises(ConflictError):
        collect(service, "STU-3", 5, 2000)

    assert stored_ledger(db, "STU-3").monthly_payments[5].paid_amount == 0


def test_collect_one_time_fee_separately(collection_service: FeeCollectionService, db: Session):
    receipt = collection_service.collect_one_time_fee(
        "STU-1", SCHOOL_ID, "admission", 200, PaymentMethod.UPI, "acct-2", academic_year=ACADEMIC_YEAR
    )

    assert receipt.one_time_fee.status == PaymentStatus.PARTIAL
    assert receipt.transaction.fee_type == "admission"
    assert receipt.transaction.month is None
    assert receipt.transaction.remarks == "admission fee payment"

    # Money is already on the ledger, so the monthly collection no longer bundles one-time fees
    monthly = collect(collection_service, "STU-1", 4, 1000)
    assert monthly.is_first_payment is False
    assert monthly.one_time_transactions == []

    ledger = stored_ledger(db, "STU-1")
    assert ledger.total_paid_amount == 1200
    assert_ledger_consistent(ledger)


def test_collect_one_time_fee_over_remaining(collection_service: FeeCollectionService):
    with pytest.raises(InvalidInputError, match="exceeds remaining due amount"):
        collection_service.collect_one_time_fee(
            "STU-1", SCHOOL_ID, "admission", 900, PaymentMethod.CASH, "acct-1", academic_year=ACADEMIC_YEAR
        )


def test_late_fee_and_waiver(collection_service: FeeCollectionService, db: Session):
    ledger = collection_service.apply_late_fee("STU-3", SCHOOL_ID, 4, 5, ACADEMIC_YEAR)
    assert ledger.monthly_payments[4].late_fee == 100

    collection_service.waive_month("STU-3", SCHOOL_ID, 5, "Scholarship", "admin-1", ACADEMIC_YEAR)

    stored = stored_ledger(db, "STU-3")
    assert stored.monthly_payments[4].late_fee == 100
    assert stored.monthly_payments[5].waived is True
    assert stored.monthly_payments[5].waived_by == "admin-1"

    with pytest.raises(AlreadySettledError, match="waived"):
        collect(collection_service, "STU-3", 5, 2000)

    receipt = collect(collection_service, "STU-3", 4, 2100, include_late_fee=True)
    assert not any(w.startswith("Partial payment") for w in receipt.warnings)


def test_ledger_migrates_to_newer_structure(collection_service: FeeCollectionService, db: Session):
    collect(collection_service, "STU-3", 4, 2000)

    newer = make_structure("6", 2400, created_at=datetime(2025, 5, 1))
    FeeStructureRepository(db).add(newer)
    db.commit()

    status = collection_service.get_fee_status("STU-3", SCHOOL_ID, ACADEMIC_YEAR)

    assert status.ledger.fee_structure_id == newer.id
    assert status.ledger.monthly_payments[4].paid_amount == 2000
    assert status.ledger.monthly_payments[4].due_amount == 2000
    assert status.ledger.monthly_payments[4].status == PaymentStatus.PAID
    assert status.ledger.monthly_payments[5].due_amount == 2400
    stored = stored_ledger(db, "STU-3")
    assert stored.fee_structure_id == newer.id
    assert_ledger_consistent(stored)


def test_validate_payment_is_advisory(collection_service: FeeCollectionService, db: Session):
    result = collection_service.validate_payment("STU-1", SCHOOL_ID, 4, 500, academic_year=ACADEMIC_YEAR)

    assert result.valid is False
    assert result.errors[0].startswith("Insufficient amount")
    assert db.query(FeeTransactionRecord).count() == 0


def test_list_students_by_grade_and_search(collection_service: FeeCollectionService):
    grade5 = collection_service.list_students(StudentFilter(school_id=SCHOOL_ID, grade="5"), ACADEMIC_YEAR)
    assert [s.student.id for s in grade5] == ["STU-1", "STU-2"]
    assert all(s.ledger.total_fee_amount == 12500 for s in grade5)

    found = collection_service.list_students(StudentFilter(school_id=SCHOOL_ID, search="meera"), ACADEMIC_YEAR)
    assert [s.student.id for s in found] == ["STU-3"]

    no_structure = collection_service.list_students(StudentFilter(school_id=SCHOOL_ID, grade="7"), ACADEMIC_YEAR)
    assert [s.student.id for s in no_structure] == ["STU-4"]
    assert no_structure[0].ledger is None


def test_search_student_within_school(collection_service: FeeCollectionService):
    assert collection_service.search_student("STU-2", SCHOOL_ID).name == "Vikram Singh"

    with pytest.raises(NotFoundError):
        collection_service.search_student("STU-9", SCHOOL_ID)
