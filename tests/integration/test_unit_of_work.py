"""Tests for the shared transaction and retry plumbing"""

import uuid
import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fee_ledger.domain.exceptions import ConflictError
from fee_ledger.infrastructure.database.models import FeeTransactionRecord, Student
from fee_ledger.services.base import BaseService, is_unique_violation

from conftest import NOW, SCHOOL_ID


class FakePgError(Exception):
    def __init__(self, pgcode: str):
        super().__init__(f"SQLSTATE {pgcode}")
        self.pgcode = pgcode


def integrity_error(orig: Exception) -> IntegrityError:
    return IntegrityError("INSERT INTO students ...", {}, orig)


def transaction_row(transaction_id: str) -> FeeTransactionRecord:
    return FeeTransactionRecord(
        transaction_id=transaction_id,
        student_id="STU-1",
        ledger_id=uuid.uuid4(),
        school_id=SCHOOL_ID,
        amount=100,
        payment_method="cash",
        collected_by="acct-1",
        audit_timestamp=NOW,
        created_at=NOW,
    )


def test_is_unique_violation():
    assert is_unique_violation(integrity_error(FakePgError("23505")))
    assert is_unique_violation(integrity_error(Exception("UNIQUE constraint failed: students.id")))
    # foreign key / not null
    assert not is_unique_violation(integrity_error(FakePgError("23503")))
    assert not is_unique_violation(integrity_error(FakePgError("23502")))
    assert not is_unique_violation(integrity_error(Exception("NOT NULL constraint failed: students.school_id")))


def test_duplicate_key_is_retried_then_conflict(db: Session, clock, seeded):
    service = BaseService(db, clock=clock)
    calls = []

    def operation():
        calls.append(1)
        db.add_all([transaction_row("TXN-1-AAAAAA"), transaction_row("TXN-1-AAAAAA")])
        db.flush()

    with pytest.raises(ConflictError):
        service.run_in_transaction(operation, max_attempts=3)

    assert len(calls) == 3


def test_not_null_violation_is_not_retried(db: Session, clock, seeded):
    service = BaseService(db, clock=clock)
    calls = []

    def operation():
        calls.append(1)
        db.add(Student(id="STU-50", school_id=None, grade="5", name="No school"))
        db.flush()

    with pytest.raises(IntegrityError):
        service.run_in_transaction(operation, max_attempts=3)

    assert len(calls) == 1
    assert db.get(Student, "STU-50") is None
