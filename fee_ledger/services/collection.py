"""Fee collection: ledger access, validation and payment application"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from fee_ledger.config import Settings
from fee_ledger.domain.exceptions import AlreadySettledError, InvalidInputError, NotFoundError
from fee_ledger.domain.ledger import apply_late_fee, create_ledger, migrate_ledger, waive_month
from fee_ledger.domain.models import (
    AuditInfo,
    FeeTransaction,
    MonthlyPayment,
    OneTimeFee,
    PaymentMethod,
    PaymentStatus,
    StudentFeeLedger,
    ValidationResult,
)
from fee_ledger.domain.payments import apply_one_time_payment, apply_payment, validate_payment
from fee_ledger.infrastructure.database.filters import StudentFilter
from fee_ledger.infrastructure.database.models import FeeTransactionRecord, Student, StudentFeeRecord
from fee_ledger.infrastructure.database.repositories import (
    FeeStructureRepository,
    LedgerRepository,
    StudentRepository,
    TransactionRepository,
    ledger_from_record,
)
from fee_ledger.infrastructure.observability.logging import log_collection
from fee_ledger.infrastructure.observability.metrics import collection_rejected_counter, record_collection
from fee_ledger.services.base import BaseService
from fee_ledger.utils.date_utils import current_academic_year, parse_academic_year, start_of_day, utcnow
from fee_ledger.utils.ids import TransactionIdGenerator

logger = logging.getLogger(__name__)


@dataclass
class UpcomingDue:
    month: int
    amount: int
    due_date: datetime
    is_overdue: bool


@dataclass
class FeeStatus:
    """Ledger view returned to the counter"""

    student: Student
    ledger: StudentFeeLedger
    upcoming_due: Optional[UpcomingDue]
    recent_transactions: List[FeeTransactionRecord]
    monthly_dues: int
    one_time_dues: int
    pending_months: int


@dataclass
class CollectionReceipt:
    transaction: FeeTransaction
    ledger: StudentFeeLedger
    warnings: List[str]
    is_first_payment: bool
    total_one_time_fee_amount: int
    one_time_transactions: List[FeeTransaction] = field(default_factory=list)


@dataclass
class OneTimeReceipt:
    transaction: FeeTransaction
    ledger: StudentFeeLedger
    one_time_fee: OneTimeFee


@dataclass
class StudentFeeSummary:
    student: Student
    ledger: Optional[StudentFeeLedger]


def _upcoming_due(ledger: StudentFeeLedger, now: datetime) -> Optional[UpcomingDue]:
    for entry in ledger.schedule():
        if entry.status != PaymentStatus.PAID and not entry.waived:
            return UpcomingDue(
                month=entry.month,
                amount=entry.remaining,
                due_date=start_of_day(entry.due_date),
                is_overdue=start_of_day(entry.due_date) < now,
            )
    return None


def _unsettled(ledger: StudentFeeLedger) -> List[MonthlyPayment]:
    return [p for p in ledger.schedule() if p.status != PaymentStatus.PAID and not p.waived]


class FeeCollectionService(BaseService):
    """Handles fee status, validation and collection for accountants"""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        config: Settings | None = None,
        id_generator: Callable[[], str] | None = None,
    ):
        super().__init__(db, clock, config)
        self.students = StudentRepository(db)
        self.structures = FeeStructureRepository(db)
        self.ledgers = LedgerRepository(db)
        self.transactions = TransactionRepository(db)
        self.next_id = id_generator or TransactionIdGenerator(clock=clock)

    # ------------------------------------------------------------------ ledger access

    def _resolve_year(self, academic_year: Optional[str]) -> str:
        if academic_year:
            parse_academic_year(academic_year)
            return academic_year
        return current_academic_year(self.clock().date(), self.config.academic_year_start_month)

    def _get_student(self, student_id: str, school_id: str) -> Student:
        student = self.students.get_in_school(student_id, school_id)
        if student is None:
            raise NotFoundError("Student not found")
        return student

    def _open_ledger(self, student: Student, academic_year: str) -> Tuple[StudentFeeRecord, StudentFeeLedger]:
        """
        Load the student's ledger, creating it or migrating it onto the latest
        active fee structure first. Writes are flushed, not committed.
        """
        structure = self.structures.get_latest_active(student.school_id, student.grade, academic_year)
        record = self.ledgers.get_record(student.id, academic_year)

        if record is None:
            if structure is None:
                raise NotFoundError(
                    f"No fee structure has been set for Grade {student.grade} in academic year "
                    f"{academic_year}. Please ask the admin to create a fee structure for this grade first."
                )
            ledger = create_ledger(
                student.id,
                structure,
                start_month=self.config.academic_year_start_month,
                default_due_day=self.config.default_due_day,
            )
            record = self.ledgers.add(ledger)
            logger.info(
                "Ledger created",
                extra={"student_id": student.id, "ledger_id": str(record.id), "academic_year": academic_year},
            )
            return record, ledger

        ledger = ledger_from_record(record)
        if structure is not None and migrate_ledger(
            ledger,
            structure,
            start_month=self.config.academic_year_start_month,
            default_due_day=self.config.default_due_day,
        ):
            self.ledgers.save(record, ledger)
            logger.info(
                "Ledger migrated to new fee structure",
                extra={"student_id": student.id, "ledger_id": str(record.id), "fee_structure_id": str(structure.id)},
            )
        return record, ledger

    def _append_transaction(
        self,
        ledger: StudentFeeLedger,
        amount: int,
        payment_method: PaymentMethod,
        collected_by: str,
        now: datetime,
        audit_info: Optional[AuditInfo],
        month: Optional[int] = None,
        fee_type: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> FeeTransaction:
        txn = FeeTransaction(
            transaction_id=self.transactions.next_transaction_id(
                ledger.school_id, self.next_id, self.config.transaction_id_max_retries
            ),
            student_id=ledger.student_id,
            ledger_id=ledger.id,
            school_id=ledger.school_id,
            amount=amount,
            payment_method=payment_method,
            collected_by=collected_by,
            created_at=now,
            month=month,
            fee_type=fee_type,
            remarks=remarks,
            audit=audit_info or AuditInfo(),
        )
        self.transactions.add(txn)
        self.db.flush()
        return txn

    # ------------------------------------------------------------------ queries

    def search_student(self, student_id: str, school_id: str) -> Student:
        return self._get_student(student_id, school_id)

    def get_fee_status(self, student_id: str, school_id: str, academic_year: Optional[str] = None) -> FeeStatus:
        """Fee status of a student, lazily creating or migrating the ledger"""
        year = self._resolve_year(academic_year)

        def operation() -> FeeStatus:
            student = self._get_student(student_id, school_id)
            record, ledger = self._open_ledger(student, year)
            now = self.clock()
            unsettled = _unsettled(ledger)
            return FeeStatus(
                student=student,
                ledger=ledger,
                upcoming_due=_upcoming_due(ledger, now),
                recent_transactions=self.transactions.recent_for_ledger(
                    record.id, self.config.recent_transactions_limit
                ),
                monthly_dues=sum(p.remaining for p in unsettled),
                one_time_dues=sum(f.remaining for f in ledger.outstanding_one_time_fees()),
                pending_months=len(unsettled),
            )

        return self.run_in_transaction(operation)

    def list_students(self, filters: StudentFilter, academic_year: Optional[str] = None) -> List[StudentFeeSummary]:
        """Students of a school with their ledger, where a fee structure exists"""
        year = self._resolve_year(academic_year)
        summaries = []
        for student in self.students.list(filters):
            try:
                _, ledger = self.run_in_transaction(lambda: self._open_ledger(student, year))
            except NotFoundError:
                ledger = None
            summaries.append(StudentFeeSummary(student=student, ledger=ledger))
        return summaries

    def validate_payment(
        self,
        student_id: str,
        school_id: str,
        month: int,
        amount: int,
        include_late_fee: bool = False,
        academic_year: Optional[str] = None,
    ) -> ValidationResult:
        """Advisory check; takes no lock and never records money"""
        year = self._resolve_year(academic_year)

        def operation() -> ValidationResult:
            student = self._get_student(student_id, school_id)
            _, ledger = self._open_ledger(student, year)
            return validate_payment(ledger, month, amount, include_late_fee, self.clock())

        return self.run_in_transaction(operation)

    # ------------------------------------------------------------------ collections

    def collect_fee(
        self,
        student_id: str,
        school_id: str,
        month: int,
        amount: int,
        payment_method: PaymentMethod,
        collected_by: str,
        remarks: Optional[str] = None,
        include_late_fee: bool = False,
        audit_info: Optional[AuditInfo] = None,
        academic_year: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> CollectionReceipt:
        """
        Collect a monthly fee (plus pending one-time fees on a first payment).

        The ledger update and every transaction row commit together. A lost
        race on the ledger version re-reads and re-validates, so a second
        full payment for the same month is refused as already settled.
        """
        start_time = time.time()
        year = self._resolve_year(academic_year)

        def operation() -> CollectionReceipt:
            student = self._get_student(student_id, school_id)
            record, ledger = self._open_ledger(student, year)
            now = self.clock()

            application = apply_payment(ledger, month, amount, include_late_fee, now)
            self.ledgers.save(record, ledger)

            one_time_transactions = [
                self._append_transaction(
                    ledger,
                    payment.amount,
                    payment_method,
                    collected_by,
                    now,
                    audit_info,
                    fee_type=payment.fee_type,
                    remarks=f"One-time fee ({payment.fee_type}) - Collected with first payment",
                )
                for payment in application.one_time_payments
            ]

            validation = application.validation
            total_one_time = validation.total_one_time_fee_amount
            if not remarks and validation.is_first_payment and total_one_time > 0:
                monthly_remarks = f"First payment including ₹{total_one_time} one-time fees"
            else:
                monthly_remarks = remarks

            transaction = self._append_transaction(
                ledger,
                application.monthly_transaction_amount,
                payment_method,
                collected_by,
                now,
                audit_info,
                month=month,
                remarks=monthly_remarks,
            )

            return CollectionReceipt(
                transaction=transaction,
                one_time_transactions=one_time_transactions,
                ledger=ledger,
                warnings=validation.warnings,
                is_first_payment=validation.is_first_payment,
                total_one_time_fee_amount=total_one_time,
            )

        receipt = self._collect(operation)

        record_collection("monthly", payment_method.value, amount)
        log_collection(
            request_id,
            student_id,
            str(receipt.ledger.id),
            "monthly",
            amount,
            [receipt.transaction.transaction_id] + [t.transaction_id for t in receipt.one_time_transactions],
            (time.time() - start_time) * 1000,
        )
        return receipt

    def collect_one_time_fee(
        self,
        student_id: str,
        school_id: str,
        fee_type: str,
        amount: int,
        payment_method: PaymentMethod,
        collected_by: str,
        remarks: Optional[str] = None,
        audit_info: Optional[AuditInfo] = None,
        academic_year: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> OneTimeReceipt:
        """Collect (part of) a one-time fee such as admission on its own"""
        start_time = time.time()
        year = self._resolve_year(academic_year)

        def operation() -> OneTimeReceipt:
            student = self._get_student(student_id, school_id)
            record, ledger = self._open_ledger(student, year)
            now = self.clock()

            fee = apply_one_time_payment(ledger, fee_type, amount, now)
            self.ledgers.save(record, ledger)

            transaction = self._append_transaction(
                ledger,
                amount,
                payment_method,
                collected_by,
                now,
                audit_info,
                fee_type=fee_type,
                remarks=remarks or f"{fee_type} fee payment",
            )
            return OneTimeReceipt(transaction=transaction, ledger=ledger, one_time_fee=fee)

        receipt = self._collect(operation)

        record_collection("one_time", payment_method.value, amount)
        log_collection(
            request_id,
            student_id,
            str(receipt.ledger.id),
            "one_time",
            amount,
            [receipt.transaction.transaction_id],
            (time.time() - start_time) * 1000,
        )
        return receipt

    def _collect(self, operation):
        try:
            return self.run_in_transaction(operation)
        except InvalidInputError:
            collection_rejected_counter.labels(reason="invalid_input").inc()
            raise
        except AlreadySettledError:
            collection_rejected_counter.labels(reason="already_settled").inc()
            raise
        except NotFoundError:
            collection_rejected_counter.labels(reason="not_found").inc()
            raise

    # ------------------------------------------------------------------ adjustments

    def apply_late_fee(
        self,
        student_id: str,
        school_id: str,
        month: int,
        percentage: float,
        academic_year: Optional[str] = None,
    ) -> StudentFeeLedger:
        year = self._resolve_year(academic_year)

        def operation() -> StudentFeeLedger:
            student = self._get_student(student_id, school_id)
            record, ledger = self._open_ledger(student, year)
            if apply_late_fee(ledger, month, percentage, self.clock()):
                self.ledgers.save(record, ledger)
            return ledger

        return self.run_in_transaction(operation)

    def waive_month(
        self,
        student_id: str,
        school_id: str,
        month: int,
        reason: str,
        waived_by: str,
        academic_year: Optional[str] = None,
    ) -> StudentFeeLedger:
        year = self._resolve_year(academic_year)

        def operation() -> StudentFeeLedger:
            student = self._get_student(student_id, school_id)
            record, ledger = self._open_ledger(student, year)
            waive_month(ledger, month, reason, waived_by, self.clock())
            self.ledgers.save(record, ledger)
            logger.info(
                "Month waived",
                extra={"student_id": student_id, "ledger_id": str(ledger.id), "month": month, "waived_by": waived_by},
            )
            return ledger

        return self.run_in_transaction(operation)
