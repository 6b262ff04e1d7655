"""Data access layer for fee ledger entities"""

import uuid
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import func, or_, text
from sqlalchemy.orm import Query, Session

from fee_ledger.domain.exceptions import ConflictError
from fee_ledger.domain.models import (
    TRANSACTION_STATUS_COMPLETED,
    TRANSACTION_TYPE_PAYMENT,
    DefaulterSnapshot,
    FeeComponent,
    FeeStructure,
    FeeTransaction,
    MonthlyPayment,
    OneTimeFee,
    PaymentStatus,
    StudentFeeLedger,
)
from fee_ledger.domain.reporting import CollectionBucket
from fee_ledger.infrastructure.database.filters import DefaulterFilter, StudentFilter, TransactionFilter
from fee_ledger.infrastructure.database.models import (
    FeeDefaulterRecord,
    FeeStructureRecord,
    FeeTransactionRecord,
    Student,
    StudentFeeRecord,
)


class StudentRepository:
    """Read access to the student roster"""

    def __init__(self, db: Session):
        self.db = db

    def get_in_school(self, student_id: str, school_id: str) -> Optional[Student]:
        return (
            self.db.query(Student)
            .filter(Student.id == student_id, Student.school_id == school_id)
            .first()
        )

    def list(self, filters: StudentFilter) -> List[Student]:
        query = self.db.query(Student).filter(Student.school_id == filters.school_id)
        if filters.active_only:
            query = query.filter(Student.is_active.is_(True))
        if filters.grade is not None:
            query = query.filter(Student.grade == filters.grade)
        if filters.section is not None:
            query = query.filter(Student.section == filters.section)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.filter(or_(Student.name.ilike(pattern), Student.id.ilike(pattern)))
        return query.order_by(Student.grade, Student.section, Student.roll_number).all()


def structure_from_record(record: FeeStructureRecord) -> FeeStructure:
    return FeeStructure(
        id=record.id,
        school_id=record.school_id,
        grade=record.grade,
        academic_year=record.academic_year,
        monthly_amount=record.monthly_amount,
        one_time_components=[
            FeeComponent(
                fee_type=c["fee_type"],
                amount=int(c["amount"]),
                is_one_time=c.get("is_one_time", True),
            )
            for c in record.one_time_components or []
        ],
        due_day=record.due_day,
        is_active=record.is_active,
        created_at=record.created_at,
    )


class FeeStructureRepository:
    """Read access to the versioned fee catalog"""

    def __init__(self, db: Session):
        self.db = db

    def get_latest_active(self, school_id: str, grade: str, academic_year: str) -> Optional[FeeStructure]:
        """Most recently created active structure for a school/grade/year"""
        record = (
            self.db.query(FeeStructureRecord)
            .filter(
                FeeStructureRecord.school_id == school_id,
                FeeStructureRecord.grade == grade,
                FeeStructureRecord.academic_year == academic_year,
                FeeStructureRecord.is_active.is_(True),
            )
            .order_by(FeeStructureRecord.created_at.desc())
            .first()
        )
        return structure_from_record(record) if record else None

    def add(self, structure: FeeStructure) -> FeeStructureRecord:
        record = FeeStructureRecord(
            id=structure.id,
            school_id=structure.school_id,
            grade=structure.grade,
            academic_year=structure.academic_year,
            monthly_amount=structure.monthly_amount,
            one_time_components=[
                {"fee_type": c.fee_type, "amount": c.amount, "is_one_time": c.is_one_time}
                for c in structure.one_time_components
            ],
            due_day=structure.due_day,
            is_active=structure.is_active,
            created_at=structure.created_at,
        )
        self.db.add(record)
        self.db.flush()
        return record


def ledger_from_record(record: StudentFeeRecord) -> StudentFeeLedger:
    """Rebuild the ledger aggregate, keying installments by month and fees by type"""
    monthly = [MonthlyPayment.from_dict(p) for p in record.monthly_payments]
    fees = [OneTimeFee.from_dict(f) for f in record.one_time_fees or []]
    return StudentFeeLedger(
        id=record.id,
        version=record.version,
        student_id=record.student_id,
        school_id=record.school_id,
        grade=record.grade,
        academic_year=record.academic_year,
        fee_structure_id=record.fee_structure_id,
        total_fee_amount=record.total_fee_amount,
        total_paid_amount=record.total_paid_amount,
        total_due_amount=record.total_due_amount,
        status=PaymentStatus(record.status),
        monthly_payments={p.month: p for p in monthly},
        one_time_fees={f.fee_type: f for f in fees},
    )


def _copy_ledger_state(ledger: StudentFeeLedger, record: StudentFeeRecord) -> None:
    # Fresh list objects so the JSON columns are always flagged dirty
    record.grade = ledger.grade
    record.fee_structure_id = ledger.fee_structure_id
    record.total_fee_amount = ledger.total_fee_amount
    record.total_paid_amount = ledger.total_paid_amount
    record.total_due_amount = ledger.total_due_amount
    record.status = ledger.status.value
    record.monthly_payments = [p.to_dict() for p in ledger.schedule()]
    record.one_time_fees = [f.to_dict() for f in ledger.one_time_fees.values()]


class LedgerRepository:
    """Repository for student fee ledgers"""

    def __init__(self, db: Session):
        self.db = db

    def get_record(self, student_id: str, academic_year: str) -> Optional[StudentFeeRecord]:
        return (
            self.db.query(StudentFeeRecord)
            .filter(
                StudentFeeRecord.student_id == student_id,
                StudentFeeRecord.academic_year == academic_year,
            )
            .first()
        )

    def add(self, ledger: StudentFeeLedger) -> StudentFeeRecord:
        """Insert a new ledger; assigns its id and version"""
        record = StudentFeeRecord(
            student_id=ledger.student_id,
            school_id=ledger.school_id,
            academic_year=ledger.academic_year,
        )
        _copy_ledger_state(ledger, record)
        self.db.add(record)
        self.db.flush()
        ledger.id = record.id
        ledger.version = record.version
        return record

    def save(self, record: StudentFeeRecord, ledger: StudentFeeLedger) -> None:
        """
        Write the aggregate back under its version guard.

        Raises:
            sqlalchemy.orm.exc.StaleDataError: another writer committed first
        """
        _copy_ledger_state(ledger, record)
        self.db.flush()
        ledger.version = record.version

    def iter_for_school(self, school_id: str, batch_size: int = 500) -> Iterator[StudentFeeRecord]:
        """Stream every ledger of a school without loading them all at once"""
        return (
            self.db.query(StudentFeeRecord)
            .filter(StudentFeeRecord.school_id == school_id)
            .order_by(StudentFeeRecord.id)
            .yield_per(batch_size)
        )

    def pending_dues(self, school_id: str, academic_year: str) -> Tuple[int, int]:
        """(sum of totalDueAmount, ledger count) for a school's academic year"""
        total, count = (
            self.db.query(
                func.coalesce(func.sum(StudentFeeRecord.total_due_amount), 0),
                func.count(StudentFeeRecord.id),
            )
            .filter(
                StudentFeeRecord.school_id == school_id,
                StudentFeeRecord.academic_year == academic_year,
            )
            .one()
        )
        return int(total), int(count)


class TransactionRepository:
    """Append-only access to the fee transaction log"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, school_id: str, transaction_id: str) -> bool:
        return (
            self.db.query(FeeTransactionRecord.id)
            .filter(
                FeeTransactionRecord.school_id == school_id,
                FeeTransactionRecord.transaction_id == transaction_id,
            )
            .first()
            is not None
        )

    def next_transaction_id(self, school_id: str, generate: Callable[[], str], max_retries: int) -> str:
        """Draw ids until one is unused within the school"""
        for _ in range(max_retries):
            candidate = generate()
            if not self.exists(school_id, candidate):
                return candidate
        raise ConflictError(f"Could not allocate a unique transaction id after {max_retries} attempts")

    def add(self, txn: FeeTransaction) -> FeeTransactionRecord:
        record = FeeTransactionRecord(
            transaction_id=txn.transaction_id,
            student_id=txn.student_id,
            ledger_id=txn.ledger_id,
            school_id=txn.school_id,
            transaction_type=txn.transaction_type,
            amount=txn.amount,
            payment_method=txn.payment_method.value,
            month=txn.month,
            fee_type=txn.fee_type,
            collected_by=txn.collected_by,
            remarks=txn.remarks,
            status=txn.status,
            audit_ip_address=txn.audit.ip_address,
            audit_device_info=txn.audit.device_info,
            audit_timestamp=txn.created_at,
            created_at=txn.created_at,
        )
        self.db.add(record)
        return record

    def recent_for_ledger(self, ledger_id: uuid.UUID, limit: int = 10) -> List[FeeTransactionRecord]:
        return (
            self.db.query(FeeTransactionRecord)
            .filter(FeeTransactionRecord.ledger_id == ledger_id)
            .order_by(FeeTransactionRecord.created_at.desc())
            .limit(limit)
            .all()
        )

    def _filtered(self, query: Query, filters: TransactionFilter) -> Query:
        query = query.filter(FeeTransactionRecord.school_id == filters.school_id)
        if filters.completed_payments_only:
            query = query.filter(
                FeeTransactionRecord.transaction_type == TRANSACTION_TYPE_PAYMENT,
                FeeTransactionRecord.status == TRANSACTION_STATUS_COMPLETED,
            )
        if filters.start is not None:
            query = query.filter(FeeTransactionRecord.created_at >= filters.start)
        if filters.end is not None:
            query = query.filter(FeeTransactionRecord.created_at < filters.end)
        if filters.collected_by is not None:
            query = query.filter(FeeTransactionRecord.collected_by == filters.collected_by)
        if filters.student_id is not None:
            query = query.filter(FeeTransactionRecord.student_id == filters.student_id)
        return query

    def list(self, filters: TransactionFilter, limit: Optional[int] = None) -> List[FeeTransactionRecord]:
        query = self._filtered(self.db.query(FeeTransactionRecord), filters).order_by(
            FeeTransactionRecord.created_at.desc()
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def totals(self, filters: TransactionFilter) -> Tuple[int, int]:
        total, count = self._filtered(
            self.db.query(
                func.coalesce(func.sum(FeeTransactionRecord.amount), 0),
                func.count(FeeTransactionRecord.id),
            ),
            filters,
        ).one()
        return int(total), int(count)

    def _grouped(self, key_column, filters: TransactionFilter, query: Optional[Query] = None) -> Query:
        base = query if query is not None else self.db.query(
            key_column,
            func.sum(FeeTransactionRecord.amount),
            func.count(FeeTransactionRecord.id),
        )
        return self._filtered(base, filters).group_by(key_column)

    @staticmethod
    def _buckets(rows: Iterable) -> List[CollectionBucket]:
        return [CollectionBucket(key=str(key), total_amount=int(total), count=int(count)) for key, total, count in rows]

    def by_payment_method(self, filters: TransactionFilter) -> List[CollectionBucket]:
        rows = self._grouped(FeeTransactionRecord.payment_method, filters).order_by(
            FeeTransactionRecord.payment_method
        )
        return self._buckets(rows.all())

    def daily_breakdown(self, filters: TransactionFilter) -> List[CollectionBucket]:
        day = func.date(FeeTransactionRecord.created_at)
        rows = self._grouped(day, filters).order_by(day)
        return self._buckets(rows.all())

    def by_grade(self, filters: TransactionFilter) -> List[CollectionBucket]:
        query = self.db.query(
            StudentFeeRecord.grade,
            func.sum(FeeTransactionRecord.amount),
            func.count(FeeTransactionRecord.id),
        ).join(StudentFeeRecord, StudentFeeRecord.id == FeeTransactionRecord.ledger_id)
        rows = self._grouped(StudentFeeRecord.grade, filters, query).order_by(StudentFeeRecord.grade)
        return self._buckets(rows.all())

    def top_collectors(self, filters: TransactionFilter, limit: int = 5) -> List[CollectionBucket]:
        total = func.sum(FeeTransactionRecord.amount)
        query = self.db.query(
            FeeTransactionRecord.collected_by,
            total,
            func.count(FeeTransactionRecord.id),
        )
        rows = (
            self._grouped(FeeTransactionRecord.collected_by, filters, query)
            .order_by(total.desc(), FeeTransactionRecord.collected_by)
            .limit(limit)
        )
        return self._buckets(rows.all())


class DefaulterRepository:
    """Repository for the materialized defaulters index"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, defaulter_id: uuid.UUID) -> Optional[FeeDefaulterRecord]:
        return self.db.get(FeeDefaulterRecord, defaulter_id)

    def get_by_key(self, student_id: str, ledger_id: uuid.UUID) -> Optional[FeeDefaulterRecord]:
        return (
            self.db.query(FeeDefaulterRecord)
            .filter(
                FeeDefaulterRecord.student_id == student_id,
                FeeDefaulterRecord.ledger_id == ledger_id,
            )
            .first()
        )

    def lock_school(self, school_id: str) -> None:
        """
        Hold a transaction-scoped advisory lock on the school (Postgres only).

        Sync runs in other workers or batch processes block here until the
        holder commits or rolls back. Other dialects rely on the in-process lock.
        """
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:school_id))"), {"school_id": school_id})

    def upsert(self, snapshot: DefaulterSnapshot) -> bool:
        """
        Insert or refresh the row keyed on (student, ledger).

        Reminder bookkeeping (notificationCount, lastReminderDate) is never
        touched here. Returns True when a row was inserted or its content changed.
        """
        record = self.get_by_key(snapshot.student_id, snapshot.ledger_id)
        if record is None:
            self.db.add(
                FeeDefaulterRecord(
                    student_id=snapshot.student_id,
                    ledger_id=snapshot.ledger_id,
                    school_id=snapshot.school_id,
                    grade=snapshot.grade,
                    total_due_amount=snapshot.total_due_amount,
                    overdue_months=list(snapshot.overdue_months),
                    days_since_first_due=snapshot.days_since_first_due,
                    notification_count=0,
                )
            )
            self.db.flush()
            return True

        changed = (
            record.school_id != snapshot.school_id
            or record.grade != snapshot.grade
            or record.total_due_amount != snapshot.total_due_amount
            or list(record.overdue_months) != list(snapshot.overdue_months)
            or record.days_since_first_due != snapshot.days_since_first_due
        )
        if changed:
            record.school_id = snapshot.school_id
            record.grade = snapshot.grade
            record.total_due_amount = snapshot.total_due_amount
            record.overdue_months = list(snapshot.overdue_months)
            record.days_since_first_due = snapshot.days_since_first_due
            self.db.flush()
        return changed

    def evict_except(self, school_id: str, keep: Set[Tuple[str, uuid.UUID]]) -> int:
        """Delete every row of the school whose (student, ledger) is not in `keep`"""
        removed = 0
        for record in self.db.query(FeeDefaulterRecord).filter(FeeDefaulterRecord.school_id == school_id).all():
            if (record.student_id, record.ledger_id) not in keep:
                self.db.delete(record)
                removed += 1
        self.db.flush()
        return removed

    def critical(self, filters: DefaulterFilter, limit: int = 50) -> List[FeeDefaulterRecord]:
        query = self.db.query(FeeDefaulterRecord).filter(FeeDefaulterRecord.school_id == filters.school_id)
        if filters.grade is not None:
            query = query.filter(FeeDefaulterRecord.grade == filters.grade)
        if filters.min_amount is not None:
            query = query.filter(FeeDefaulterRecord.total_due_amount >= filters.min_amount)
        if filters.min_days is not None:
            query = query.filter(FeeDefaulterRecord.days_since_first_due >= filters.min_days)
        return (
            query.order_by(
                FeeDefaulterRecord.days_since_first_due.desc(),
                FeeDefaulterRecord.total_due_amount.desc(),
            )
            .limit(limit)
            .all()
        )

    def by_grade(self, school_id: str, grade: Optional[str] = None) -> List[Tuple[str, int, int, float]]:
        """(grade, count, totalDueAmount, avgDaysSinceFirstDue), largest dues first"""
        total_due = func.sum(FeeDefaulterRecord.total_due_amount)
        query = self.db.query(
            FeeDefaulterRecord.grade,
            func.count(FeeDefaulterRecord.id),
            total_due,
            func.avg(FeeDefaulterRecord.days_since_first_due),
        ).filter(FeeDefaulterRecord.school_id == school_id)
        if grade is not None:
            query = query.filter(FeeDefaulterRecord.grade == grade)
        rows = query.group_by(FeeDefaulterRecord.grade).order_by(total_due.desc()).all()
        return [(g, int(count), int(total), float(avg or 0)) for g, count, total, avg in rows]

    def needing_reminders(self, school_id: str, cutoff: datetime) -> List[FeeDefaulterRecord]:
        """Rows never reminded, or last reminded at or before `cutoff`"""
        return (
            self.db.query(FeeDefaulterRecord)
            .filter(
                FeeDefaulterRecord.school_id == school_id,
                or_(
                    FeeDefaulterRecord.last_reminder_date.is_(None),
                    FeeDefaulterRecord.last_reminder_date <= cutoff,
                ),
            )
            .order_by(FeeDefaulterRecord.days_since_first_due.desc())
            .all()
        )

    def record_reminder(self, record: FeeDefaulterRecord, now: datetime) -> None:
        record.last_reminder_date = now
        record.notification_count = (record.notification_count or 0) + 1
        self.db.flush()

    def count_for_school(self, school_id: str) -> int:
        return self.db.query(func.count(FeeDefaulterRecord.id)).filter(FeeDefaulterRecord.school_id == school_id).scalar()
