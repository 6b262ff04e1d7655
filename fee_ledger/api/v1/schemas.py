"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from fee_ledger.domain.defaulters import severity_level
from fee_ledger.domain.models import (
    FeeTransaction,
    MonthlyPayment,
    OneTimeFee,
    PaymentMethod,
    PaymentStatus,
    StudentFeeLedger,
)
from fee_ledger.domain.reporting import CollectionBucket
from fee_ledger.infrastructure.database.models import FeeDefaulterRecord, FeeTransactionRecord, Student


# ---------------------------------------------------------------- shared shapes


class StudentSchema(BaseModel):
    student_id: str
    name: Optional[str] = None
    grade: str
    section: Optional[str] = None
    roll_number: Optional[int] = None

    @classmethod
    def from_record(cls, student: Student) -> "StudentSchema":
        return cls(
            student_id=student.id,
            name=student.name,
            grade=student.grade,
            section=student.section,
            roll_number=student.roll_number,
        )


class MonthlyPaymentSchema(BaseModel):
    """Single installment of the schedule"""

    month: int
    due_amount: int
    due_date: date
    paid_amount: int
    late_fee: int
    status: PaymentStatus
    paid_date: Optional[datetime] = None
    waived: bool = False
    waiver_reason: Optional[str] = None
    waived_by: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: MonthlyPayment) -> "MonthlyPaymentSchema":
        return cls(
            month=entry.month,
            due_amount=entry.due_amount,
            due_date=entry.due_date,
            paid_amount=entry.paid_amount,
            late_fee=entry.late_fee,
            status=entry.status,
            paid_date=entry.paid_date,
            waived=entry.waived,
            waiver_reason=entry.waiver_reason,
            waived_by=entry.waived_by,
        )


class OneTimeFeeSchema(BaseModel):
    fee_type: str
    due_amount: int
    paid_amount: int
    status: PaymentStatus
    paid_date: Optional[datetime] = None

    @classmethod
    def from_domain(cls, fee: OneTimeFee) -> "OneTimeFeeSchema":
        return cls(
            fee_type=fee.fee_type,
            due_amount=fee.due_amount,
            paid_amount=fee.paid_amount,
            status=fee.status,
            paid_date=fee.paid_date,
        )


class LedgerSchema(BaseModel):
    """A student's fee ledger for one academic year"""

    ledger_id: str
    student_id: str
    school_id: str
    grade: str
    academic_year: str
    fee_structure_id: str
    total_fee_amount: int
    total_paid_amount: int
    total_due_amount: int
    status: PaymentStatus
    monthly_payments: List[MonthlyPaymentSchema]
    one_time_fees: List[OneTimeFeeSchema]

    @classmethod
    def from_domain(cls, ledger: StudentFeeLedger) -> "LedgerSchema":
        return cls(
            ledger_id=str(ledger.id),
            student_id=ledger.student_id,
            school_id=ledger.school_id,
            grade=ledger.grade,
            academic_year=ledger.academic_year,
            fee_structure_id=str(ledger.fee_structure_id),
            total_fee_amount=ledger.total_fee_amount,
            total_paid_amount=ledger.total_paid_amount,
            total_due_amount=ledger.total_due_amount,
            status=ledger.status,
            monthly_payments=[MonthlyPaymentSchema.from_domain(p) for p in ledger.schedule()],
            one_time_fees=[OneTimeFeeSchema.from_domain(f) for f in ledger.one_time_fees.values()],
        )


class TransactionSchema(BaseModel):
    transaction_id: str
    student_id: str
    amount: int
    payment_method: str
    month: Optional[int] = None
    fee_type: Optional[str] = None
    collected_by: str
    remarks: Optional[str] = None
    status: str
    created_at: datetime

    @classmethod
    def from_domain(cls, txn: FeeTransaction) -> "TransactionSchema":
        return cls(
            transaction_id=txn.transaction_id,
            student_id=txn.student_id,
            amount=txn.amount,
            payment_method=txn.payment_method.value,
            month=txn.month,
            fee_type=txn.fee_type,
            collected_by=txn.collected_by,
            remarks=txn.remarks,
            status=txn.status,
            created_at=txn.created_at,
        )

    @classmethod
    def from_record(cls, record: FeeTransactionRecord) -> "TransactionSchema":
        return cls(
            transaction_id=record.transaction_id,
            student_id=record.student_id,
            amount=record.amount,
            payment_method=record.payment_method,
            month=record.month,
            fee_type=record.fee_type,
            collected_by=record.collected_by,
            remarks=record.remarks,
            status=record.status,
            created_at=record.created_at,
        )


class BucketSchema(BaseModel):
    key: str
    total_amount: int
    count: int

    @classmethod
    def from_domain(cls, bucket: CollectionBucket) -> "BucketSchema":
        return cls(key=bucket.key, total_amount=bucket.total_amount, count=bucket.count)


# ---------------------------------------------------------------- students


class UpcomingDueSchema(BaseModel):
    month: int
    amount: int
    due_date: datetime
    is_overdue: bool


class FeeStatusResponse(BaseModel):
    """Response for GET /v1/students/{student_id}/fees"""

    student: StudentSchema
    ledger: LedgerSchema
    upcoming_due: Optional[UpcomingDueSchema] = None
    recent_transactions: List[TransactionSchema]
    monthly_dues: int
    one_time_dues: int
    pending_months: int


class StudentSummarySchema(BaseModel):
    student: StudentSchema
    total_fee_amount: Optional[int] = None
    total_paid_amount: Optional[int] = None
    total_due_amount: Optional[int] = None
    status: Optional[PaymentStatus] = None


class StudentListResponse(BaseModel):
    """Response for GET /v1/students"""

    school_id: str
    academic_year: Optional[str] = None
    students: List[StudentSummarySchema]


# ---------------------------------------------------------------- fees


class ValidatePaymentRequest(BaseModel):
    """Request body for POST /v1/fees/validate"""

    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    month: int = Field(..., description="Calendar month (1-12) of the installment")
    amount: int = Field(..., description="Whole rupees")
    include_late_fee: bool = False
    academic_year: Optional[str] = Field(None, description="YYYY-YYYY; defaults to the current year")


class PendingOneTimeFeeSchema(BaseModel):
    fee_type: str
    amount: int


class ValidationResponse(BaseModel):
    """Response for POST /v1/fees/validate"""

    valid: bool
    warnings: List[str]
    errors: List[str]
    expected_amount: int
    monthly_expected_amount: int
    total_one_time_fee_amount: int
    late_fee_amount: int
    is_first_payment: bool
    pending_one_time_fees: List[PendingOneTimeFeeSchema]


class CollectFeeRequest(BaseModel):
    """Request body for POST /v1/fees/collect"""

    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    month: int
    amount: int
    payment_method: PaymentMethod
    collected_by: str = Field(..., min_length=1, description="Accountant identifier")
    remarks: Optional[str] = None
    include_late_fee: bool = False
    academic_year: Optional[str] = None


class CollectFeeResponse(BaseModel):
    """Receipt for POST /v1/fees/collect"""

    transaction: TransactionSchema
    one_time_transactions: List[TransactionSchema]
    ledger: LedgerSchema
    warnings: List[str]
    is_first_payment: bool
    total_one_time_fee_amount: int


class CollectOneTimeFeeRequest(BaseModel):
    """Request body for POST /v1/fees/collect-one-time"""

    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    fee_type: str = Field(..., min_length=1)
    amount: int
    payment_method: PaymentMethod
    collected_by: str = Field(..., min_length=1)
    remarks: Optional[str] = None
    academic_year: Optional[str] = None


class CollectOneTimeFeeResponse(BaseModel):
    transaction: TransactionSchema
    one_time_fee: OneTimeFeeSchema
    ledger: LedgerSchema


class LateFeeRequest(BaseModel):
    """Request body for POST /v1/fees/late-fee"""

    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    month: int
    percentage: float = Field(..., description="Late fee as a percentage of the month's due amount")
    academic_year: Optional[str] = None


class WaiveMonthRequest(BaseModel):
    """Request body for POST /v1/fees/waive"""

    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    month: int
    reason: str
    waived_by: str = Field(..., min_length=1)
    academic_year: Optional[str] = None


# ---------------------------------------------------------------- defaulters


class SyncDefaultersRequest(BaseModel):
    """Request body for POST /v1/defaulters/sync"""

    school_id: str = Field(..., min_length=1)
    grace_period_days: Optional[int] = Field(None, ge=0)


class SyncDefaultersResponse(BaseModel):
    school_id: str
    synced: int
    removed: int
    active: int


class DefaulterSchema(BaseModel):
    defaulter_id: str
    student_id: str
    ledger_id: str
    grade: str
    total_due_amount: int
    overdue_months: List[int]
    days_since_first_due: int
    severity: str
    notification_count: int
    last_reminder_date: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: FeeDefaulterRecord) -> "DefaulterSchema":
        return cls(
            defaulter_id=str(record.id),
            student_id=record.student_id,
            ledger_id=str(record.ledger_id),
            grade=record.grade,
            total_due_amount=record.total_due_amount,
            overdue_months=list(record.overdue_months),
            days_since_first_due=record.days_since_first_due,
            severity=severity_level(record.days_since_first_due, record.total_due_amount),
            notification_count=record.notification_count,
            last_reminder_date=record.last_reminder_date,
        )


class DefaulterListResponse(BaseModel):
    school_id: str
    defaulters: List[DefaulterSchema]


class GradeDefaultersSchema(BaseModel):
    grade: str
    count: int
    total_due_amount: int
    avg_days_since_first_due: float


class GradeDefaultersResponse(BaseModel):
    school_id: str
    grades: List[GradeDefaultersSchema]


class SendRemindersRequest(BaseModel):
    """Request body for POST /v1/defaulters/reminders/send"""

    school_id: str = Field(..., min_length=1)
    reminder_interval_days: Optional[int] = Field(None, ge=0)


class SendRemindersResponse(BaseModel):
    school_id: str
    sent: int
    failed: int


# ---------------------------------------------------------------- reports


class ReportSummarySchema(BaseModel):
    total_amount: int
    total_transactions: int
    average_transaction: Decimal
    pending_dues: int
    total_defaulters: int


class FinancialReportResponse(BaseModel):
    """Response for GET /v1/reports/financial"""

    school_id: str
    report_type: str
    start: datetime
    end: datetime
    summary: ReportSummarySchema
    by_payment_method: List[BucketSchema]
    daily_breakdown: List[BucketSchema]
    by_grade: List[BucketSchema]
    top_accountants: List[BucketSchema]


class AccountantTransactionsResponse(BaseModel):
    accountant_id: str
    school_id: str
    transactions: List[TransactionSchema]


class DailySummaryResponse(BaseModel):
    accountant_id: str
    school_id: str
    day: date
    total_collected: int
    total_transactions: int
    by_payment_method: List[BucketSchema]


class CollectionTotalsSchema(BaseModel):
    total_amount: int
    count: int


class DashboardResponse(BaseModel):
    """Response for GET /v1/reports/dashboard"""

    school_id: str
    today: CollectionTotalsSchema
    this_month: CollectionTotalsSchema
    pending_dues: int
    ledgers: int
    defaulters: int
    recent_transactions: List[TransactionSchema]
