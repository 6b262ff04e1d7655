"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fee_ledger.domain.exceptions import InvalidInputError


class PaymentStatus(str, Enum):
    """Status of a single installment, one-time fee, or a whole ledger"""

    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(str, Enum):
    """How the money was received at the counter"""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    ONLINE = "online"


TRANSACTION_TYPE_PAYMENT = "payment"
TRANSACTION_STATUS_COMPLETED = "completed"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class FeeComponent:
    """A line of a fee structure (e.g. admission fee)"""

    fee_type: str
    amount: int
    is_one_time: bool = True


@dataclass
class FeeStructure:
    """Versioned fee catalog entry for a school/grade/academic year"""

    id: uuid.UUID
    school_id: str
    grade: str
    academic_year: str
    monthly_amount: int
    one_time_components: List[FeeComponent]
    due_day: int
    is_active: bool
    created_at: datetime

    @property
    def one_time_total(self) -> int:
        return sum(c.amount for c in self.one_time_components if c.is_one_time)

    @property
    def total_yearly_amount(self) -> int:
        """Twelve monthly installments plus every one-time component"""
        return self.monthly_amount * 12 + self.one_time_total


@dataclass
class MonthlyPayment:
    """Single installment in a ledger's 12-month schedule"""

    month: int
    due_amount: int
    due_date: date
    paid_amount: int = 0
    late_fee: int = 0
    status: PaymentStatus = PaymentStatus.PENDING
    paid_date: Optional[datetime] = None
    waived: bool = False
    waiver_reason: Optional[str] = None
    waived_by: Optional[str] = None
    waiver_date: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(0, self.due_amount - self.paid_amount)

    @property
    def is_settled(self) -> bool:
        return self.status == PaymentStatus.PAID or self.waived

    def refresh_status(self) -> None:
        if self.paid_amount >= self.due_amount:
            self.status = PaymentStatus.PAID
        elif self.paid_amount > 0:
            self.status = PaymentStatus.PARTIAL
        else:
            self.status = PaymentStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "due_amount": self.due_amount,
            "due_date": self.due_date.isoformat(),
            "paid_amount": self.paid_amount,
            "late_fee": self.late_fee,
            "status": self.status.value,
            "paid_date": _format_datetime(self.paid_date),
            "waived": self.waived,
            "waiver_reason": self.waiver_reason,
            "waived_by": self.waived_by,
            "waiver_date": _format_datetime(self.waiver_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonthlyPayment":
        return cls(
            month=int(data["month"]),
            due_amount=int(data["due_amount"]),
            due_date=date.fromisoformat(data["due_date"]),
            paid_amount=int(data.get("paid_amount", 0)),
            late_fee=int(data.get("late_fee", 0)),
            status=PaymentStatus(data.get("status", PaymentStatus.PENDING.value)),
            paid_date=_parse_datetime(data.get("paid_date")),
            waived=bool(data.get("waived", False)),
            waiver_reason=data.get("waiver_reason"),
            waived_by=data.get("waived_by"),
            waiver_date=_parse_datetime(data.get("waiver_date")),
        )


@dataclass
class OneTimeFee:
    """Non-recurring charge (admission, annual...) tracked on a ledger"""

    fee_type: str
    due_amount: int
    paid_amount: int = 0
    status: PaymentStatus = PaymentStatus.PENDING
    paid_date: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(0, self.due_amount - self.paid_amount)

    @property
    def is_outstanding(self) -> bool:
        return self.status in (PaymentStatus.PENDING, PaymentStatus.PARTIAL)

    def refresh_status(self) -> None:
        if self.paid_amount >= self.due_amount:
            self.status = PaymentStatus.PAID
        elif self.paid_amount > 0:
            self.status = PaymentStatus.PARTIAL
        else:
            self.status = PaymentStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fee_type": self.fee_type,
            "due_amount": self.due_amount,
            "paid_amount": self.paid_amount,
            "status": self.status.value,
            "paid_date": _format_datetime(self.paid_date),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OneTimeFee":
        return cls(
            fee_type=data["fee_type"],
            due_amount=int(data["due_amount"]),
            paid_amount=int(data.get("paid_amount", 0)),
            status=PaymentStatus(data.get("status", PaymentStatus.PENDING.value)),
            paid_date=_parse_datetime(data.get("paid_date")),
        )


@dataclass
class StudentFeeLedger:
    """
    Authoritative fee state of one student for one academic year.

    Installments are keyed by calendar month and one-time fees by fee type;
    both maps keep schedule/catalog order so they serialize as ordered lists.
    """

    student_id: str
    school_id: str
    grade: str
    academic_year: str
    fee_structure_id: uuid.UUID
    total_fee_amount: int
    monthly_payments: Dict[int, MonthlyPayment]
    one_time_fees: Dict[str, OneTimeFee] = field(default_factory=dict)
    total_paid_amount: int = 0
    total_due_amount: int = 0
    status: PaymentStatus = PaymentStatus.PENDING
    id: Optional[uuid.UUID] = None
    version: int = 0

    def schedule(self) -> List[MonthlyPayment]:
        return list(self.monthly_payments.values())

    def get_month(self, month: int) -> MonthlyPayment:
        if month not in self.monthly_payments:
            raise InvalidInputError(f"Invalid month selected: {month}")
        return self.monthly_payments[month]

    @property
    def paid_from_components(self) -> int:
        return sum(p.paid_amount for p in self.monthly_payments.values()) + sum(
            f.paid_amount for f in self.one_time_fees.values()
        )

    def outstanding_one_time_fees(self) -> List[OneTimeFee]:
        return [f for f in self.one_time_fees.values() if f.is_outstanding]

    def record_received(self, amount: int) -> None:
        """Add money received to the ledger totals and re-derive status"""
        self.total_paid_amount += amount
        self.refresh_totals()

    def refresh_totals(self) -> None:
        self.total_due_amount = max(0, self.total_fee_amount - self.total_paid_amount)
        if self.total_due_amount == 0:
            self.status = PaymentStatus.PAID
        elif self.total_paid_amount > 0:
            self.status = PaymentStatus.PARTIAL
        else:
            self.status = PaymentStatus.PENDING


@dataclass
class AuditInfo:
    """Where a collection was made from"""

    ip_address: Optional[str] = None
    device_info: Optional[str] = None


@dataclass
class FeeTransaction:
    """Immutable record of one money movement"""

    transaction_id: str
    student_id: str
    ledger_id: uuid.UUID
    school_id: str
    amount: int
    payment_method: PaymentMethod
    collected_by: str
    created_at: datetime
    month: Optional[int] = None
    fee_type: Optional[str] = None
    remarks: Optional[str] = None
    status: str = TRANSACTION_STATUS_COMPLETED
    transaction_type: str = TRANSACTION_TYPE_PAYMENT
    audit: AuditInfo = field(default_factory=AuditInfo)


@dataclass
class PendingOneTimeFee:
    """One-time fee still owed, as reported by validation"""

    fee_type: str
    amount: int


@dataclass
class ValidationResult:
    """Outcome of validating a proposed monthly collection"""

    valid: bool
    warnings: List[str]
    errors: List[str]
    settled: bool
    month: MonthlyPayment
    expected_amount: int
    monthly_expected_amount: int
    total_one_time_fee_amount: int
    late_fee_amount: int
    include_late_fee: bool
    is_first_payment: bool
    pending_one_time_fees: List[PendingOneTimeFee]


@dataclass
class PaymentApplication:
    """Money movements produced by applying a validated collection to a ledger"""

    validation: ValidationResult
    monthly_amount_recorded: int
    monthly_transaction_amount: int
    one_time_payments: List[PendingOneTimeFee]


@dataclass
class DefaulterSnapshot:
    """Derived arrears state of one ledger at a point in time"""

    student_id: str
    ledger_id: uuid.UUID
    school_id: str
    grade: str
    total_due_amount: int
    overdue_months: List[int]
    days_since_first_due: int


@dataclass
class SyncResult:
    """Counts reported by a defaulter reconciliation run"""

    synced: int
    removed: int
    active: int
