"""SQLAlchemy ORM models for the fee ledger"""

import uuid
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Student(Base):
    """Student roster entry (owned by the admissions system, read here)"""

    __tablename__ = "students"

    id = Column(Text, primary_key=True)
    school_id = Column(Text, nullable=False, index=True)
    grade = Column(Text, nullable=False, index=True)
    section = Column(Text, nullable=True)
    roll_number = Column(Integer, nullable=True)
    name = Column(Text, nullable=False, default="")
    parent_contact = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class FeeStructureRecord(Base):
    """One version of the fee catalog for a school/grade/academic year"""

    __tablename__ = "fee_structures"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Text, nullable=False)
    grade = Column(Text, nullable=False)
    academic_year = Column(Text, nullable=False)
    monthly_amount = Column(BigInteger, nullable=False)
    one_time_components = Column(JSON, nullable=False, default=list)
    due_day = Column(Integer, nullable=False, default=10)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_fee_structure_lookup", "school_id", "grade", "academic_year", "is_active"),)


class StudentFeeRecord(Base):
    """Ledger aggregate: one row per student per academic year"""

    __tablename__ = "student_fee_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Text, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(Text, nullable=False, index=True)
    grade = Column(Text, nullable=False, index=True)
    academic_year = Column(Text, nullable=False, index=True)
    fee_structure_id = Column(Uuid, ForeignKey("fee_structures.id"), nullable=False)
    total_fee_amount = Column(BigInteger, nullable=False)
    total_paid_amount = Column(BigInteger, nullable=False, default=0)
    total_due_amount = Column(BigInteger, nullable=False)
    monthly_payments = Column(JSON, nullable=False)
    one_time_fees = Column(JSON, nullable=False, default=list)
    status = Column(Text, nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    # Every UPDATE is guarded by "WHERE version = :expected"; a lost race raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (UniqueConstraint("student_id", "academic_year", name="uq_fee_record_student_year"),)

    student = relationship("Student")
    transactions = relationship("FeeTransactionRecord", back_populates="ledger")


class FeeTransactionRecord(Base):
    """Append-only money movement"""

    __tablename__ = "fee_transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id = Column(Text, nullable=False)
    student_id = Column(Text, nullable=False, index=True)
    ledger_id = Column(Uuid, ForeignKey("student_fee_records.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(Text, nullable=False, index=True)
    transaction_type = Column(Text, nullable=False, default="payment")
    amount = Column(BigInteger, nullable=False)
    payment_method = Column(Text, nullable=False)
    month = Column(Integer, nullable=True)
    fee_type = Column(Text, nullable=True)
    collected_by = Column(Text, nullable=False, index=True)
    remarks = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="completed")
    audit_ip_address = Column(Text, nullable=True)
    audit_device_info = Column(Text, nullable=True)
    audit_timestamp = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (UniqueConstraint("school_id", "transaction_id", name="uq_fee_transaction_school_txn"),)

    ledger = relationship("StudentFeeRecord", back_populates="transactions")


class FeeDefaulterRecord(Base):
    """Materialized arrears row, owned by the reconciliation job"""

    __tablename__ = "fee_defaulters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Text, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    ledger_id = Column(Uuid, ForeignKey("student_fee_records.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(Text, nullable=False, index=True)
    grade = Column(Text, nullable=False, index=True)
    total_due_amount = Column(BigInteger, nullable=False)
    overdue_months = Column(JSON, nullable=False)
    days_since_first_due = Column(Integer, nullable=False)
    notification_count = Column(Integer, nullable=False, default=0)
    last_reminder_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("student_id", "ledger_id", name="uq_fee_defaulter_student_ledger"),
        Index("ix_fee_defaulter_school_days", "school_id", "days_since_first_due"),
        Index("ix_fee_defaulter_school_amount", "school_id", "total_due_amount"),
    )

    student = relationship("Student")
