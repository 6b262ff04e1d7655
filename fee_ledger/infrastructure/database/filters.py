"""Typed query filters compiled into SQL by the repositories"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class StudentFilter:
    school_id: str
    grade: Optional[str] = None
    section: Optional[str] = None
    search: Optional[str] = None  # matches name or student id
    active_only: bool = True


@dataclass
class DefaulterFilter:
    school_id: str
    grade: Optional[str] = None
    min_amount: Optional[int] = None
    min_days: Optional[int] = None


@dataclass
class TransactionFilter:
    school_id: str
    start: Optional[datetime] = None  # inclusive
    end: Optional[datetime] = None  # exclusive
    collected_by: Optional[str] = None
    student_id: Optional[str] = None
    completed_payments_only: bool = True
