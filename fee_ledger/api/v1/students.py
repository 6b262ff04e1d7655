"""GET /v1/students - roster search and per-student fee status"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fee_ledger.api.dependencies import get_collection_service, get_request_id
from fee_ledger.api.v1.schemas import (
    FeeStatusResponse,
    LedgerSchema,
    StudentListResponse,
    StudentSchema,
    StudentSummarySchema,
    TransactionSchema,
    UpcomingDueSchema,
)
from fee_ledger.domain.exceptions import ConflictError, InvalidInputError, NotFoundError
from fee_ledger.infrastructure.database.filters import StudentFilter
from fee_ledger.services.collection import FeeCollectionService

router = APIRouter()


@router.get("/students", response_model=StudentListResponse)
def list_students(
    request: Request,
    school_id: str = Query(..., min_length=1),
    grade: Optional[str] = Query(None),
    section: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Matches student name or id"),
    academic_year: Optional[str] = Query(None),
    service: FeeCollectionService = Depends(get_collection_service),
):
    """
    Students of a school with their fee summary.

    Ledgers are opened lazily; students whose grade has no fee structure
    yet are listed without a summary.
    """
    request_id = get_request_id(request)

    try:
        summaries = service.list_students(
            StudentFilter(school_id=school_id, grade=grade, section=section, search=search),
            academic_year,
        )
        return StudentListResponse(
            school_id=school_id,
            academic_year=academic_year,
            students=[
                StudentSummarySchema(
                    student=StudentSchema.from_record(s.student),
                    total_fee_amount=s.ledger.total_fee_amount if s.ledger else None,
                    total_paid_amount=s.ledger.total_paid_amount if s.ledger else None,
                    total_due_amount=s.ledger.total_due_amount if s.ledger else None,
                    status=s.ledger.status if s.ledger else None,
                )
                for s in summaries
            ],
        )

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error listing students: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/students/{student_id}/fees", response_model=FeeStatusResponse)
def get_fee_status(
    student_id: str,
    request: Request,
    school_id: str = Query(..., min_length=1),
    academic_year: Optional[str] = Query(None),
    service: FeeCollectionService = Depends(get_collection_service),
):
    """Ledger, next due month and recent transactions of one student"""
    request_id = get_request_id(request)

    try:
        status = service.get_fee_status(student_id, school_id, academic_year)
        upcoming = status.upcoming_due
        return FeeStatusResponse(
            student=StudentSchema.from_record(status.student),
            ledger=LedgerSchema.from_domain(status.ledger),
            upcoming_due=(
                UpcomingDueSchema(
                    month=upcoming.month,
                    amount=upcoming.amount,
                    due_date=upcoming.due_date,
                    is_overdue=upcoming.is_overdue,
                )
                if upcoming
                else None
            ),
            recent_transactions=[TransactionSchema.from_record(t) for t in status.recent_transactions],
            monthly_dues=status.monthly_dues,
            one_time_dues=status.one_time_dues,
            pending_months=status.pending_months,
        )

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error loading fee status: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")
