"""/v1/defaulters - reconciliation, arrears queries and reminders"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fee_ledger.api.dependencies import get_defaulter_service, get_request_id
from fee_ledger.api.v1.schemas import (
    DefaulterListResponse,
    DefaulterSchema,
    GradeDefaultersResponse,
    GradeDefaultersSchema,
    SendRemindersRequest,
    SendRemindersResponse,
    SyncDefaultersRequest,
    SyncDefaultersResponse,
)
from fee_ledger.domain.exceptions import ConflictError, InvalidInputError
from fee_ledger.services.defaulters import DefaulterService

router = APIRouter()


@router.post("/defaulters/sync", response_model=SyncDefaultersResponse)
def sync_defaulters(
    request_body: SyncDefaultersRequest,
    request: Request,
    service: DefaulterService = Depends(get_defaulter_service),
):
    """
    Rebuild the defaulters index of a school from its ledgers.

    Idempotent: rerunning without ledger changes reports nothing synced
    or removed.
    """
    request_id = get_request_id(request)

    try:
        result = service.sync_defaulters(request_body.school_id, request_body.grace_period_days)
        return SyncDefaultersResponse(
            school_id=request_body.school_id,
            synced=result.synced,
            removed=result.removed,
            active=result.active,
        )

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error syncing defaulters: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/defaulters/critical", response_model=DefaulterListResponse)
def get_critical_defaulters(
    request: Request,
    school_id: str = Query(..., min_length=1),
    min_amount: Optional[int] = Query(None, ge=0),
    min_days: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=500),
    service: DefaulterService = Depends(get_defaulter_service),
):
    request_id = get_request_id(request)

    try:
        records = service.get_critical_defaulters(school_id, min_amount, min_days, limit)
        return DefaulterListResponse(school_id=school_id, defaulters=[DefaulterSchema.from_record(r) for r in records])

    except Exception as e:
        logging.error(f"Unexpected error listing defaulters: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/defaulters/by-grade", response_model=GradeDefaultersResponse)
def get_defaulters_by_grade(
    request: Request,
    school_id: str = Query(..., min_length=1),
    grade: Optional[str] = Query(None),
    service: DefaulterService = Depends(get_defaulter_service),
):
    request_id = get_request_id(request)

    try:
        summaries = service.get_defaulters_by_grade(school_id, grade)
        return GradeDefaultersResponse(
            school_id=school_id,
            grades=[
                GradeDefaultersSchema(
                    grade=s.grade,
                    count=s.count,
                    total_due_amount=s.total_due_amount,
                    avg_days_since_first_due=s.avg_days_since_first_due,
                )
                for s in summaries
            ],
        )

    except Exception as e:
        logging.error(f"Unexpected error grouping defaulters: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/defaulters/reminders", response_model=DefaulterListResponse)
def get_defaulters_needing_reminders(
    request: Request,
    school_id: str = Query(..., min_length=1),
    reminder_interval_days: Optional[int] = Query(None, ge=0),
    service: DefaulterService = Depends(get_defaulter_service),
):
    """Defaulters never reminded, or not reminded within the interval"""
    request_id = get_request_id(request)

    try:
        records = service.get_defaulters_needing_reminders(school_id, reminder_interval_days)
        return DefaulterListResponse(school_id=school_id, defaulters=[DefaulterSchema.from_record(r) for r in records])

    except Exception as e:
        logging.error(f"Unexpected error listing reminders: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/defaulters/reminders/send", response_model=SendRemindersResponse)
async def send_reminders(
    request_body: SendRemindersRequest,
    request: Request,
    service: DefaulterService = Depends(get_defaulter_service),
):
    """Deliver due reminders through the notification webhook"""
    request_id = get_request_id(request)

    try:
        result = await service.issue_reminders(request_body.school_id, request_body.reminder_interval_days)
        return SendRemindersResponse(school_id=request_body.school_id, sent=result.sent, failed=result.failed)

    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error sending reminders: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")
