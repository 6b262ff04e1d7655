"""POST /v1/fees/* - payment validation, collection and ledger adjustments"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from fee_ledger.api.dependencies import get_collection_service, get_request_id
from fee_ledger.api.v1.schemas import (
    CollectFeeRequest,
    CollectFeeResponse,
    CollectOneTimeFeeRequest,
    CollectOneTimeFeeResponse,
    LateFeeRequest,
    LedgerSchema,
    OneTimeFeeSchema,
    PendingOneTimeFeeSchema,
    TransactionSchema,
    ValidatePaymentRequest,
    ValidationResponse,
    WaiveMonthRequest,
)
from fee_ledger.domain.exceptions import AlreadySettledError, ConflictError, InvalidInputError, NotFoundError
from fee_ledger.domain.models import AuditInfo
from fee_ledger.services.collection import FeeCollectionService

router = APIRouter()


def _audit_info(request: Request) -> AuditInfo:
    return AuditInfo(
        ip_address=request.client.host if request.client else None,
        device_info=request.headers.get("user-agent"),
    )


@router.post("/fees/validate", response_model=ValidationResponse)
def validate_payment(
    request_body: ValidatePaymentRequest,
    request: Request,
    service: FeeCollectionService = Depends(get_collection_service),
):
    """
    Preview a monthly collection without recording anything.

    Returns blocking errors and advisory warnings; a settled month comes
    back as an error here rather than a 409.
    """
    request_id = get_request_id(request)

    try:
        result = service.validate_payment(
            request_body.student_id,
            request_body.school_id,
            request_body.month,
            request_body.amount,
            include_late_fee=request_body.include_late_fee,
            academic_year=request_body.academic_year,
        )
        return ValidationResponse(
            valid=result.valid,
            warnings=result.warnings,
            errors=result.errors,
            expected_amount=result.expected_amount,
            monthly_expected_amount=result.monthly_expected_amount,
            total_one_time_fee_amount=result.total_one_time_fee_amount,
            late_fee_amount=result.late_fee_amount,
            is_first_payment=result.is_first_payment,
            pending_one_time_fees=[
                PendingOneTimeFeeSchema(fee_type=f.fee_type, amount=f.amount) for f in result.pending_one_time_fees
            ],
        )

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error validating payment: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/fees/collect", response_model=CollectFeeResponse)
def collect_fee(
    request_body: CollectFeeRequest,
    request: Request,
    service: FeeCollectionService = Depends(get_collection_service),
):
    """
    Collect a monthly fee.

    Flow:
    1. Open (or lazily create / migrate) the student's ledger
    2. Validate the amount against the month and pending one-time fees
    3. Apply the money to the ledger
    4. Append one transaction per one-time fee cleared, plus the monthly one
    5. Commit ledger and transactions together
    """
    request_id = get_request_id(request)

    try:
        receipt = service.collect_fee(
            request_body.student_id,
            request_body.school_id,
            request_body.month,
            request_body.amount,
            request_body.payment_method,
            request_body.collected_by,
            remarks=request_body.remarks,
            include_late_fee=request_body.include_late_fee,
            audit_info=_audit_info(request),
            academic_year=request_body.academic_year,
            request_id=request_id,
        )
        return CollectFeeResponse(
            transaction=TransactionSchema.from_domain(receipt.transaction),
            one_time_transactions=[TransactionSchema.from_domain(t) for t in receipt.one_time_transactions],
            ledger=LedgerSchema.from_domain(receipt.ledger),
            warnings=receipt.warnings,
            is_first_payment=receipt.is_first_payment,
            total_one_time_fee_amount=receipt.total_one_time_fee_amount,
        )

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InvalidInputError as e:
        logging.warning(f"Collection rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))

    except (AlreadySettledError, ConflictError) as e:
        logging.warning(f"Collection conflict: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error collecting fee: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/fees/collect-one-time", response_model=CollectOneTimeFeeResponse)
def collect_one_time_fee(
    request_body: CollectOneTimeFeeRequest,
    request: Request,
    service: FeeCollectionService = Depends(get_collection_service),
):
    """Collect all or part of a single one-time fee"""
    request_id = get_request_id(request)

    try:
        receipt = service.collect_one_time_fee(
            request_body.student_id,
            request_body.school_id,
            request_body.fee_type,
            request_body.amount,
            request_body.payment_method,
            request_body.collected_by,
            remarks=request_body.remarks,
            audit_info=_audit_info(request),
            academic_year=request_body.academic_year,
            request_id=request_id,
        )
        return CollectOneTimeFeeResponse(
            transaction=TransactionSchema.from_domain(receipt.transaction),
            one_time_fee=OneTimeFeeSchema.from_domain(receipt.one_time_fee),
            ledger=LedgerSchema.from_domain(receipt.ledger),
        )

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error collecting one-time fee: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/fees/late-fee", response_model=LedgerSchema)
def apply_late_fee(
    request_body: LateFeeRequest,
    request: Request,
    service: FeeCollectionService = Depends(get_collection_service),
):
    request_id = get_request_id(request)

    try:
        ledger = service.apply_late_fee(
            request_body.student_id,
            request_body.school_id,
            request_body.month,
            request_body.percentage,
            academic_year=request_body.academic_year,
        )
        return LedgerSchema.from_domain(ledger)

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error applying late fee: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/fees/waive", response_model=LedgerSchema)
def waive_month(
    request_body: WaiveMonthRequest,
    request: Request,
    service: FeeCollectionService = Depends(get_collection_service),
):
    request_id = get_request_id(request)

    try:
        ledger = service.waive_month(
            request_body.student_id,
            request_body.school_id,
            request_body.month,
            request_body.reason,
            request_body.waived_by,
            academic_year=request_body.academic_year,
        )
        return LedgerSchema.from_domain(ledger)

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except (AlreadySettledError, ConflictError) as e:
        raise HTTPException(status_code=409, detail=str(e))

    except Exception as e:
        service.db.rollback()
        logging.error(f"Unexpected error waiving month: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")
