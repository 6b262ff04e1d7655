"""GET /v1/reports/* - financial reports and accountant views"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fee_ledger.api.dependencies import get_reporting_service, get_request_id
from fee_ledger.api.v1.schemas import (
    AccountantTransactionsResponse,
    BucketSchema,
    CollectionTotalsSchema,
    DailySummaryResponse,
    DashboardResponse,
    FinancialReportResponse,
    ReportSummarySchema,
    TransactionSchema,
)
from fee_ledger.domain.exceptions import InvalidInputError
from fee_ledger.services.reporting import ReportingService

router = APIRouter()


@router.get("/reports/financial", response_model=FinancialReportResponse)
def get_financial_report(
    request: Request,
    school_id: str = Query(..., min_length=1),
    report_type: str = Query("monthly", description="daily | weekly | monthly | yearly"),
    start: Optional[date] = Query(None, description="Overrides the start of the implied window"),
    end: Optional[date] = Query(None, description="Overrides the end of the implied window (inclusive day)"),
    service: ReportingService = Depends(get_reporting_service),
):
    request_id = get_request_id(request)

    try:
        report = service.get_financial_report(school_id, report_type, start, end)
        summary = report.summary
        return FinancialReportResponse(
            school_id=school_id,
            report_type=report.report_type,
            start=report.window.start,
            end=report.window.end,
            summary=ReportSummarySchema(
                total_amount=summary.total_amount,
                total_transactions=summary.total_transactions,
                average_transaction=summary.average_transaction,
                pending_dues=summary.pending_dues,
                total_defaulters=summary.total_defaulters,
            ),
            by_payment_method=[BucketSchema.from_domain(b) for b in report.by_payment_method],
            daily_breakdown=[BucketSchema.from_domain(b) for b in report.daily_breakdown],
            by_grade=[BucketSchema.from_domain(b) for b in report.by_grade],
            top_accountants=[BucketSchema.from_domain(b) for b in report.top_accountants],
        )

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except Exception as e:
        logging.error(f"Unexpected error building report: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/reports/accountants/{accountant_id}/transactions", response_model=AccountantTransactionsResponse)
def get_accountant_transactions(
    accountant_id: str,
    request: Request,
    school_id: str = Query(..., min_length=1),
    start: date = Query(...),
    end: date = Query(..., description="Inclusive"),
    service: ReportingService = Depends(get_reporting_service),
):
    request_id = get_request_id(request)

    try:
        records = service.get_accountant_transactions(accountant_id, school_id, start, end)
        return AccountantTransactionsResponse(
            accountant_id=accountant_id,
            school_id=school_id,
            transactions=[TransactionSchema.from_record(r) for r in records],
        )

    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    except Exception as e:
        logging.error(f"Unexpected error listing transactions: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/reports/accountants/{accountant_id}/daily-summary", response_model=DailySummaryResponse)
def get_daily_summary(
    accountant_id: str,
    request: Request,
    school_id: str = Query(..., min_length=1),
    day: Optional[date] = Query(None, description="Defaults to today"),
    service: ReportingService = Depends(get_reporting_service),
):
    request_id = get_request_id(request)

    try:
        summary = service.get_daily_collection_summary(accountant_id, school_id, day or service.clock().date())
        return DailySummaryResponse(
            accountant_id=accountant_id,
            school_id=school_id,
            day=summary.day,
            total_collected=summary.total_collected,
            total_transactions=summary.total_transactions,
            by_payment_method=[BucketSchema.from_domain(b) for b in summary.by_payment_method],
        )

    except Exception as e:
        logging.error(f"Unexpected error building daily summary: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/reports/dashboard", response_model=DashboardResponse)
def get_dashboard(
    request: Request,
    school_id: str = Query(..., min_length=1),
    service: ReportingService = Depends(get_reporting_service),
):
    """Today's and this month's collections, open dues and defaulters"""
    request_id = get_request_id(request)

    try:
        dashboard = service.get_dashboard(school_id)
        return DashboardResponse(
            school_id=school_id,
            today=CollectionTotalsSchema(total_amount=dashboard.today.total_amount, count=dashboard.today.count),
            this_month=CollectionTotalsSchema(
                total_amount=dashboard.this_month.total_amount, count=dashboard.this_month.count
            ),
            pending_dues=dashboard.pending_dues,
            ledgers=dashboard.ledgers,
            defaulters=dashboard.defaulters,
            recent_transactions=[TransactionSchema.from_record(r) for r in dashboard.recent_transactions],
        )

    except Exception as e:
        logging.error(f"Unexpected error building dashboard: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")
