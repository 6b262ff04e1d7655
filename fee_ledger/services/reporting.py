"""Read-only financial reporting over the transaction log and ledgers"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from fee_ledger.config import Settings
from fee_ledger.domain.reporting import (
    CollectionBucket,
    FinancialReport,
    ReportSummary,
    ReportWindow,
    average_amount,
    resolve_report_window,
)
from fee_ledger.infrastructure.database.filters import TransactionFilter
from fee_ledger.infrastructure.database.models import FeeTransactionRecord
from fee_ledger.infrastructure.database.repositories import (
    DefaulterRepository,
    LedgerRepository,
    TransactionRepository,
)
from fee_ledger.services.base import BaseService
from fee_ledger.utils.date_utils import current_academic_year, month_bounds, start_of_day, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CollectionTotals:
    total_amount: int
    count: int


@dataclass
class DailyCollectionSummary:
    day: date
    total_collected: int
    total_transactions: int
    by_payment_method: List[CollectionBucket] = field(default_factory=list)


@dataclass
class Dashboard:
    today: CollectionTotals
    this_month: CollectionTotals
    pending_dues: int
    ledgers: int
    defaulters: int
    recent_transactions: List[FeeTransactionRecord] = field(default_factory=list)


class ReportingService(BaseService):
    """Aggregates completed payments; never writes"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow, config: Settings | None = None):
        super().__init__(db, clock, config)
        self.transactions = TransactionRepository(db)
        self.ledgers = LedgerRepository(db)
        self.defaulters = DefaulterRepository(db)

    def get_financial_report(
        self,
        school_id: str,
        report_type: str = "monthly",
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> FinancialReport:
        """
        Summary, per-method, per-day, per-grade and top-collector aggregates
        over completed payments in the resolved window.

        Pending dues cover the academic year current at the time of the call.
        """
        now = self.clock()
        window = resolve_report_window(report_type, now.date(), start, end)
        filters = TransactionFilter(school_id=school_id, start=window.start, end=window.end)

        total, count = self.transactions.totals(filters)
        year = current_academic_year(now.date(), self.config.academic_year_start_month)
        pending, _ = self.ledgers.pending_dues(school_id, year)

        report = FinancialReport(
            report_type=report_type,
            window=window,
            summary=ReportSummary(
                total_amount=total,
                total_transactions=count,
                average_transaction=average_amount(total, count),
                pending_dues=pending,
                total_defaulters=self.defaulters.count_for_school(school_id),
            ),
            by_payment_method=self.transactions.by_payment_method(filters),
            daily_breakdown=self.transactions.daily_breakdown(filters),
            by_grade=self.transactions.by_grade(filters),
            top_accountants=self.transactions.top_collectors(filters),
        )
        logger.info(
            "Financial report generated",
            extra={"school_id": school_id, "report_type": report_type, "total_amount": total, "count": count},
        )
        return report

    def get_accountant_transactions(
        self, accountant_id: str, school_id: str, start: date, end: date
    ) -> List[FeeTransactionRecord]:
        """Every transaction an accountant recorded between two dates, both inclusive"""
        window = resolve_report_window("daily", start, start, end)
        filters = TransactionFilter(
            school_id=school_id,
            start=window.start,
            end=window.end,
            collected_by=accountant_id,
            completed_payments_only=False,
        )
        return self.transactions.list(filters)

    def get_daily_collection_summary(self, accountant_id: str, school_id: str, day: date) -> DailyCollectionSummary:
        filters = TransactionFilter(
            school_id=school_id,
            start=start_of_day(day),
            end=start_of_day(day + timedelta(days=1)),
            collected_by=accountant_id,
        )
        buckets = self.transactions.by_payment_method(filters)
        return DailyCollectionSummary(
            day=day,
            total_collected=sum(b.total_amount for b in buckets),
            total_transactions=sum(b.count for b in buckets),
            by_payment_method=buckets,
        )

    def _totals(self, school_id: str, window: ReportWindow) -> CollectionTotals:
        total, count = self.transactions.totals(
            TransactionFilter(school_id=school_id, start=window.start, end=window.end)
        )
        return CollectionTotals(total_amount=total, count=count)

    def get_dashboard(self, school_id: str) -> Dashboard:
        """School-wide counter dashboard for the current day, month and academic year"""
        now = self.clock()
        today = now.date()
        first, next_month = month_bounds(today)
        year = current_academic_year(today, self.config.academic_year_start_month)
        pending, ledgers = self.ledgers.pending_dues(school_id, year)

        return Dashboard(
            today=self._totals(school_id, ReportWindow(start_of_day(today), start_of_day(today + timedelta(days=1)))),
            this_month=self._totals(school_id, ReportWindow(start_of_day(first), start_of_day(next_month))),
            pending_dues=pending,
            ledgers=ledgers,
            defaulters=self.defaulters.count_for_school(school_id),
            recent_transactions=self.transactions.list(
                TransactionFilter(school_id=school_id), limit=self.config.recent_transactions_limit
            ),
        )
