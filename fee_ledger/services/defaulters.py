"""Defaulter reconciliation, queries and reminder issuance"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from fee_ledger.config import Settings
from fee_ledger.domain.defaulters import build_defaulter_snapshot, severity_level
from fee_ledger.domain.exceptions import InvalidInputError, NotFoundError, NotificationDeliveryError
from fee_ledger.domain.models import DefaulterSnapshot, SyncResult
from fee_ledger.infrastructure.clients.notifications import NotificationClient
from fee_ledger.infrastructure.database.filters import DefaulterFilter
from fee_ledger.infrastructure.database.models import FeeDefaulterRecord
from fee_ledger.infrastructure.database.repositories import (
    DefaulterRepository,
    LedgerRepository,
    ledger_from_record,
)
from fee_ledger.infrastructure.locks import school_sync_locks
from fee_ledger.infrastructure.observability.logging import log_defaulter_sync
from fee_ledger.infrastructure.observability.metrics import defaulter_sync_histogram, record_sync, reminder_counter
from fee_ledger.services.base import BaseService
from fee_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class GradeDefaulterSummary:
    grade: str
    count: int
    total_due_amount: int
    avg_days_since_first_due: float


@dataclass
class ReminderResult:
    sent: int
    failed: int


class DefaulterService(BaseService):
    """Owns the materialized defaulters index"""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        config: Settings | None = None,
        notification_client: NotificationClient | None = None,
    ):
        super().__init__(db, clock, config)
        self.ledgers = LedgerRepository(db)
        self.defaulters = DefaulterRepository(db)
        self.notifications = notification_client

    def _scan(self, school_id: str, now: datetime, grace_period_days: int) -> tuple[List[DefaulterSnapshot], int]:
        snapshots = []
        skipped = 0
        for record in self.ledgers.iter_for_school(school_id):
            try:
                snapshot = build_defaulter_snapshot(ledger_from_record(record), now, grace_period_days)
            except (KeyError, ValueError, TypeError) as e:
                skipped += 1
                logger.warning(
                    "Skipping malformed ledger during defaulter sync",
                    extra={"school_id": school_id, "ledger_id": str(record.id), "error": str(e)},
                )
                continue
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots, skipped

    def sync_defaulters(self, school_id: str, grace_period_days: Optional[int] = None) -> SyncResult:
        """
        Rebuild the school's defaulters index from its ledgers.

        Flow:
        1. Scan every ledger for unpaid, un-waived months due before now - grace
        2. Upsert one row per (student, ledger) in arrears
        3. Evict every other row of the school

        Runs for the same school are serialized, across processes on Postgres.
        `synced` counts rows that were inserted or changed, so an immediate
        rerun reports zero.
        """
        grace = self.config.grace_period_days if grace_period_days is None else grace_period_days
        if grace < 0:
            raise InvalidInputError("Grace period must not be negative")

        start_time = time.time()
        with school_sync_locks.hold(school_id), defaulter_sync_histogram.time():
            skipped_ledgers = []

            def operation() -> SyncResult:
                self.defaulters.lock_school(school_id)
                now = self.clock()
                snapshots, skipped = self._scan(school_id, now, grace)
                skipped_ledgers[:] = [skipped]

                synced = sum(1 for s in snapshots if self.defaulters.upsert(s))
                removed = self.defaulters.evict_except(school_id, {(s.student_id, s.ledger_id) for s in snapshots})
                return SyncResult(synced=synced, removed=removed, active=len(snapshots))

            result = self.run_in_transaction(operation)

        record_sync(result.synced, result.removed)
        log_defaulter_sync(
            school_id,
            result.synced,
            result.removed,
            result.active,
            skipped_ledgers[0] if skipped_ledgers else 0,
            (time.time() - start_time) * 1000,
        )
        return result

    def get_critical_defaulters(
        self,
        school_id: str,
        min_amount: Optional[int] = None,
        min_days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[FeeDefaulterRecord]:
        """Longest-overdue first, then largest amount"""
        filters = DefaulterFilter(school_id=school_id, min_amount=min_amount, min_days=min_days)
        return self.defaulters.critical(filters, limit or self.config.critical_defaulters_limit)

    def get_defaulters_by_grade(self, school_id: str, grade: Optional[str] = None) -> List[GradeDefaulterSummary]:
        return [
            GradeDefaulterSummary(grade=g, count=count, total_due_amount=total, avg_days_since_first_due=avg)
            for g, count, total, avg in self.defaulters.by_grade(school_id, grade)
        ]

    def get_defaulters_needing_reminders(
        self, school_id: str, reminder_interval_days: Optional[int] = None
    ) -> List[FeeDefaulterRecord]:
        interval = self.config.reminder_interval_days if reminder_interval_days is None else reminder_interval_days
        cutoff = self.clock() - timedelta(days=interval)
        return self.defaulters.needing_reminders(school_id, cutoff)

    def record_reminder(self, defaulter_id: uuid.UUID) -> FeeDefaulterRecord:
        """Mark a reminder as sent; the only write to the index outside sync"""

        def operation() -> FeeDefaulterRecord:
            record = self.defaulters.get(defaulter_id)
            if record is None:
                raise NotFoundError("Defaulter not found")
            self.defaulters.record_reminder(record, self.clock())
            return record

        return self.run_in_transaction(operation)

    async def issue_reminders(self, school_id: str, reminder_interval_days: Optional[int] = None) -> ReminderResult:
        """
        Notify every defaulter due for a reminder and record each delivery.

        A failed delivery leaves the row untouched so it is picked up again.
        """
        client = self.notifications or NotificationClient()
        sent = failed = 0

        for record in self.get_defaulters_needing_reminders(school_id, reminder_interval_days):
            payload = {
                "event": "FEE_REMINDER",
                "school_id": record.school_id,
                "student_id": record.student_id,
                "ledger_id": str(record.ledger_id),
                "grade": record.grade,
                "total_due_amount": record.total_due_amount,
                "overdue_months": list(record.overdue_months),
                "days_since_first_due": record.days_since_first_due,
                "severity": severity_level(record.days_since_first_due, record.total_due_amount),
                "notification_count": record.notification_count,
            }
            defaulter_id = record.id
            try:
                await client.send_reminder(payload)
            except NotificationDeliveryError as e:
                failed += 1
                reminder_counter.labels(outcome="failed").inc()
                logger.warning(
                    "Reminder delivery failed",
                    extra={"school_id": school_id, "student_id": payload["student_id"], "error": str(e)},
                )
                continue

            self.record_reminder(defaulter_id)
            sent += 1
            reminder_counter.labels(outcome="sent").inc()

        logger.info("Reminders issued", extra={"school_id": school_id, "sent": sent, "failed": failed})
        return ReminderResult(sent=sent, failed=failed)
