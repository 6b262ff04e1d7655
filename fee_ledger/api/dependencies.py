"""Dependency injection for FastAPI endpoints"""

from datetime import datetime
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from fee_ledger.infrastructure.clients.notifications import NotificationClient
from fee_ledger.infrastructure.database.session import get_db
from fee_ledger.services.collection import FeeCollectionService
from fee_ledger.services.defaulters import DefaulterService
from fee_ledger.services.reporting import ReportingService
from fee_ledger.utils.date_utils import utcnow
from fee_ledger.utils.ids import TransactionIdGenerator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_id_generator(clock: Callable[[], datetime] = Depends(get_clock)) -> Callable[[], str]:
    return TransactionIdGenerator(clock=clock)


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()


def get_collection_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
    id_generator: Callable[[], str] = Depends(get_id_generator),
) -> FeeCollectionService:
    return FeeCollectionService(db, clock=clock, id_generator=id_generator)


def get_defaulter_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
    notification_client: NotificationClient = Depends(get_notification_client),
) -> DefaulterService:
    return DefaulterService(db, clock=clock, notification_client=notification_client)


def get_reporting_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReportingService:
    return ReportingService(db, clock=clock)
