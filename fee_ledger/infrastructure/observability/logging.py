"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from fee_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_collection(
    request_id: Optional[str],
    student_id: str,
    ledger_id: str,
    kind: str,
    amount: int,
    transaction_ids: list,
    duration_ms: float,
) -> None:
    """Log structured collection outcome for reconciliation with the cash book"""
    logging.info(
        "Fee collected",
        extra={
            "request_id": request_id,
            "student_id": student_id,
            "ledger_id": ledger_id,
            "step": "collection_complete",
            "collection_kind": kind,
            "amount": amount,
            "transaction_ids": transaction_ids,
            "duration_ms": duration_ms,
        },
    )


def log_defaulter_sync(school_id: str, synced: int, removed: int, active: int, skipped: int, duration_ms: float) -> None:
    """Log one reconciliation run of the defaulters index"""
    logging.info(
        "Defaulter sync completed",
        extra={
            "school_id": school_id,
            "step": "defaulter_sync_complete",
            "synced": synced,
            "removed": removed,
            "active": active,
            "skipped_ledgers": skipped,
            "duration_ms": duration_ms,
        },
    )
