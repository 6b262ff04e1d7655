"""Shared unit-of-work plumbing for services"""

import logging
from datetime import datetime
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fee_ledger.config import Settings, settings as default_settings
from fee_ledger.domain.exceptions import ConflictError
from fee_ledger.infrastructure.observability.metrics import ledger_conflict_counter
from fee_ledger.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Postgres SQLSTATE unique_violation
PG_UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    """True for duplicate-key errors, the only integrity errors a retry can resolve"""
    if getattr(error.orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    return "UNIQUE constraint failed" in str(error.orig)


class BaseService:
    """Holds the session, clock and settings every service works with"""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        config: Settings | None = None,
    ):
        self.db = db
        self.clock = clock
        self.config = config or default_settings

    def run_in_transaction(self, operation: Callable[[], T], max_attempts: int | None = None) -> T:
        """
        Run `operation` as one unit of work and commit it.

        Lost optimistic-lock races and unique-key collisions roll the whole
        unit back and run it again from a fresh read. Any other error,
        including foreign-key and NOT NULL violations, rolls back and
        propagates on the first attempt, leaving stored state untouched.
        """
        attempts = max(1, max_attempts or self.config.ledger_write_max_retries)
        attempt = 0
        while True:
            attempt += 1
            try:
                result = operation()
                self.db.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                self.db.rollback()
                if isinstance(e, IntegrityError) and not is_unique_violation(e):
                    raise
                ledger_conflict_counter.inc()
                logger.warning(
                    "Write conflict, retrying",
                    extra={"attempt": attempt, "max_attempts": attempts, "error": type(e).__name__},
                )
                if attempt >= attempts:
                    raise ConflictError(f"Gave up after {attempts} conflicting attempts") from e
            except Exception:
                self.db.rollback()
                raise
