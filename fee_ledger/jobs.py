"""Scheduled batch tasks: defaulter reconciliation and reminder issuance

Usage:
    python -m fee_ledger.jobs sync-defaulters --school S [--grace-days N]
    python -m fee_ledger.jobs send-reminders --school S [--interval-days N]
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from fee_ledger.config import settings
from fee_ledger.infrastructure.database.session import SessionLocal
from fee_ledger.infrastructure.observability.logging import setup_logging
from fee_ledger.services.defaulters import DefaulterService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fee_ledger.jobs", description="Fee ledger batch tasks")
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync-defaulters", help="Rebuild the defaulters index of a school")
    sync.add_argument("--school", required=True, help="School identifier")
    sync.add_argument(
        "--grace-days",
        type=int,
        default=None,
        help=f"Days past due before a month counts as overdue (default {settings.grace_period_days})",
    )

    reminders = commands.add_parser("send-reminders", help="Notify defaulters due for a reminder")
    reminders.add_argument("--school", required=True, help="School identifier")
    reminders.add_argument(
        "--interval-days",
        type=int,
        default=None,
        help=f"Minimum days between reminders (default {settings.reminder_interval_days})",
    )
    return parser


def run(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        service = DefaulterService(db)
        if args.command == "sync-defaulters":
            result = service.sync_defaulters(args.school, args.grace_days)
            print(f"Synced {result.synced}, removed {result.removed}, active {result.active}")
        else:
            result = asyncio.run(service.issue_reminders(args.school, args.interval_days))
            print(f"Reminders sent {result.sent}, failed {result.failed}")
            if result.failed:
                return 1
        return 0
    except Exception as e:
        logger.error(f"Batch task {args.command} failed: {e}", extra={"school_id": args.school})
        raise
    finally:
        db.close()


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging(settings.log_level)
    return run(build_parser().parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
