#!/usr/bin/env python3
"""
Run the weekly schedule reset once, for external cron deployments.

Usage:
    python scripts/run_weekly_reset.py                  # roll over every due instance
    python scripts/run_weekly_reset.py --dry-run        # preview snapshots, write nothing
    python scripts/run_weekly_reset.py --instance ID    # target specific instances
    python scripts/run_weekly_reset.py --next-run       # print when the in-process scheduler would fire

Requires the package to be installed (pip install -e .). Configuration comes
from the same environment variables / .env as the API.
"""

import argparse
import json
import sys
from datetime import datetime, timezone

from core.config import settings
from core.logging import configure_logging
from database.session import SessionLocal, init_db
from services.notification_service import StoreNotificationDispatcher
from services.reset_service import ResetProcessor
from services.scheduler import CronSchedule


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Weekly schedule reset")
    parser.add_argument("--dry-run", action="store_true", help="Compute snapshot previews without writing")
    parser.add_argument("--batch-size", type=int, default=None, help=f"Instances per batch (default {settings.reset_batch_size})")
    parser.add_argument("--instance", action="append", dest="instance_ids", help="Instance id to process (repeatable)")
    parser.add_argument("--no-notify", action="store_true", help="Skip the coordinator summary notification")
    parser.add_argument("--next-run", action="store_true", help="Print the next scheduled run and exit")
    args = parser.parse_args(argv)

    configure_logging()

    if args.next_run:
        due = CronSchedule.parse(settings.reset_cron).next_run(datetime.now(timezone.utc), settings.timezone)
        print(due.isoformat())
        return 0

    init_db()
    dispatcher = None if args.no_notify else StoreNotificationDispatcher(SessionLocal)
    processor = ResetProcessor(SessionLocal, dispatcher)
    result = processor.run(dry_run=args.dry_run, batch_size=args.batch_size, instance_ids=args.instance_ids)

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
