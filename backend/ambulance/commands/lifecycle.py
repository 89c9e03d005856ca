#!/usr/bin/env python
# backend/ambulance/commands/lifecycle.py
"""
Booking lifecycle management commands.

Runs a sweep immediately instead of waiting for beat.

Usage:
    python -m ambulance.commands.lifecycle sweep                # Auto-cancellation sweep
    python -m ambulance.commands.lifecycle remind [--force]     # Payment reminder sweep
    python -m ambulance.commands.lifecycle sweep --async        # Queue via Celery instead
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from ambulance.core.config import settings
from ambulance.database import SessionLocal
from ambulance.services.auto_cancellation_service import AutoCancellationService
from ambulance.services.payment_reminder_service import PaymentReminderService

logger = logging.getLogger(__name__)


class LifecycleCommand:
    """Lifecycle sweep command handler."""

    def run_sweep(self, async_mode: bool = False) -> Dict[str, Any]:
        if async_mode:
            from ambulance.tasks.booking_lifecycle_tasks import run_auto_cancellation_sweep

            result = run_auto_cancellation_sweep.delay()
            return {"success": True, "status": "submitted", "task_id": result.id}

        db = SessionLocal()
        try:
            return dict(AutoCancellationService(db).run())
        finally:
            db.close()

    def run_reminders(self, force: bool = False, async_mode: bool = False) -> Dict[str, Any]:
        if async_mode:
            from ambulance.tasks.booking_lifecycle_tasks import run_payment_reminder_sweep

            result = run_payment_reminder_sweep.delay(force=force)
            return {"success": True, "status": "submitted", "task_id": result.id}

        db = SessionLocal()
        try:
            return dict(PaymentReminderService(db).run(force=force))
        finally:
            db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Booking lifecycle management commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m ambulance.commands.lifecycle sweep
  python -m ambulance.commands.lifecycle remind --force
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    sweep_parser = subparsers.add_parser("sweep", help="Run the auto-cancellation sweep now")
    sweep_parser.add_argument(
        "--async", dest="async_mode", action="store_true", help="Queue the sweep on Celery"
    )

    remind_parser = subparsers.add_parser("remind", help="Run the payment reminder sweep now")
    remind_parser.add_argument(
        "--force", action="store_true", help="Send reminders even inside the cool-down window"
    )
    remind_parser.add_argument(
        "--async", dest="async_mode", action="store_true", help="Queue the sweep on Celery"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the requested sweep and print its JSON result."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    command = LifecycleCommand()
    if args.command == "sweep":
        result = command.run_sweep(async_mode=args.async_mode)
    else:
        result = command.run_reminders(force=args.force, async_mode=args.async_mode)

    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
