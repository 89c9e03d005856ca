# backend/ambulance/tasks/beat_schedule.py
"""
Celery Beat schedule for the booking lifecycle sweeps.

Both sweeps are idempotent and lock per booking, so an occasional overlap
is harmless; ``expires`` drops a queued run that could not start before the
next one is due.
"""

from datetime import timedelta
from typing import Any, Union

from celery.schedules import crontab

from ambulance.core.config import settings

Schedule = Union[crontab, timedelta]


def interval_schedule(minutes: int) -> Schedule:
    """Prefer wall-clock aligned crontabs; fall back to a plain interval."""
    if minutes == 60:
        return crontab(minute=0)
    if minutes < 60 and 60 % minutes == 0:
        return crontab(minute=f"*/{minutes}")
    return timedelta(minutes=minutes)


def build_schedule(
    auto_cancellation_minutes: int, payment_reminder_minutes: int, queue: str
) -> dict[str, dict[str, Any]]:
    return {
        # Cancel or fail bookings whose payment deadline lapsed
        "auto-cancel-overdue-bookings": {
            "task": "ambulance.tasks.booking_lifecycle_tasks.run_auto_cancellation_sweep",
            "schedule": interval_schedule(auto_cancellation_minutes),
            "options": {
                "queue": queue,
                "priority": 8,
                "expires": auto_cancellation_minutes * 60,
            },
        },
        # Payment reminders with a 6h cool-down per booking/payment
        "send-payment-reminders": {
            "task": "ambulance.tasks.booking_lifecycle_tasks.run_payment_reminder_sweep",
            "schedule": interval_schedule(payment_reminder_minutes),
            "kwargs": {"force": False},
            "options": {
                "queue": queue,
                "priority": 6,
                "expires": payment_reminder_minutes * 60,
            },
        },
    }


CELERYBEAT_SCHEDULE = build_schedule(
    settings.auto_cancellation_interval_minutes,
    settings.payment_reminder_interval_minutes,
    settings.payments_queue,
)

# Local development sweeps every 5 minutes on the same queue as production.
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": build_schedule(
        5,
        settings.payment_reminder_interval_minutes,
        settings.payments_queue,
    ),
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of schedule entry name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
