"""
Celery tasks driving the booking lifecycle sweeps.

Each task opens its own session, runs one sweep in-process and returns the
sweep's JSON-serializable result.
"""

import logging
from typing import Any, Callable, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from ambulance.services.auto_cancellation_service import (
    AutoCancellationResult,
    AutoCancellationService,
)
from ambulance.services.payment_reminder_service import (
    PaymentReminderResult,
    PaymentReminderService,
)
from ambulance.tasks.celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

logger = logging.getLogger(__name__)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


@typed_task(
    bind=True,
    max_retries=3,
    name="ambulance.tasks.booking_lifecycle_tasks.run_auto_cancellation_sweep",
)
def run_auto_cancellation_sweep(self: Any) -> AutoCancellationResult:
    """
    Cancel or fail bookings whose payment deadline lapsed.

    Runs hourly from beat.
    """
    from ambulance.database import SessionLocal

    db: Session = SessionLocal()
    try:
        result = AutoCancellationService(db).run()
    except Exception as exc:
        logger.error(f"Auto-cancellation sweep crashed: {exc}", exc_info=True)
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()

    if not result["success"]:
        logger.error(
            f"Auto-cancellation sweep aborted: {result['error']}",
            extra={"task_name": "run_auto_cancellation_sweep"},
        )
    return result


@typed_task(
    bind=True,
    max_retries=3,
    name="ambulance.tasks.booking_lifecycle_tasks.run_payment_reminder_sweep",
)
def run_payment_reminder_sweep(self: Any, force: bool = False) -> PaymentReminderResult:
    """
    Send due payment reminders.

    Runs every 10 minutes from beat; ``force`` bypasses the cool-down.
    """
    from ambulance.database import SessionLocal

    db: Session = SessionLocal()
    try:
        result = PaymentReminderService(db).run(force=force)
    except Exception as exc:
        logger.error(f"Payment reminder sweep crashed: {exc}", exc_info=True)
        raise self.retry(exc=exc, countdown=120)
    finally:
        db.close()

    if not result["success"]:
        logger.error(
            f"Payment reminder sweep aborted: {result['error']}",
            extra={"task_name": "run_payment_reminder_sweep"},
        )
    return result
