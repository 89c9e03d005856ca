# backend/ambulance/services/auto_cancellation_service.py
"""
Auto-Cancellation Sweeper.

One run applies four independent rules, in order:

- payment expiry: pending payments past ``expires_at`` are marked expired and
  their booking is cancelled (emergency) or moved to ``payment_failed``
  (scheduled); emergency bookings already served are flagged
  ``unpaid_emergency`` instead;
- stale payments: pending payments created without an expiry are expired once
  older than ``stale_payment_hours`` and their booking moves to
  ``payment_failed``;
- downpayment deadline: unpaid scheduled bookings past ``dp_payment_deadline``
  are cancelled;
- final-payment deadline: bookings past ``final_payment_deadline`` with only
  the downpayment settled move to the configured status.

Whenever a rule cancels or fails a booking, the booking's remaining pending
payments are expired in the same transaction so no late gateway callback can
settle them.

Each booking is handled in its own transaction under a row lock, so a failure
or a lost race on one booking never affects the rest of the batch. Rows
locked by an overlapping run are skipped. Only a failing candidate query
aborts the run.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, TypedDict

from sqlalchemy.orm import Session

from ambulance.core.clock import Clock
from ambulance.core.config import settings
from ambulance.core.exceptions import (
    InvalidStateTransition,
    PersistenceConflict,
    RepositoryException,
)
from ambulance.events.booking_events import PaymentExpired
from ambulance.models.booking import Booking, BookingStatus, EmergencyPaymentStatus
from ambulance.models.notification import NotificationEventType
from ambulance.models.payment import Payment, PaymentStatus
from ambulance.monitoring.prometheus_metrics import prometheus_metrics
from ambulance.repositories.factory import RepositoryFactory

from .base import BaseService
from .booking_state_machine import BookingStateMachine
from .notification_dispatcher import NotificationDispatcher, Notifier
from .payment_deadline_tracker import BreachKind, DeadlineBreach, PaymentDeadlineTracker

SWEEP_NAME = "auto_cancellation"

_PAYMENT_RULES = frozenset({BreachKind.PAYMENT_EXPIRY, BreachKind.STALE_PAYMENT})
_SKIP_OUTCOMES = frozenset({"conflict", "invalid", "skipped"})


class AutoCancellationResult(TypedDict):
    success: bool
    cancelled_count: int
    payment_failed_count: int
    expired_payment_count: int
    unpaid_emergency_count: int
    skipped_count: int
    failed_count: int
    errors: List[Dict[str, Any]]
    error: Optional[str]
    processed_at: str


def _empty_result(now: datetime) -> AutoCancellationResult:
    return {
        "success": True,
        "cancelled_count": 0,
        "payment_failed_count": 0,
        "expired_payment_count": 0,
        "unpaid_emergency_count": 0,
        "skipped_count": 0,
        "failed_count": 0,
        "errors": [],
        "error": None,
        "processed_at": now.astimezone(timezone.utc).isoformat(),
    }


class AutoCancellationService(BaseService):
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        tracker: Optional[PaymentDeadlineTracker] = None,
        batch_limit: Optional[int] = None,
    ):
        super().__init__(db, clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.dispatcher = NotificationDispatcher(db, notifier, clock=self.clock)
        self.state_machine = BookingStateMachine(db, clock=self.clock, dispatcher=self.dispatcher)
        self.tracker = tracker or PaymentDeadlineTracker(
            final_payment_breach_status=settings.final_payment_breach_status,
            reminder_lead=timedelta(hours=settings.reminder_lead_hours),
            stale_payment_age=timedelta(hours=settings.stale_payment_hours),
        )
        self.batch_limit = batch_limit or settings.sweep_batch_limit

    @BaseService.measure_operation("run_auto_cancellation_sweep")
    def run(self, now: Optional[datetime] = None) -> AutoCancellationResult:
        """
        Execute one sweep.

        Args:
            now: Evaluation instant; also stamped on every change the run makes

        Returns:
            Aggregate counts; ``success`` is False only if a candidate query failed
        """
        now = now or self.clock.now()
        result = _empty_result(now)
        stale_cutoff = now - self.tracker.stale_payment_age

        rules: List[tuple[BreachKind, Callable[[], List[str]], Callable[[str, datetime], str]]] = [
            (
                BreachKind.PAYMENT_EXPIRY,
                lambda: self.payment_repository.find_expired_pending_ids(now, self.batch_limit),
                self._expire_payment,
            ),
            (
                BreachKind.STALE_PAYMENT,
                lambda: self.payment_repository.find_stale_pending_ids(
                    stale_cutoff, self.batch_limit
                ),
                self._expire_stale_payment,
            ),
            (
                BreachKind.DOWNPAYMENT,
                lambda: self.booking_repository.find_downpayment_breach_ids(now, self.batch_limit),
                self._apply_booking_deadline,
            ),
            (
                BreachKind.FINAL_PAYMENT,
                lambda: self.booking_repository.find_final_payment_breach_ids(
                    now, self.batch_limit
                ),
                self._apply_booking_deadline,
            ),
        ]

        for rule, load_candidates, handler in rules:
            try:
                candidate_ids = load_candidates()
            except RepositoryException as exc:
                self.db.rollback()
                self.logger.error(
                    f"Auto-cancellation sweep aborted while loading {rule.value} candidates: {exc}",
                    exc_info=True,
                    extra={"rule": rule.value},
                )
                result["success"] = False
                result["error"] = str(exc)
                return result

            for entity_id in candidate_ids:
                self._run_unit(rule, entity_id, lambda eid=entity_id: handler(eid, now), result)

        self.logger.info(
            f"Auto-cancellation sweep finished: {result['cancelled_count']} cancelled, "
            f"{result['payment_failed_count']} payment_failed, "
            f"{result['expired_payment_count']} payments expired, {result['failed_count']} failed",
            extra={
                "cancelled_count": result["cancelled_count"],
                "failed_count": result["failed_count"],
            },
        )
        return result

    def _run_unit(
        self,
        rule: BreachKind,
        entity_id: str,
        work: Callable[[], str],
        result: AutoCancellationResult,
    ) -> None:
        try:
            with self.transaction():
                outcome = work()
        except PersistenceConflict as exc:
            self.logger.info(
                f"Skipping {entity_id}: {exc.message}",
                extra={"rule": rule.value, "entity_id": entity_id},
            )
            outcome = "conflict"
        except InvalidStateTransition as exc:
            self.logger.warning(
                f"Skipping {entity_id}: {exc.message}",
                extra={"rule": rule.value, "entity_id": entity_id},
            )
            outcome = "invalid"
        except Exception as exc:
            self.logger.error(
                f"Error processing {rule.value} for {entity_id}: {exc}",
                exc_info=True,
                extra={"rule": rule.value, "entity_id": entity_id},
            )
            result["failed_count"] += 1
            result["errors"].append({"rule": rule.value, "id": entity_id, "error": str(exc)})
            prometheus_metrics.record_sweep_outcome(SWEEP_NAME, rule.value, "error")
            return

        prometheus_metrics.record_sweep_outcome(SWEEP_NAME, rule.value, outcome)
        if outcome == BookingStatus.CANCELLED.value:
            result["cancelled_count"] += 1
        elif outcome == BookingStatus.PAYMENT_FAILED.value:
            result["payment_failed_count"] += 1
        elif outcome == EmergencyPaymentStatus.UNPAID_EMERGENCY.value:
            result["unpaid_emergency_count"] += 1
        elif outcome in _SKIP_OUTCOMES:
            result["skipped_count"] += 1
        if rule in _PAYMENT_RULES and outcome not in _SKIP_OUTCOMES:
            result["expired_payment_count"] += 1

    def _expire_payment(self, payment_id: str, now: datetime) -> str:
        return self._close_payment(
            payment_id,
            now,
            is_due=self.tracker.is_payment_expired,
            classify=self.tracker.classify_expired_payment,
        )

    def _expire_stale_payment(self, payment_id: str, now: datetime) -> str:
        return self._close_payment(
            payment_id,
            now,
            is_due=self.tracker.is_payment_stale,
            classify=self.tracker.classify_stale_payment,
        )

    def _close_payment(
        self,
        payment_id: str,
        now: datetime,
        *,
        is_due: Callable[[Payment, datetime], bool],
        classify: Callable[[Booking], Optional[DeadlineBreach]],
    ) -> str:
        payment = self.payment_repository.get_for_update(payment_id, skip_locked=True)
        if payment is None or not is_due(payment, now):
            return "skipped"
        booking = self.booking_repository.get_for_update(payment.booking_id, skip_locked=True)
        if booking is None or booking.is_terminal:
            return "skipped"

        self.payment_repository.compare_and_set_status(
            payment.id, {PaymentStatus.PENDING.value}, PaymentStatus.EXPIRED.value
        )
        event = PaymentExpired(
            booking_id=booking.id,
            payment_id=payment.id,
            payment_type=payment.payment_type,
            expired_at=now,
        )
        self.dispatcher.dispatch(
            NotificationEventType.PAYMENT_EXPIRED.value,
            booking.id,
            payment_id=payment.id,
            context=event.to_dict(),
            occurred_at=now,
        )

        # A newer attempt supersedes this one; the booking waits on that.
        if self.payment_repository.get_latest_pending(booking.id) is not None:
            return "expired"

        breach = classify(booking)
        if breach is not None:
            return self._apply_breach(booking, breach, now)

        if self.tracker.is_served_unpaid_emergency(booking):
            booking.payment_status = EmergencyPaymentStatus.UNPAID_EMERGENCY.value
            self.db.flush()
            self.logger.info(
                f"Booking {booking.booking_code} served with unpaid emergency payment",
                extra={"booking_id": booking.id, "payment_id": payment.id},
            )
            return EmergencyPaymentStatus.UNPAID_EMERGENCY.value
        return "expired"

    def _apply_booking_deadline(self, booking_id: str, now: datetime) -> str:
        booking = self.booking_repository.get_for_update(booking_id, skip_locked=True)
        if booking is None:
            return "skipped"
        breach = self.tracker.classify(booking, now)
        if breach is None:
            return "skipped"
        return self._apply_breach(booking, breach, now)

    def _apply_breach(self, booking: Booking, breach: DeadlineBreach, now: datetime) -> str:
        self.state_machine.transition(
            booking.id,
            breach.target_status.value,
            expected={booking.status},
            reason=breach.reason,
            payment_lapse=True,
            occurred_at=now,
        )
        closed = self.payment_repository.expire_pending_for_booking(booking.id)
        if closed:
            self.logger.info(
                f"Expired {len(closed)} open payment(s) of booking {booking.booking_code}",
                extra={"booking_id": booking.id, "payment_ids": closed, "rule": breach.kind.value},
            )
        return breach.target_status.value


def run_auto_cancellation_sweep(
    db: Session,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> AutoCancellationResult:
    """In-process entry point used by the Celery task and the CLI."""
    return AutoCancellationService(db, notifier=notifier, clock=clock).run(now=now)
