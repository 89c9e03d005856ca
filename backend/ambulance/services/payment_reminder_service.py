# backend/ambulance/services/payment_reminder_service.py
"""
Reminder Scheduler.

Sends payment reminders for:

- emergency bookings that have arrived or completed with a payment still
  pending, or flagged ``unpaid_emergency`` after it expired (keyed by booking);
- scheduled bookings whose downpayment or final-payment deadline is within
  the lead window (keyed by the open payment, or by booking and stage when no
  payment row exists yet).

The cool-down check and the reminder write happen while the booking row is
locked, so two overlapping runs cannot both remind inside one window.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, TypedDict

from sqlalchemy.orm import Session

from ambulance.core.clock import Clock
from ambulance.core.config import settings
from ambulance.core.exceptions import PersistenceConflict, RepositoryException
from ambulance.events.booking_events import PaymentReminderDue
from ambulance.models.booking import Booking, EmergencyPaymentStatus
from ambulance.models.notification import NotificationEventType
from ambulance.models.payment import Payment, PaymentType
from ambulance.monitoring.prometheus_metrics import prometheus_metrics
from ambulance.repositories.factory import RepositoryFactory

from .base import BaseService
from .notification_dispatcher import NotificationDispatcher, Notifier
from .payment_deadline_tracker import PaymentDeadlineTracker

EMERGENCY = "emergency"
DOWN_PAYMENT = PaymentType.DOWN_PAYMENT.value
FINAL_PAYMENT = "final_payment"

_REMINDER_EVENT_TYPES = sorted(t.value for t in NotificationEventType.reminder_types())


class PaymentReminderResult(TypedDict):
    success: bool
    reminders_sent: int
    emergency_reminders: int
    downpayment_reminders: int
    final_payment_reminders: int
    skipped_count: int
    failed_count: int
    errors: List[Dict[str, Any]]
    error: Optional[str]
    processed_at: str


_COUNTER_BY_KIND = {
    EMERGENCY: "emergency_reminders",
    DOWN_PAYMENT: "downpayment_reminders",
    FINAL_PAYMENT: "final_payment_reminders",
}


def _flagged_unpaid(booking: Booking) -> bool:
    return booking.payment_status == EmergencyPaymentStatus.UNPAID_EMERGENCY.value


def reminder_key_for(booking_id: str, kind: str, payment: Optional[Payment]) -> str:
    """Cool-down key: emergency reminders per booking, scheduled ones per payment."""
    if kind == EMERGENCY:
        return f"booking:{booking_id}"
    if payment is not None:
        return f"payment:{payment.id}"
    return f"booking:{booking_id}:{kind}"


class PaymentReminderService(BaseService):
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        tracker: Optional[PaymentDeadlineTracker] = None,
        cooldown: Optional[timedelta] = None,
        batch_limit: Optional[int] = None,
    ):
        super().__init__(db, clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.notification_repository = RepositoryFactory.create_notification_log_repository(db)
        self.dispatcher = NotificationDispatcher(db, notifier, clock=self.clock)
        self.tracker = tracker or PaymentDeadlineTracker(
            final_payment_breach_status=settings.final_payment_breach_status,
            reminder_lead=timedelta(hours=settings.reminder_lead_hours),
        )
        self.cooldown = (
            cooldown if cooldown is not None else timedelta(hours=settings.reminder_cooldown_hours)
        )
        self.batch_limit = batch_limit or settings.sweep_batch_limit

    @BaseService.measure_operation("run_payment_reminder_sweep")
    def run(self, force: bool = False, now: Optional[datetime] = None) -> PaymentReminderResult:
        """
        Send every reminder currently due.

        Args:
            force: Ignore the cool-down window
            now: Evaluation instant; defaults to the injected clock
        """
        now = now or self.clock.now()
        result: PaymentReminderResult = {
            "success": True,
            "reminders_sent": 0,
            "emergency_reminders": 0,
            "downpayment_reminders": 0,
            "final_payment_reminders": 0,
            "skipped_count": 0,
            "failed_count": 0,
            "errors": [],
            "error": None,
            "processed_at": now.astimezone(timezone.utc).isoformat(),
        }
        until = now + self.tracker.reminder_lead

        kinds: List[tuple[str, Callable[[], List[str]]]] = [
            (EMERGENCY, lambda: self.booking_repository.find_emergency_reminder_ids(self.batch_limit)),
            (
                DOWN_PAYMENT,
                lambda: self.booking_repository.find_downpayment_reminder_ids(
                    now, until, self.batch_limit
                ),
            ),
            (
                FINAL_PAYMENT,
                lambda: self.booking_repository.find_final_payment_reminder_ids(
                    now, until, self.batch_limit
                ),
            ),
        ]

        for kind, load_candidates in kinds:
            try:
                booking_ids = load_candidates()
            except RepositoryException as exc:
                self.db.rollback()
                self.logger.error(
                    f"Payment reminder sweep aborted while loading {kind} candidates: {exc}",
                    exc_info=True,
                    extra={"reminder_kind": kind},
                )
                result["success"] = False
                result["error"] = str(exc)
                return result

            for booking_id in booking_ids:
                self._run_unit(kind, booking_id, now, force, result)

        self.logger.info(
            f"Payment reminder sweep finished: {result['reminders_sent']} sent, "
            f"{result['skipped_count']} skipped, {result['failed_count']} failed",
            extra={"reminders_sent": result["reminders_sent"], "force": force},
        )
        return result

    def _run_unit(
        self,
        kind: str,
        booking_id: str,
        now: datetime,
        force: bool,
        result: PaymentReminderResult,
    ) -> None:
        try:
            with self.transaction():
                outcome = self._remind(kind, booking_id, now, force)
        except PersistenceConflict as exc:
            self.logger.info(
                f"Skipping reminder for {booking_id}: {exc.message}",
                extra={"booking_id": booking_id, "reminder_kind": kind},
            )
            outcome = "skipped"
        except Exception as exc:
            self.logger.error(
                f"Error sending {kind} reminder for booking {booking_id}: {exc}",
                exc_info=True,
                extra={"booking_id": booking_id, "reminder_kind": kind},
            )
            result["failed_count"] += 1
            result["errors"].append({"booking_id": booking_id, "kind": kind, "error": str(exc)})
            prometheus_metrics.record_reminder(kind, "error")
            return

        prometheus_metrics.record_reminder(kind, outcome)
        if outcome == "sent":
            result["reminders_sent"] += 1
            counter = _COUNTER_BY_KIND[kind]
            result[counter] += 1  # type: ignore[literal-required]
        elif outcome == "undelivered":
            result["failed_count"] += 1
            result["errors"].append(
                {"booking_id": booking_id, "kind": kind, "error": "notification not delivered"}
            )
        else:
            result["skipped_count"] += 1

    def _remind(self, kind: str, booking_id: str, now: datetime, force: bool) -> str:
        booking = self.booking_repository.get_for_update(booking_id, skip_locked=True)
        if booking is None or not self._still_due(kind, booking, now):
            return "skipped"

        payment = self._payment_for(kind, booking)
        if kind == EMERGENCY and payment is None and not _flagged_unpaid(booking):
            return "skipped"

        key = reminder_key_for(booking.id, kind, payment)
        if not force and self._in_cooldown(key, payment, now):
            return "cooldown"

        event = PaymentReminderDue(
            booking_id=booking.id,
            reminder_kind=kind,
            reminder_key=key,
            payment_id=payment.id if payment else None,
            deadline=self._deadline_for(kind, booking),
            amount_due=self._amount_due(kind, booking, payment),
        )
        event_type = (
            NotificationEventType.EMERGENCY_PAYMENT_REMINDER
            if kind == EMERGENCY
            else NotificationEventType.PAYMENT_REMINDER
        )
        delivered = self.dispatcher.dispatch(
            event_type.value,
            booking.id,
            payment_id=event.payment_id,
            reminder_key=key,
            context=event.to_dict(),
            occurred_at=now,
        )
        if not delivered:
            return "undelivered"
        if payment is not None:
            self.payment_repository.record_reminder(payment, now)
        return "sent"

    def _still_due(self, kind: str, booking: Booking, now: datetime) -> bool:
        if kind == EMERGENCY:
            return self.tracker.emergency_reminder_due(booking)
        if kind == DOWN_PAYMENT:
            return self.tracker.downpayment_reminder_due(booking, now)
        return self.tracker.final_payment_reminder_due(booking, now)

    def _payment_for(self, kind: str, booking: Booking) -> Optional[Payment]:
        if kind == EMERGENCY:
            return self.payment_repository.get_latest_pending(booking.id)
        payment_type = DOWN_PAYMENT if kind == DOWN_PAYMENT else PaymentType.FULL_PAYMENT.value
        return self.payment_repository.get_latest_pending(booking.id, payment_type)

    @staticmethod
    def _deadline_for(kind: str, booking: Booking) -> Optional[datetime]:
        if kind == DOWN_PAYMENT:
            return booking.dp_payment_deadline
        if kind == FINAL_PAYMENT:
            return booking.final_payment_deadline
        return None

    def _in_cooldown(self, key: str, payment: Optional[Payment], now: datetime) -> bool:
        """Latest delivered reminder, from the log or the payment row, is inside the window."""
        last = self.notification_repository.last_delivered_at(key, _REMINDER_EVENT_TYPES)
        if payment is not None and payment.last_reminder_at is not None:
            last = payment.last_reminder_at if last is None else max(last, payment.last_reminder_at)
        return last is not None and last > now - self.cooldown

    def _amount_due(self, kind: str, booking: Booking, payment: Optional[Payment]) -> int:
        if payment is not None:
            return payment.amount
        if kind == EMERGENCY:
            latest = self.payment_repository.get_latest(booking.id)
            return latest.amount if latest is not None else booking.total_amount
        if kind == DOWN_PAYMENT:
            return booking.downpayment_amount
        return booking.remaining_amount


def run_payment_reminder_sweep(
    db: Session,
    force: bool = False,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> PaymentReminderResult:
    """In-process entry point used by the Celery task and the CLI."""
    return PaymentReminderService(db, notifier=notifier, clock=clock).run(force=force, now=now)
