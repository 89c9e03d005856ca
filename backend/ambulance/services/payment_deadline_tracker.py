# backend/ambulance/services/payment_deadline_tracker.py
"""
Deadline classification for bookings and payment attempts.

Pure functions of the record and an explicit ``now``; no I/O. The sweeper
uses these both to pick candidates and to re-check a booking after it has
been locked.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ambulance.core.clock import ensure_utc
from ambulance.models.booking import Booking, BookingStatus, BookingType
from ambulance.models.payment import Payment, PaymentStatus

OVERDUE_DOWNPAYMENT_REASON = "Cancelled due to overdue downpayment"
OVERDUE_FINAL_PAYMENT_REASON = "Final payment deadline passed"
EXPIRED_PAYMENT_REASON = "Payment expired"
STALE_PAYMENT_REASON = "Payment pending too long"

_SERVED_STATUSES = frozenset(
    {BookingStatus.DISPATCHED, BookingStatus.ARRIVED, BookingStatus.COMPLETED}
)


class BreachKind(str, Enum):
    DOWNPAYMENT = "downpayment_deadline"
    FINAL_PAYMENT = "final_payment_deadline"
    PAYMENT_EXPIRY = "payment_expiry"
    STALE_PAYMENT = "stale_payment"


@dataclass(frozen=True)
class DeadlineBreach:
    kind: BreachKind
    target_status: BookingStatus
    reason: str


def _passed(deadline: Optional[datetime], now: datetime) -> bool:
    return deadline is not None and ensure_utc(now) > ensure_utc(deadline)


def _within(deadline: Optional[datetime], now: datetime, until: datetime) -> bool:
    if deadline is None:
        return False
    deadline = ensure_utc(deadline)
    return ensure_utc(now) < deadline <= ensure_utc(until)


def _awaiting_payment(booking: Booking) -> bool:
    return BookingStatus(booking.status) in BookingStatus.awaiting_payment()


class PaymentDeadlineTracker:
    """Classifies downpayment, final-payment and payment-record deadline breaches."""

    def __init__(
        self,
        final_payment_breach_status: str = BookingStatus.PAYMENT_FAILED.value,
        reminder_lead: timedelta = timedelta(hours=6),
        stale_payment_age: timedelta = timedelta(hours=24),
    ):
        self.final_payment_breach_status = BookingStatus(final_payment_breach_status)
        self.reminder_lead = reminder_lead
        self.stale_payment_age = stale_payment_age

    def is_downpayment_breached(self, booking: Booking, now: datetime) -> bool:
        return (
            not booking.is_downpayment_paid
            and not booking.is_fully_paid
            and _passed(booking.dp_payment_deadline, now)
        )

    def is_final_payment_breached(self, booking: Booking, now: datetime) -> bool:
        return (
            booking.is_downpayment_paid
            and not booking.is_fully_paid
            and _passed(booking.final_payment_deadline, now)
        )

    @staticmethod
    def is_payment_expired(payment: Payment, now: datetime) -> bool:
        return payment.status == PaymentStatus.PENDING.value and _passed(payment.expires_at, now)

    def is_payment_stale(self, payment: Payment, now: datetime) -> bool:
        """Pending payments without an expiry are abandoned after ``stale_payment_age``."""
        return (
            payment.status == PaymentStatus.PENDING.value
            and payment.expires_at is None
            and payment.created_at is not None
            and _passed(payment.created_at + self.stale_payment_age, now)
        )

    def classify(self, booking: Booking, now: datetime) -> Optional[DeadlineBreach]:
        """
        Return the booking-level deadline breach, if any.

        Only pre-service bookings are eligible; a booking that has been
        dispatched or is already terminal never breaches.
        """
        if not _awaiting_payment(booking) or booking.is_fully_paid:
            return None
        if booking.type == BookingType.SCHEDULED.value and self.is_downpayment_breached(
            booking, now
        ):
            return DeadlineBreach(
                BreachKind.DOWNPAYMENT, BookingStatus.CANCELLED, OVERDUE_DOWNPAYMENT_REASON
            )
        if self.is_final_payment_breached(booking, now):
            return DeadlineBreach(
                BreachKind.FINAL_PAYMENT,
                self.final_payment_breach_status,
                OVERDUE_FINAL_PAYMENT_REASON,
            )
        return None

    @staticmethod
    def classify_expired_payment(booking: Booking) -> Optional[DeadlineBreach]:
        """
        Decide what an expired payment means for its booking.

        Emergency bookings are cancelled, scheduled ones fail payment. Returns
        None when the booking is past the point where a lapse cancels it.
        """
        if not _awaiting_payment(booking) or booking.is_fully_paid:
            return None
        target = (
            BookingStatus.CANCELLED
            if booking.type == BookingType.EMERGENCY.value
            else BookingStatus.PAYMENT_FAILED
        )
        return DeadlineBreach(BreachKind.PAYMENT_EXPIRY, target, EXPIRED_PAYMENT_REASON)

    @staticmethod
    def classify_stale_payment(booking: Booking) -> Optional[DeadlineBreach]:
        """An abandoned payment fails any booking still waiting on it."""
        if not _awaiting_payment(booking) or booking.is_fully_paid:
            return None
        return DeadlineBreach(
            BreachKind.STALE_PAYMENT, BookingStatus.PAYMENT_FAILED, STALE_PAYMENT_REASON
        )

    @staticmethod
    def is_served_unpaid_emergency(booking: Booking) -> bool:
        """Emergency bookings served before their payment cleared."""
        return (
            booking.type == BookingType.EMERGENCY.value
            and not booking.is_fully_paid
            and BookingStatus(booking.status) in _SERVED_STATUSES
        )

    def downpayment_reminder_due(self, booking: Booking, now: datetime) -> bool:
        return (
            booking.type == BookingType.SCHEDULED.value
            and not booking.is_terminal
            and not booking.is_downpayment_paid
            and not booking.is_fully_paid
            and _within(booking.dp_payment_deadline, now, now + self.reminder_lead)
        )

    def final_payment_reminder_due(self, booking: Booking, now: datetime) -> bool:
        return (
            not booking.is_terminal
            and booking.is_downpayment_paid
            and not booking.is_fully_paid
            and _within(booking.final_payment_deadline, now, now + self.reminder_lead)
        )

    @staticmethod
    def emergency_reminder_due(booking: Booking) -> bool:
        return (
            booking.type == BookingType.EMERGENCY.value
            and not booking.is_fully_paid
            and BookingStatus(booking.status) in {BookingStatus.ARRIVED, BookingStatus.COMPLETED}
        )
