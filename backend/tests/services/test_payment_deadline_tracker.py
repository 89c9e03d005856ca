"""
Tests for PaymentDeadlineTracker classification.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ambulance.models import Booking, BookingStatus, BookingType, Payment, PaymentStatus
from ambulance.services.payment_deadline_tracker import (
    BreachKind,
    PaymentDeadlineTracker,
)

NOW = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)


def _booking(**kwargs) -> Booking:
    defaults = {
        "type": BookingType.SCHEDULED.value,
        "status": BookingStatus.SCHEDULED.value,
        "is_downpayment_paid": False,
        "is_fully_paid": False,
        "total_amount": 1000000,
    }
    defaults.update(kwargs)
    return Booking(**defaults)


@pytest.fixture
def tracker() -> PaymentDeadlineTracker:
    return PaymentDeadlineTracker()


class TestBookingDeadlines:
    def test_downpayment_breach(self, tracker):
        booking = _booking(dp_payment_deadline=NOW - timedelta(seconds=1))

        breach = tracker.classify(booking, NOW)

        assert breach is not None
        assert breach.kind == BreachKind.DOWNPAYMENT
        assert breach.target_status == BookingStatus.CANCELLED

    def test_deadline_equal_to_now_is_not_breached(self, tracker):
        booking = _booking(dp_payment_deadline=NOW)

        assert tracker.classify(booking, NOW) is None

    def test_naive_deadline_is_treated_as_utc(self, tracker):
        booking = _booking(dp_payment_deadline=datetime(2026, 3, 14, 8, 0))

        assert tracker.is_downpayment_breached(booking, NOW) is True

    def test_final_payment_breach_uses_configured_status(self):
        tracker = PaymentDeadlineTracker(final_payment_breach_status="cancelled")
        booking = _booking(
            status=BookingStatus.CONFIRMED.value,
            is_downpayment_paid=True,
            final_payment_deadline=NOW - timedelta(hours=1),
        )

        breach = tracker.classify(booking, NOW)

        assert breach.kind == BreachKind.FINAL_PAYMENT
        assert breach.target_status == BookingStatus.CANCELLED

    def test_dispatched_booking_never_breaches(self, tracker):
        booking = _booking(
            status=BookingStatus.DISPATCHED.value,
            dp_payment_deadline=NOW - timedelta(days=1),
        )

        assert tracker.classify(booking, NOW) is None

    def test_fully_paid_booking_never_breaches(self, tracker):
        booking = _booking(
            is_downpayment_paid=True,
            is_fully_paid=True,
            final_payment_deadline=NOW - timedelta(days=1),
        )

        assert tracker.classify(booking, NOW) is None


class TestPaymentExpiry:
    def test_pending_payment_past_expiry(self, tracker):
        payment = Payment(status=PaymentStatus.PENDING.value, expires_at=NOW - timedelta(minutes=1))

        assert tracker.is_payment_expired(payment, NOW) is True

    def test_paid_payment_never_expires(self, tracker):
        payment = Payment(status=PaymentStatus.PAID.value, expires_at=NOW - timedelta(minutes=1))

        assert tracker.is_payment_expired(payment, NOW) is False

    @pytest.mark.parametrize(
        "booking_type,expected",
        [
            (BookingType.EMERGENCY.value, BookingStatus.CANCELLED),
            (BookingType.SCHEDULED.value, BookingStatus.PAYMENT_FAILED),
        ],
    )
    def test_expired_payment_target_depends_on_type(self, booking_type, expected):
        booking = _booking(type=booking_type, status=BookingStatus.PENDING.value)

        breach = PaymentDeadlineTracker.classify_expired_payment(booking)

        assert breach.target_status == expected

    def test_served_emergency_is_flagged_not_cancelled(self):
        booking = _booking(type=BookingType.EMERGENCY.value, status=BookingStatus.ARRIVED.value)

        assert PaymentDeadlineTracker.classify_expired_payment(booking) is None
        assert PaymentDeadlineTracker.is_served_unpaid_emergency(booking) is True


class TestStalePayments:
    def test_pending_payment_without_expiry_goes_stale(self):
        tracker = PaymentDeadlineTracker(stale_payment_age=timedelta(hours=24))
        payment = Payment(
            status=PaymentStatus.PENDING.value, expires_at=None, created_at=NOW - timedelta(hours=25)
        )

        assert tracker.is_payment_stale(payment, NOW) is True
        assert tracker.is_payment_stale(payment, NOW - timedelta(hours=2)) is False

    def test_payment_with_expiry_is_never_stale(self, tracker):
        payment = Payment(
            status=PaymentStatus.PENDING.value,
            expires_at=NOW + timedelta(hours=1),
            created_at=NOW - timedelta(days=30),
        )

        assert tracker.is_payment_stale(payment, NOW) is False

    def test_stale_payment_fails_waiting_booking(self):
        breach = PaymentDeadlineTracker.classify_stale_payment(
            _booking(type=BookingType.EMERGENCY.value, status=BookingStatus.PENDING.value)
        )

        assert breach.kind == BreachKind.STALE_PAYMENT
        assert breach.target_status == BookingStatus.PAYMENT_FAILED

    def test_stale_payment_leaves_served_booking_alone(self):
        booking = _booking(type=BookingType.EMERGENCY.value, status=BookingStatus.COMPLETED.value)

        assert PaymentDeadlineTracker.classify_stale_payment(booking) is None


class TestReminderWindows:
    def test_downpayment_reminder_within_lead(self, tracker):
        booking = _booking(dp_payment_deadline=NOW + timedelta(hours=6))

        assert tracker.downpayment_reminder_due(booking, NOW) is True

    def test_downpayment_reminder_outside_lead(self, tracker):
        booking = _booking(dp_payment_deadline=NOW + timedelta(hours=6, seconds=1))

        assert tracker.downpayment_reminder_due(booking, NOW) is False

    def test_final_payment_reminder_requires_downpayment(self, tracker):
        booking = _booking(final_payment_deadline=NOW + timedelta(hours=1))

        assert tracker.final_payment_reminder_due(booking, NOW) is False

    def test_emergency_reminder_stops_once_fully_paid(self):
        unpaid = _booking(type=BookingType.EMERGENCY.value, status=BookingStatus.COMPLETED.value)
        paid = _booking(
            type=BookingType.EMERGENCY.value,
            status=BookingStatus.COMPLETED.value,
            is_fully_paid=True,
        )

        assert PaymentDeadlineTracker.emergency_reminder_due(unpaid) is True
        assert PaymentDeadlineTracker.emergency_reminder_due(paid) is False
