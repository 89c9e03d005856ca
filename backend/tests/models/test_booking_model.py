"""
Tests for Booking model helpers.
"""

from ambulance.models import Booking, BookingStatus, BookingType
from tests.helpers.factories import make_booking


class TestBookingModel:
    def test_downpayment_is_thirty_percent_of_total(self):
        booking = Booking(total_amount=1234567)

        assert booking.downpayment_amount == 370370
        assert booking.remaining_amount == 1234567 - 370370

    def test_calculate_total(self):
        booking = Booking(base_price=500000, distance_price=125000)

        assert booking.calculate_total() == 625000

    def test_persisted_booking_gets_code_and_aware_timestamps(self, db):
        booking = make_booking(db, type=BookingType.SCHEDULED.value)

        assert booking.booking_code.startswith("AMB")
        assert len(booking.booking_code) == 15
        assert booking.requested_at.tzinfo is not None
        assert booking.status == BookingStatus.PENDING.value

    def test_terminal_flags(self):
        assert Booking(status=BookingStatus.CANCELLED.value).is_terminal is True
        assert Booking(status=BookingStatus.PAYMENT_FAILED.value).is_terminal is False
