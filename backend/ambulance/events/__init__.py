"""Domain events raised by the booking lifecycle engine."""

from ambulance.events.booking_events import (
    BookingStatusChanged,
    PaymentExpired,
    PaymentReminderDue,
    ResourceReleased,
)

__all__ = ["BookingStatusChanged", "PaymentExpired", "PaymentReminderDue", "ResourceReleased"]
