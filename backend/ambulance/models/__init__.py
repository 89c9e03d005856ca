"""ORM models. Importing this package registers every table on ``Base.metadata``."""

from ambulance.models.booking import (
    Booking,
    BookingPriority,
    BookingStatus,
    BookingType,
    EmergencyPaymentStatus,
)
from ambulance.models.notification import NotificationEventType, NotificationLog
from ambulance.models.payment import Payment, PaymentStatus, PaymentType
from ambulance.models.resource import Ambulance, AmbulanceStatus, Driver, DriverStatus

__all__ = [
    "Ambulance",
    "AmbulanceStatus",
    "Booking",
    "BookingPriority",
    "BookingStatus",
    "BookingType",
    "Driver",
    "DriverStatus",
    "EmergencyPaymentStatus",
    "NotificationEventType",
    "NotificationLog",
    "Payment",
    "PaymentStatus",
    "PaymentType",
]
