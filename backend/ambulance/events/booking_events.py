"""Booking domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class BookingStatusChanged:
    """Fired after a booking transition is committed to the session."""

    booking_id: str
    booking_code: str
    from_status: str
    to_status: str
    occurred_at: datetime
    reason: Optional[str] = None

    @property
    def event_name(self) -> str:
        return f"booking.{self.to_status}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        data["event_name"] = self.event_name
        return data


@dataclass
class ResourceReleased:
    """Fired when a driver or ambulance returns to the available pool."""

    booking_id: str
    resource_kind: str  # 'driver' or 'ambulance'
    resource_id: str
    previous_status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PaymentExpired:
    """Fired when a pending payment passes its expiry."""

    booking_id: str
    payment_id: str
    payment_type: str
    expired_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expired_at"] = self.expired_at.isoformat()
        return data


@dataclass
class PaymentReminderDue:
    """Fired when a reminder should go out for an unpaid booking or payment."""

    booking_id: str
    reminder_kind: str  # 'emergency', 'down_payment' or 'final_payment'
    reminder_key: str
    payment_id: Optional[str] = None
    deadline: Optional[datetime] = None
    amount_due: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.deadline is not None:
            data["deadline"] = self.deadline.isoformat()
        return data
