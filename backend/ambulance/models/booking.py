# backend/ambulance/models/booking.py
"""
Booking model for ambulance requests.

A booking is created by the intake flow in ``pending`` (emergency) or
``scheduled`` status and is afterwards mutated only through
``BookingStateMachine``. Rows are never deleted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ambulance.core.config import settings
from ambulance.database import Base
from ambulance.models.types import UTCDateTime

if TYPE_CHECKING:
    from ambulance.models.payment import Payment
    from ambulance.models.resource import Ambulance, Driver


def _now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for default factories."""
    return datetime.now(timezone.utc)


def generate_booking_code() -> str:
    return f"AMB{str(ulid.ULID())[-12:]}"


class BookingStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    DISPATCHED = "dispatched"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"

    @classmethod
    def terminal(cls) -> frozenset["BookingStatus"]:
        return frozenset({cls.COMPLETED, cls.CANCELLED})

    @classmethod
    def awaiting_payment(cls) -> frozenset["BookingStatus"]:
        """Pre-service statuses a payment lapse may cancel or fail."""
        return frozenset({cls.PENDING, cls.SCHEDULED, cls.CONFIRMED})

    @property
    def is_terminal(self) -> bool:
        return self in BookingStatus.terminal()


class BookingType(str, Enum):
    EMERGENCY = "emergency"
    SCHEDULED = "scheduled"


class BookingPriority(str, Enum):
    CRITICAL = "critical"
    URGENT = "urgent"
    NORMAL = "normal"


class EmergencyPaymentStatus(str, Enum):
    """Payment sub-state for emergency bookings served before payment cleared."""

    UNPAID_EMERGENCY = "unpaid_emergency"
    PAID = "paid"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_code: Mapped[str] = mapped_column(
        String(15), unique=True, nullable=False, default=generate_booking_code
    )
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    priority: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BookingStatus.PENDING.value, index=True
    )
    payment_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    driver_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True
    )
    ambulance_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("ambulances.id", ondelete="SET NULL"), nullable=True
    )

    pickup_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    destination_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    base_price: Mapped[int] = mapped_column(
        Integer, nullable=False, default=lambda: settings.base_price
    )
    distance_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_downpayment_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_fully_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    requested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now_utc)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    arrived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    dp_payment_deadline: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )
    final_payment_deadline: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True, index=True
    )

    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now_utc)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_now_utc, onupdate=_now_utc
    )

    payments: Mapped[List["Payment"]] = relationship(
        "Payment", back_populates="booking", order_by="Payment.created_at"
    )
    driver: Mapped[Optional["Driver"]] = relationship("Driver")
    ambulance: Mapped[Optional["Ambulance"]] = relationship("Ambulance")

    def __repr__(self) -> str:
        return f"<Booking {self.booking_code} {self.type} {self.status}>"

    @property
    def downpayment_amount(self) -> int:
        """Downpayment due, derived from the total rather than stored."""
        return int(round((self.total_amount or 0) * settings.downpayment_percentage))

    @property
    def remaining_amount(self) -> int:
        return (self.total_amount or 0) - self.downpayment_amount

    @property
    def is_emergency(self) -> bool:
        return self.type == BookingType.EMERGENCY.value

    @property
    def is_terminal(self) -> bool:
        return BookingStatus(self.status).is_terminal

    @property
    def has_resources(self) -> bool:
        return self.driver_id is not None or self.ambulance_id is not None

    def calculate_total(self) -> int:
        self.total_amount = (self.base_price or 0) + (self.distance_price or 0)
        return self.total_amount
