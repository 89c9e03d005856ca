# backend/ambulance/models/payment.py
"""
Payment attempts for a booking.

A booking may accumulate several attempts over its lifetime. At most one
``pending``/``paid`` payment of each type is open per booking;
``PaymentLedgerService.initiate_payment`` enforces that.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ambulance.database import Base
from ambulance.models.types import UTCDateTime

if TYPE_CHECKING:
    from ambulance.models.booking import Booking


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def generate_transaction_id() -> str:
    return f"TRX-{ulid.ULID()}"


class PaymentType(str, Enum):
    DOWN_PAYMENT = "down_payment"
    FULL_PAYMENT = "full_payment"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"

    @classmethod
    def open_statuses(cls) -> frozenset["PaymentStatus"]:
        return frozenset({cls.PENDING, cls.PAID})


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=False, index=True
    )
    transaction_id: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, default=generate_transaction_id
    )
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    last_reminder_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now_utc)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_now_utc, onupdate=_now_utc
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment {self.transaction_id} {self.payment_type} {self.status}>"
