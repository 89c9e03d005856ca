# backend/ambulance/models/notification.py
"""
Append-only log of notification attempts.

Reminder cool-downs are computed from delivered rows sharing a
``reminder_key``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ambulance.database import Base
from ambulance.models.types import UTCDateTime


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class NotificationEventType(str, Enum):
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_DISPATCHED = "booking_dispatched"
    BOOKING_ARRIVED = "booking_arrived"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_PAYMENT_FAILED = "booking_payment_failed"
    PAYMENT_EXPIRED = "payment_expired"
    PAYMENT_REMINDER = "payment_reminder"
    EMERGENCY_PAYMENT_REMINDER = "emergency_payment_reminder"

    @classmethod
    def reminder_types(cls) -> frozenset["NotificationEventType"]:
        return frozenset({cls.PAYMENT_REMINDER, cls.EMERGENCY_PAYMENT_REMINDER})


class NotificationLog(Base):
    __tablename__ = "notification_logs"
    __table_args__ = (Index("ix_notification_logs_reminder_key_created", "reminder_key", "created_at"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reminder_key: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now_utc)

    def __repr__(self) -> str:
        return f"<NotificationLog {self.event_type} {self.reminder_key} delivered={self.delivered}>"
