# backend/ambulance/repositories/booking_repository.py
"""
Booking Repository.

Exposes the candidate queries the sweeps need plus locked reads and
compare-and-set status updates. Candidate queries return ids only; each
booking is re-read under lock inside its own unit of work.
"""

from datetime import datetime
import logging
from typing import List

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.orm import Session

from ambulance.models.booking import (
    Booking,
    BookingStatus,
    BookingType,
    EmergencyPaymentStatus,
)
from ambulance.models.payment import Payment, PaymentStatus

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_AWAITING_PAYMENT = sorted(status.value for status in BookingStatus.awaiting_payment())
_TERMINAL = sorted(status.value for status in BookingStatus.terminal())


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking lifecycle data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def find_downpayment_breach_ids(self, now: datetime, limit: int) -> List[str]:
        """Scheduled bookings whose downpayment deadline passed while unpaid."""
        stmt = (
            select(Booking.id)
            .where(
                and_(
                    Booking.type == BookingType.SCHEDULED.value,
                    Booking.status.in_(_AWAITING_PAYMENT),
                    Booking.dp_payment_deadline.is_not(None),
                    Booking.dp_payment_deadline < now,
                    Booking.is_downpayment_paid.is_(False),
                    Booking.is_fully_paid.is_(False),
                )
            )
            .order_by(Booking.dp_payment_deadline)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "downpayment breaches")

    def find_final_payment_breach_ids(self, now: datetime, limit: int) -> List[str]:
        """Bookings with the downpayment settled but the final payment overdue."""
        stmt = (
            select(Booking.id)
            .where(
                and_(
                    Booking.status.in_(_AWAITING_PAYMENT),
                    Booking.final_payment_deadline.is_not(None),
                    Booking.final_payment_deadline < now,
                    Booking.is_downpayment_paid.is_(True),
                    Booking.is_fully_paid.is_(False),
                )
            )
            .order_by(Booking.final_payment_deadline)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "final payment breaches")

    def find_emergency_reminder_ids(self, limit: int) -> List[str]:
        """
        Emergency bookings already served and still unpaid.

        Covers bookings with a pending payment and those flagged
        ``unpaid_emergency`` after their payment expired.
        """
        pending_payment = exists().where(
            and_(
                Payment.booking_id == Booking.id,
                Payment.status == PaymentStatus.PENDING.value,
            )
        )
        stmt = (
            select(Booking.id)
            .where(
                and_(
                    Booking.type == BookingType.EMERGENCY.value,
                    Booking.status.in_(
                        [BookingStatus.ARRIVED.value, BookingStatus.COMPLETED.value]
                    ),
                    Booking.is_fully_paid.is_(False),
                    or_(
                        pending_payment,
                        Booking.payment_status == EmergencyPaymentStatus.UNPAID_EMERGENCY.value,
                    ),
                )
            )
            .order_by(Booking.requested_at)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "emergency reminder candidates")

    def find_downpayment_reminder_ids(
        self, now: datetime, until: datetime, limit: int
    ) -> List[str]:
        """Scheduled bookings whose downpayment deadline falls in ``(now, until]``."""
        stmt = (
            select(Booking.id)
            .where(
                and_(
                    Booking.type == BookingType.SCHEDULED.value,
                    Booking.status.not_in(_TERMINAL),
                    Booking.is_downpayment_paid.is_(False),
                    Booking.is_fully_paid.is_(False),
                    Booking.dp_payment_deadline > now,
                    Booking.dp_payment_deadline <= until,
                )
            )
            .order_by(Booking.dp_payment_deadline)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "downpayment reminder candidates")

    def find_final_payment_reminder_ids(
        self, now: datetime, until: datetime, limit: int
    ) -> List[str]:
        """Bookings with a paid downpayment whose final deadline falls in ``(now, until]``."""
        stmt = (
            select(Booking.id)
            .where(
                and_(
                    Booking.status.not_in(_TERMINAL),
                    Booking.is_downpayment_paid.is_(True),
                    Booking.is_fully_paid.is_(False),
                    Booking.final_payment_deadline > now,
                    Booking.final_payment_deadline <= until,
                )
            )
            .order_by(Booking.final_payment_deadline)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "final payment reminder candidates")
