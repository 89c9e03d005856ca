# backend/ambulance/repositories/payment_repository.py
"""
Payment Repository.

Payment rows are mutated by the sweeps (expiry, reminder bookkeeping) and by
the gateway callback; both go through compare-and-set on ``status``.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ambulance.core.exceptions import RepositoryException
from ambulance.models.booking import Booking, BookingStatus
from ambulance.models.payment import Payment, PaymentStatus

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_TERMINAL = sorted(status.value for status in BookingStatus.terminal())
_OPEN = sorted(status.value for status in PaymentStatus.open_statuses())


class PaymentRepository(BaseRepository[Payment]):
    """Repository for payment attempts."""

    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        return self.find_one_by(transaction_id=transaction_id)

    def find_expired_pending_ids(self, now: datetime, limit: int) -> List[str]:
        """Pending payments past ``expires_at`` whose booking is still live."""
        stmt = (
            select(Payment.id)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(
                and_(
                    Payment.status == PaymentStatus.PENDING.value,
                    Payment.expires_at.is_not(None),
                    Payment.expires_at < now,
                    Booking.status.not_in(_TERMINAL),
                )
            )
            .order_by(Payment.expires_at)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "expired pending payments")

    def find_stale_pending_ids(self, cutoff: datetime, limit: int) -> List[str]:
        """Pending payments without an expiry that were created before ``cutoff``."""
        stmt = (
            select(Payment.id)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(
                and_(
                    Payment.status == PaymentStatus.PENDING.value,
                    Payment.expires_at.is_(None),
                    Payment.created_at < cutoff,
                    Booking.status.not_in(_TERMINAL),
                )
            )
            .order_by(Payment.created_at)
            .limit(limit)
        )
        return self._scalar_ids(stmt, "stale pending payments")

    def get_open_payment(self, booking_id: str, payment_type: str) -> Optional[Payment]:
        """Most recent ``pending`` or ``paid`` payment of ``payment_type`` for a booking."""
        stmt = (
            select(Payment)
            .where(
                and_(
                    Payment.booking_id == booking_id,
                    Payment.payment_type == payment_type,
                    Payment.status.in_(_OPEN),
                )
            )
            .order_by(Payment.created_at.desc())
        )
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading open payment for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load open payment: {str(e)}")

    def get_latest_pending(
        self, booking_id: str, payment_type: Optional[str] = None
    ) -> Optional[Payment]:
        """Most recent pending payment; earlier attempts are superseded."""
        conditions = [
            Payment.booking_id == booking_id,
            Payment.status == PaymentStatus.PENDING.value,
        ]
        if payment_type is not None:
            conditions.append(Payment.payment_type == payment_type)
        stmt = select(Payment).where(and_(*conditions)).order_by(Payment.created_at.desc())
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading pending payment for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load pending payment: {str(e)}")

    def get_latest(self, booking_id: str) -> Optional[Payment]:
        """Most recent payment attempt for a booking, whatever its status."""
        stmt = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at.desc())
        )
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading latest payment for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load latest payment: {str(e)}")

    def expire_pending_for_booking(self, booking_id: str) -> List[str]:
        """Mark every pending payment of a booking ``expired``; returns their ids."""
        pending_ids = self._scalar_ids(
            select(Payment.id).where(
                Payment.booking_id == booking_id,
                Payment.status == PaymentStatus.PENDING.value,
            ),
            "pending payments",
        )
        if not pending_ids:
            return []
        stmt = (
            update(Payment)
            .where(
                Payment.id.in_(pending_ids),
                Payment.status == PaymentStatus.PENDING.value,
            )
            .values(status=PaymentStatus.EXPIRED.value)
            .execution_options(synchronize_session="fetch")
        )
        try:
            self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error expiring payments for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to expire payments: {str(e)}")
        self.db.flush()
        return pending_ids

    def record_reminder(self, payment: Payment, now: datetime) -> None:
        payment.last_reminder_at = now
        payment.reminder_count = (payment.reminder_count or 0) + 1
        self.db.flush()
