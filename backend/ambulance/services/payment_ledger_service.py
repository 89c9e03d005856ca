# backend/ambulance/services/payment_ledger_service.py
"""
Payment ledger: payment creation and gateway callback handling.

The gateway integration itself (signatures, HTTP) lives outside this package;
it resolves a callback to a ``transaction_id`` and calls
``record_payment_success`` or ``record_payment_failure``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ambulance.core.clock import Clock
from ambulance.core.exceptions import NotFoundException, ValidationException
from ambulance.models.booking import Booking, BookingStatus, EmergencyPaymentStatus
from ambulance.models.payment import Payment, PaymentStatus, PaymentType
from ambulance.repositories.factory import RepositoryFactory

from .base import BaseService
from .booking_state_machine import BookingStateMachine
from .notification_dispatcher import NotificationDispatcher, Notifier

_CONFIRMABLE = frozenset(
    {BookingStatus.PENDING, BookingStatus.SCHEDULED, BookingStatus.PAYMENT_FAILED}
)


class PaymentLedgerService(BaseService):
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.dispatcher = NotificationDispatcher(db, notifier, clock=self.clock)
        self.state_machine = BookingStateMachine(db, clock=self.clock, dispatcher=self.dispatcher)

    @BaseService.measure_operation("initiate_payment")
    def initiate_payment(
        self,
        booking_id: str,
        payment_type: str,
        *,
        expires_at: Optional[datetime] = None,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> Payment:
        """
        Return the open payment of ``payment_type`` for a booking, creating it if needed.

        Repeated calls while a payment is pending or paid return that same row.
        Terminal bookings accept new payments only when they were served as
        ``unpaid_emergency``.
        """
        payment_type = PaymentType(payment_type).value
        with self.transaction():
            booking = self._lock_booking(booking_id)
            if (
                booking.is_terminal
                and booking.payment_status != EmergencyPaymentStatus.UNPAID_EMERGENCY.value
            ):
                raise ValidationException(
                    f"Booking {booking.booking_code} is {booking.status}; no new payments accepted"
                )
            existing = self.payment_repository.get_open_payment(booking.id, payment_type)
            if existing is not None:
                self.logger.info(
                    f"Reusing open {payment_type} payment {existing.transaction_id}",
                    extra={"booking_id": booking.id, "payment_id": existing.id},
                )
                return existing

            payment = self.payment_repository.create(
                booking_id=booking.id,
                payment_type=payment_type,
                amount=amount if amount is not None else self._amount_for(booking, payment_type),
                method=method,
                status=PaymentStatus.PENDING.value,
                expires_at=expires_at,
                created_at=self.clock.now(),
            )
            self.log_operation(
                "initiate_payment", booking_id=booking.id, payment_id=payment.id
            )
            return payment

    @BaseService.measure_operation("record_payment_success")
    def record_payment_success(
        self, transaction_id: str, paid_at: Optional[datetime] = None
    ) -> Payment:
        """
        Apply a successful gateway callback.

        Marks the payment paid, updates the booking's paid flags, and confirms a
        booking that was waiting on payment. Duplicate callbacks are no-ops.
        """
        with self.transaction():
            payment = self._lock_payment(transaction_id)
            if payment.status == PaymentStatus.PAID.value:
                return payment
            if payment.status != PaymentStatus.PENDING.value:
                raise ValidationException(
                    f"Payment {transaction_id} is {payment.status} and cannot be marked paid",
                    details={"transaction_id": transaction_id, "status": payment.status},
                )

            booking = self._lock_booking(payment.booking_id)
            self.payment_repository.compare_and_set_status(
                payment.id,
                {PaymentStatus.PENDING.value},
                PaymentStatus.PAID.value,
                paid_at=paid_at or self.clock.now(),
            )

            if payment.payment_type == PaymentType.DOWN_PAYMENT.value:
                booking.is_downpayment_paid = True
            else:
                booking.is_downpayment_paid = True
                booking.is_fully_paid = True
                if booking.is_emergency:
                    booking.payment_status = EmergencyPaymentStatus.PAID.value
            self.db.flush()

            if BookingStatus(booking.status) in _CONFIRMABLE:
                self.state_machine.transition(
                    booking.id,
                    BookingStatus.CONFIRMED.value,
                    expected={booking.status},
                )
            return payment

    @BaseService.measure_operation("record_payment_failure")
    def record_payment_failure(self, transaction_id: str) -> Payment:
        """Apply a failed gateway callback; a pending booking moves to ``payment_failed``."""
        with self.transaction():
            payment = self._lock_payment(transaction_id)
            if payment.status != PaymentStatus.PENDING.value:
                return payment

            booking = self._lock_booking(payment.booking_id)
            self.payment_repository.compare_and_set_status(
                payment.id, {PaymentStatus.PENDING.value}, PaymentStatus.FAILED.value
            )
            if booking.status == BookingStatus.PENDING.value and not booking.is_fully_paid:
                self.state_machine.transition(
                    booking.id,
                    BookingStatus.PAYMENT_FAILED.value,
                    expected={BookingStatus.PENDING.value},
                    payment_lapse=True,
                )
            return payment

    def _lock_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return booking

    def _lock_payment(self, transaction_id: str) -> Payment:
        payment = self.payment_repository.get_by_transaction_id(transaction_id)
        if payment is None:
            raise NotFoundException(f"Payment {transaction_id} not found")
        locked = self.payment_repository.get_for_update(payment.id)
        if locked is None:
            raise NotFoundException(f"Payment {transaction_id} not found")
        return locked

    @staticmethod
    def _amount_for(booking: Booking, payment_type: str) -> int:
        if payment_type == PaymentType.DOWN_PAYMENT.value:
            return booking.downpayment_amount
        if booking.is_downpayment_paid:
            return booking.remaining_amount
        return booking.total_amount
