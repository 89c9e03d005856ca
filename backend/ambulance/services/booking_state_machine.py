# backend/ambulance/services/booking_state_machine.py
"""
Booking State Machine.

Single entry point for every booking status change. A transition:

1. re-reads the booking under a row lock,
2. validates the edge against ``TRANSITIONS``,
3. writes the new status with a compare-and-set on the old one,
4. releases resources when the booking leaves service,
5. emits a ``booking.<status>`` notification.

``transition`` participates in the caller's transaction; the convenience
methods (``confirm``, ``dispatch``, ``cancel`` ...) open and commit their own.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from ambulance.core.clock import Clock
from ambulance.core.exceptions import (
    InvalidStateTransition,
    NotFoundException,
    PersistenceConflict,
    ValidationException,
)
from ambulance.events.booking_events import BookingStatusChanged
from ambulance.models.booking import Booking, BookingStatus
from ambulance.models.notification import NotificationEventType
from ambulance.monitoring.prometheus_metrics import prometheus_metrics
from ambulance.repositories.factory import RepositoryFactory

from .base import BaseService
from .notification_dispatcher import NotificationDispatcher, Notifier
from .resource_release_service import ResourceReleaseService

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {
            BookingStatus.CONFIRMED,
            BookingStatus.DISPATCHED,
            BookingStatus.CANCELLED,
            BookingStatus.PAYMENT_FAILED,
        }
    ),
    BookingStatus.SCHEDULED: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.PAYMENT_FAILED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.DISPATCHED, BookingStatus.CANCELLED, BookingStatus.PAYMENT_FAILED}
    ),
    BookingStatus.DISPATCHED: frozenset({BookingStatus.ARRIVED, BookingStatus.COMPLETED}),
    BookingStatus.ARRIVED: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.PAYMENT_FAILED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Statuses in which the booking no longer holds its driver/ambulance.
RELEASE_ON: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.PAYMENT_FAILED}
)

_NON_PAYMENT_TARGETS: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.PAYMENT_FAILED}
)

_TIMESTAMP_FIELDS: Dict[BookingStatus, str] = {
    BookingStatus.DISPATCHED: "dispatched_at",
    BookingStatus.ARRIVED: "arrived_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
}

_EVENT_TYPES: Dict[BookingStatus, NotificationEventType] = {
    BookingStatus.CONFIRMED: NotificationEventType.BOOKING_CONFIRMED,
    BookingStatus.DISPATCHED: NotificationEventType.BOOKING_DISPATCHED,
    BookingStatus.ARRIVED: NotificationEventType.BOOKING_ARRIVED,
    BookingStatus.COMPLETED: NotificationEventType.BOOKING_COMPLETED,
    BookingStatus.CANCELLED: NotificationEventType.BOOKING_CANCELLED,
    BookingStatus.PAYMENT_FAILED: NotificationEventType.BOOKING_PAYMENT_FAILED,
}


class BookingStateMachine(BaseService):
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(db, clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.driver_repository = RepositoryFactory.create_driver_repository(db)
        self.ambulance_repository = RepositoryFactory.create_ambulance_repository(db)
        self.release_service = ResourceReleaseService(db, clock=self.clock)
        self.dispatcher = dispatcher or NotificationDispatcher(db, notifier, clock=self.clock)

    @staticmethod
    def can_transition(from_status: str, to_status: str) -> bool:
        return BookingStatus(to_status) in TRANSITIONS[BookingStatus(from_status)]

    def transition(
        self,
        booking_id: str,
        to_status: str,
        *,
        expected: Optional[Collection[str]] = None,
        reason: Optional[str] = None,
        payment_lapse: bool = False,
        extra_values: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> Booking:
        """
        Move a booking to ``to_status`` inside the caller's transaction.

        Args:
            booking_id: Booking to transition
            to_status: Target status
            expected: Statuses the caller observed; anything else means another
                worker got there first and ``PersistenceConflict`` is raised
            reason: Stored as ``cancel_reason`` on cancellation and passed to the event
            payment_lapse: The transition is caused by a missed payment; refused
                for fully paid bookings
            extra_values: Additional columns written in the same UPDATE
            occurred_at: Instant stamped on the booking and the notification;
                defaults to the injected clock

        Raises:
            NotFoundException: No such booking
            PersistenceConflict: Status no longer matches ``expected``
            InvalidStateTransition: Edge not allowed; nothing is modified
        """
        target = BookingStatus(to_status)
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")

        current = BookingStatus(booking.status)
        if expected is not None and current.value not in set(expected):
            prometheus_metrics.record_rejected_transition(target.value, "conflict")
            raise PersistenceConflict("Booking", booking_id, sorted(expected))

        if target not in TRANSITIONS[current]:
            prometheus_metrics.record_rejected_transition(target.value, "invalid")
            raise InvalidStateTransition(booking_id, current.value, target.value)

        if payment_lapse and booking.is_fully_paid and target in _NON_PAYMENT_TARGETS:
            prometheus_metrics.record_rejected_transition(target.value, "fully_paid")
            raise InvalidStateTransition(booking_id, current.value, target.value)

        now = occurred_at or self.clock.now()
        values: Dict[str, Any] = dict(extra_values or {})
        timestamp_field = _TIMESTAMP_FIELDS.get(target)
        if timestamp_field:
            values[timestamp_field] = now
        if target == BookingStatus.CANCELLED and reason:
            values["cancel_reason"] = reason

        try:
            self.booking_repository.compare_and_set_status(
                booking_id, {current.value}, target.value, **values
            )
        except PersistenceConflict:
            prometheus_metrics.record_rejected_transition(target.value, "conflict")
            raise

        if target in RELEASE_ON:
            self.release_service.release_for(
                booking, clear_links=target == BookingStatus.PAYMENT_FAILED
            )
        if target == BookingStatus.COMPLETED and booking.driver_id:
            self.driver_repository.increment_trips(booking.driver_id)

        prometheus_metrics.record_transition(current.value, target.value)
        event = BookingStatusChanged(
            booking_id=booking.id,
            booking_code=booking.booking_code,
            from_status=current.value,
            to_status=target.value,
            occurred_at=now,
            reason=reason,
        )
        self.logger.info(
            f"Booking {booking.booking_code} {current.value} -> {target.value}",
            extra={"booking_id": booking.id, "from_status": current.value, "to_status": target.value},
        )
        self.dispatcher.dispatch(
            _EVENT_TYPES[target].value, booking.id, context=event.to_dict(), occurred_at=now
        )
        return booking

    def assign_resources(
        self,
        booking_id: str,
        driver_id: Optional[str] = None,
        ambulance_id: Optional[str] = None,
    ) -> Booking:
        """
        Link an available driver and/or ambulance to a pre-service booking.

        Runs inside the caller's transaction. Resources that are not
        ``available`` are rejected with ``ValidationException``.
        """
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        current = BookingStatus(booking.status)
        if current not in BookingStatus.awaiting_payment():
            raise InvalidStateTransition(booking_id, current.value, BookingStatus.DISPATCHED.value)

        if driver_id and driver_id != booking.driver_id:
            if booking.driver_id is not None:
                raise ValidationException(f"Booking {booking_id} already has a driver")
            if not self.driver_repository.occupy(driver_id):
                raise ValidationException(f"Driver {driver_id} is not available")
            booking.driver_id = driver_id
        if ambulance_id and ambulance_id != booking.ambulance_id:
            if booking.ambulance_id is not None:
                raise ValidationException(f"Booking {booking_id} already has an ambulance")
            if not self.ambulance_repository.occupy(ambulance_id):
                raise ValidationException(f"Ambulance {ambulance_id} is not available")
            booking.ambulance_id = ambulance_id
        self.db.flush()
        return booking

    # Convenience wrappers with their own transaction

    @BaseService.measure_operation("confirm_booking")
    def confirm(self, booking_id: str) -> Booking:
        with self.transaction():
            return self.transition(booking_id, BookingStatus.CONFIRMED.value)

    @BaseService.measure_operation("dispatch_booking")
    def dispatch(self, booking_id: str, driver_id: str, ambulance_id: str) -> Booking:
        with self.transaction():
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException(f"Booking {booking_id} not found")
            if not self.can_transition(booking.status, BookingStatus.DISPATCHED.value):
                raise InvalidStateTransition(
                    booking_id, booking.status, BookingStatus.DISPATCHED.value
                )
            self.assign_resources(booking_id, driver_id=driver_id, ambulance_id=ambulance_id)
            return self.transition(booking_id, BookingStatus.DISPATCHED.value)

    @BaseService.measure_operation("mark_booking_arrived")
    def mark_arrived(self, booking_id: str) -> Booking:
        with self.transaction():
            return self.transition(booking_id, BookingStatus.ARRIVED.value)

    @BaseService.measure_operation("complete_booking")
    def complete(self, booking_id: str) -> Booking:
        with self.transaction():
            return self.transition(booking_id, BookingStatus.COMPLETED.value)

    @BaseService.measure_operation("cancel_booking")
    def cancel(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        with self.transaction():
            return self.transition(booking_id, BookingStatus.CANCELLED.value, reason=reason)

    @BaseService.measure_operation("mark_booking_payment_failed")
    def mark_payment_failed(self, booking_id: str) -> Booking:
        with self.transaction():
            return self.transition(
                booking_id, BookingStatus.PAYMENT_FAILED.value, payment_lapse=True
            )
