"""
Tests for BookingStateMachine.
"""

import pytest

from ambulance.core.exceptions import (
    InvalidStateTransition,
    PersistenceConflict,
    ValidationException,
)
from ambulance.models import (
    AmbulanceStatus,
    Booking,
    BookingStatus,
    BookingType,
    Driver,
    DriverStatus,
    NotificationEventType,
)
from ambulance.services.booking_state_machine import TRANSITIONS, BookingStateMachine
from tests.helpers.factories import make_ambulance, make_booking, make_driver


@pytest.fixture
def machine(db, notifier, clock) -> BookingStateMachine:
    return BookingStateMachine(db, notifier=notifier, clock=clock)


class TestTransitionTable:
    def test_terminal_statuses_have_no_outgoing_edges(self):
        assert TRANSITIONS[BookingStatus.COMPLETED] == frozenset()
        assert TRANSITIONS[BookingStatus.CANCELLED] == frozenset()

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(BookingStatus)

    @pytest.mark.parametrize(
        "from_status,to_status,allowed",
        [
            ("pending", "confirmed", True),
            ("pending", "cancelled", True),
            ("scheduled", "payment_failed", True),
            ("confirmed", "dispatched", True),
            ("dispatched", "cancelled", False),
            ("arrived", "cancelled", False),
            ("arrived", "completed", True),
            ("payment_failed", "cancelled", True),
            ("completed", "cancelled", False),
        ],
    )
    def test_can_transition(self, from_status, to_status, allowed):
        assert BookingStateMachine.can_transition(from_status, to_status) is allowed


class TestBookingLifecycle:
    def test_full_emergency_flow_releases_resources_on_completion(self, db, machine, notifier):
        driver = make_driver(db)
        ambulance = make_ambulance(db)
        booking = make_booking(db)

        machine.confirm(booking.id)
        machine.dispatch(booking.id, driver.id, ambulance.id)

        db.refresh(driver)
        db.refresh(ambulance)
        assert driver.status == DriverStatus.BUSY.value
        assert ambulance.status == AmbulanceStatus.ON_DUTY.value

        machine.mark_arrived(booking.id)
        machine.complete(booking.id)

        booking = db.get(Booking, booking.id)
        db.refresh(driver)
        db.refresh(ambulance)
        assert booking.status == BookingStatus.COMPLETED.value
        assert booking.dispatched_at is not None
        assert booking.arrived_at is not None
        assert booking.completed_at is not None
        assert driver.status == DriverStatus.AVAILABLE.value
        assert driver.total_trips == 1
        assert ambulance.status == AmbulanceStatus.AVAILABLE.value
        # History keeps the links.
        assert booking.driver_id == driver.id
        assert booking.ambulance_id == ambulance.id

        event_types = [call[1] for call in notifier.calls]
        assert event_types == [
            NotificationEventType.BOOKING_CONFIRMED.value,
            NotificationEventType.BOOKING_DISPATCHED.value,
            NotificationEventType.BOOKING_ARRIVED.value,
            NotificationEventType.BOOKING_COMPLETED.value,
        ]

    def test_cancel_stores_reason_and_releases_resources(self, db, machine, clock, notifier):
        driver = make_driver(db, status=DriverStatus.BUSY.value)
        ambulance = make_ambulance(db, status=AmbulanceStatus.DISPATCHED.value)
        booking = make_booking(db, driver_id=driver.id, ambulance_id=ambulance.id)

        machine.cancel(booking.id, reason="Patient declined")

        booking = db.get(Booking, booking.id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancel_reason == "Patient declined"
        assert booking.cancelled_at == clock.now()
        assert db.get(Driver, driver.id).status == DriverStatus.AVAILABLE.value
        db.refresh(ambulance)
        assert ambulance.status == AmbulanceStatus.AVAILABLE.value
        assert notifier.events(NotificationEventType.BOOKING_CANCELLED.value)

    def test_dispatch_rejects_unavailable_driver(self, db, machine):
        driver = make_driver(db, status=DriverStatus.OFF.value)
        ambulance = make_ambulance(db)
        booking = make_booking(db, status=BookingStatus.CONFIRMED.value)

        with pytest.raises(ValidationException):
            machine.dispatch(booking.id, driver.id, ambulance.id)

        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value
        assert db.get(Booking, booking.id).driver_id is None

    def test_payment_failed_clears_links_so_booking_can_be_redispatched(self, db, machine):
        driver = make_driver(db, status=DriverStatus.BUSY.value)
        booking = make_booking(
            db,
            type=BookingType.SCHEDULED.value,
            status=BookingStatus.CONFIRMED.value,
            driver_id=driver.id,
        )

        machine.mark_payment_failed(booking.id)

        booking = db.get(Booking, booking.id)
        assert booking.status == BookingStatus.PAYMENT_FAILED.value
        assert booking.driver_id is None
        assert db.get(Driver, driver.id).status == DriverStatus.AVAILABLE.value


class TestTerminalImmutability:
    @pytest.mark.parametrize("terminal", [BookingStatus.COMPLETED, BookingStatus.CANCELLED])
    @pytest.mark.parametrize(
        "target",
        [
            BookingStatus.CANCELLED,
            BookingStatus.CONFIRMED,
            BookingStatus.PAYMENT_FAILED,
            BookingStatus.DISPATCHED,
        ],
    )
    def test_transition_from_terminal_raises_and_changes_nothing(
        self, db, machine, notifier, terminal, target
    ):
        driver = make_driver(db)
        booking = make_booking(
            db, status=terminal.value, driver_id=driver.id, cancel_reason="original"
        )
        snapshot = {
            column.name: getattr(booking, column.name) for column in Booking.__table__.columns
        }

        with pytest.raises(InvalidStateTransition) as exc_info:
            with machine.transaction():
                machine.transition(booking.id, target.value, reason="should not stick")

        assert exc_info.value.from_status == terminal.value
        db.expire_all()
        reloaded = db.get(Booking, booking.id)
        for name, value in snapshot.items():
            assert getattr(reloaded, name) == value, name
        assert db.get(Driver, driver.id).status == DriverStatus.AVAILABLE.value
        assert notifier.calls == []

    def test_fully_paid_booking_is_never_cancelled_for_non_payment(self, db, machine):
        booking = make_booking(
            db,
            type=BookingType.SCHEDULED.value,
            status=BookingStatus.CONFIRMED.value,
            is_downpayment_paid=True,
            is_fully_paid=True,
        )

        with pytest.raises(InvalidStateTransition):
            machine.mark_payment_failed(booking.id)

        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value


class TestCompareAndSet:
    def test_stale_expected_status_raises_persistence_conflict(self, db, machine):
        booking = make_booking(db, status=BookingStatus.CONFIRMED.value)

        with pytest.raises(PersistenceConflict):
            with machine.transaction():
                machine.transition(
                    booking.id,
                    BookingStatus.CANCELLED.value,
                    expected={BookingStatus.PENDING.value},
                )

        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value
