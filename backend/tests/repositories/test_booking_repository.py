"""
Tests for lifecycle repositories: candidate queries and compare-and-set updates.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from ambulance.core.exceptions import PersistenceConflict
from ambulance.models import (
    Booking,
    BookingStatus,
    BookingType,
    DriverStatus,
    EmergencyPaymentStatus,
    Payment,
    PaymentStatus,
)
from ambulance.repositories.base_repository import BaseRepository
from ambulance.repositories.factory import RepositoryFactory
from tests.helpers.factories import make_booking, make_driver, make_payment


class TestBookingCompareAndSet:
    def test_matching_status_is_updated(self, db, now):
        repo = RepositoryFactory.create_booking_repository(db)
        booking = make_booking(db)

        repo.compare_and_set_status(
            booking.id,
            {BookingStatus.PENDING.value},
            BookingStatus.CANCELLED.value,
            cancelled_at=now,
        )
        db.commit()

        reloaded = db.get(Booking, booking.id)
        assert reloaded.status == BookingStatus.CANCELLED.value
        assert reloaded.cancelled_at == now

    def test_mismatched_status_raises_conflict(self, db):
        repo = RepositoryFactory.create_booking_repository(db)
        booking = make_booking(db, status=BookingStatus.CANCELLED.value)

        with pytest.raises(PersistenceConflict) as exc_info:
            repo.compare_and_set_status(
                booking.id, {BookingStatus.PENDING.value}, BookingStatus.CONFIRMED.value
            )

        assert exc_info.value.expected == [BookingStatus.PENDING.value]


class TestCandidateQueries:
    def test_expired_pending_payments_skip_terminal_bookings(self, db, now):
        repo = RepositoryFactory.create_payment_repository(db)
        live = make_booking(db)
        done = make_booking(db, status=BookingStatus.COMPLETED.value)
        expired_live = make_payment(db, live, expires_at=now - timedelta(minutes=1))
        make_payment(db, done, expires_at=now - timedelta(minutes=1))
        make_payment(db, live, status=PaymentStatus.PAID.value, expires_at=now - timedelta(days=1))

        assert repo.find_expired_pending_ids(now, limit=10) == [expired_live.id]

    def test_downpayment_breach_ids(self, db, now):
        repo = RepositoryFactory.create_booking_repository(db)
        overdue = make_booking(
            db,
            type=BookingType.SCHEDULED.value,
            status=BookingStatus.SCHEDULED.value,
            dp_payment_deadline=now - timedelta(hours=1),
        )
        make_booking(
            db,
            type=BookingType.SCHEDULED.value,
            status=BookingStatus.SCHEDULED.value,
            dp_payment_deadline=now + timedelta(hours=1),
        )
        make_booking(
            db,
            type=BookingType.SCHEDULED.value,
            status=BookingStatus.DISPATCHED.value,
            dp_payment_deadline=now - timedelta(hours=1),
        )

        assert repo.find_downpayment_breach_ids(now, limit=10) == [overdue.id]

    def test_emergency_reminder_ids_require_pending_payment(self, db):
        repo = RepositoryFactory.create_booking_repository(db)
        due = make_booking(db, status=BookingStatus.COMPLETED.value)
        make_payment(db, due)
        settled = make_booking(db, status=BookingStatus.COMPLETED.value)
        make_payment(db, settled, status=PaymentStatus.PAID.value)

        assert repo.find_emergency_reminder_ids(limit=10) == [due.id]

    def test_emergency_reminder_ids_include_flagged_unpaid(self, db, now):
        repo = RepositoryFactory.create_booking_repository(db)
        flagged = make_booking(
            db,
            status=BookingStatus.COMPLETED.value,
            payment_status=EmergencyPaymentStatus.UNPAID_EMERGENCY.value,
        )
        make_payment(
            db, flagged, status=PaymentStatus.EXPIRED.value, expires_at=now - timedelta(hours=1)
        )
        make_booking(db, status=BookingStatus.COMPLETED.value)

        assert repo.find_emergency_reminder_ids(limit=10) == [flagged.id]

    def test_limit_is_respected(self, db, now):
        repo = RepositoryFactory.create_booking_repository(db)
        for hours in (3, 2, 1):
            make_booking(
                db,
                type=BookingType.SCHEDULED.value,
                status=BookingStatus.SCHEDULED.value,
                dp_payment_deadline=now - timedelta(hours=hours),
            )

        assert len(repo.find_downpayment_breach_ids(now, limit=2)) == 2


class TestResourceOccupancy:
    def test_occupy_only_succeeds_once(self, db):
        repo = RepositoryFactory.create_driver_repository(db)
        driver = make_driver(db)

        assert repo.occupy(driver.id) is True
        assert repo.occupy(driver.id) is False
        assert driver.status == DriverStatus.BUSY.value

    def test_increment_trips(self, db):
        repo = RepositoryFactory.create_driver_repository(db)
        driver = make_driver(db)

        repo.increment_trips(driver.id)
        repo.increment_trips(driver.id)
        db.commit()

        db.refresh(driver)
        assert driver.total_trips == 2


class TestStalePayments:
    def test_only_old_payments_without_expiry_are_stale(self, db, now):
        repo = RepositoryFactory.create_payment_repository(db)
        booking = make_booking(db)
        stale = make_payment(db, booking, created_at=now - timedelta(days=2))
        make_payment(db, booking, created_at=now - timedelta(hours=1))
        make_payment(
            db,
            booking,
            created_at=now - timedelta(days=2),
            expires_at=now + timedelta(hours=1),
        )
        cancelled = make_booking(db, status=BookingStatus.CANCELLED.value)
        make_payment(db, cancelled, created_at=now - timedelta(days=2))

        assert repo.find_stale_pending_ids(now - timedelta(days=1), limit=10) == [stale.id]

    def test_expire_pending_for_booking_leaves_settled_payments(self, db):
        repo = RepositoryFactory.create_payment_repository(db)
        booking = make_booking(db)
        pending = make_payment(db, booking)
        paid = make_payment(db, booking, status=PaymentStatus.PAID.value)
        other = make_payment(db, make_booking(db))

        closed = repo.expire_pending_for_booking(booking.id)
        db.commit()

        assert closed == [pending.id]
        assert db.get(Payment, pending.id).status == PaymentStatus.EXPIRED.value
        assert db.get(Payment, paid.id).status == PaymentStatus.PAID.value
        assert db.get(Payment, other.id).status == PaymentStatus.PENDING.value


class TestRowLocks:
    def test_skip_locked_is_emitted_where_supported(self):
        session = MagicMock()
        repo = BaseRepository(session, Booking)

        with patch(
            "ambulance.repositories.base_repository.supports_row_locks", return_value=True
        ):
            repo.get_for_update("01HZX", skip_locked=True)

        stmt = session.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE SKIP LOCKED" in sql

    def test_plain_read_without_row_lock_support(self, db):
        repo = RepositoryFactory.create_booking_repository(db)
        booking = make_booking(db)

        assert repo.get_for_update(booking.id, skip_locked=True).id == booking.id
