# backend/ambulance/repositories/factory.py
"""
Repository Factory for the lifecycle engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .notification_repository import NotificationLogRepository
    from .payment_repository import PaymentRepository
    from .resource_repository import AmbulanceRepository, DriverRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_driver_repository(db: Session) -> "DriverRepository":
        from .resource_repository import DriverRepository

        return DriverRepository(db)

    @staticmethod
    def create_ambulance_repository(db: Session) -> "AmbulanceRepository":
        from .resource_repository import AmbulanceRepository

        return AmbulanceRepository(db)

    @staticmethod
    def create_notification_log_repository(db: Session) -> "NotificationLogRepository":
        from .notification_repository import NotificationLogRepository

        return NotificationLogRepository(db)
