"""
Repository layer for the lifecycle engine.

Repositories expose only the query shapes the services need and never
commit; services own transactions.
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .notification_repository import NotificationLogRepository
from .payment_repository import PaymentRepository
from .resource_repository import AmbulanceRepository, DriverRepository

__all__ = [
    "AmbulanceRepository",
    "BaseRepository",
    "BookingRepository",
    "DriverRepository",
    "NotificationLogRepository",
    "PaymentRepository",
    "RepositoryFactory",
]
