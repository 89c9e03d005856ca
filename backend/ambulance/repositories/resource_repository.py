# backend/ambulance/repositories/resource_repository.py
"""
Driver and ambulance repositories.

Occupying and releasing a resource are single conditional UPDATEs so two
workers can never both claim, or both free, the same driver or vehicle.
"""

import logging
from typing import Any

from sqlalchemy import and_, exists, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ambulance.core.exceptions import RepositoryException
from ambulance.models.booking import Booking, BookingStatus
from ambulance.models.resource import Ambulance, AmbulanceStatus, Driver, DriverStatus

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_TERMINAL = sorted(status.value for status in BookingStatus.terminal())


class ResourceRepository(BaseRepository[Any]):
    available_status: str
    occupied_status: str
    link_field: str

    def occupy(self, resource_id: str) -> bool:
        """Mark an available resource as occupied. Returns False if it was not available."""
        stmt = (
            update(self.model)
            .where(self.model.id == resource_id, self.model.status == self.available_status)
            .values(status=self.occupied_status)
            .execution_options(synchronize_session="fetch")
        )
        return self._execute_conditional(stmt, resource_id, "occupy")

    def release(self, resource_id: str, booking_id: str) -> bool:
        """
        Return a resource to ``available`` on behalf of ``booking_id``.

        No-op (returns False) when the resource is already available or is
        linked to a different live booking.
        """
        still_in_use = exists().where(
            and_(
                getattr(Booking, self.link_field) == resource_id,
                Booking.id != booking_id,
                Booking.status.not_in(_TERMINAL),
            )
        )
        stmt = (
            update(self.model)
            .where(
                self.model.id == resource_id,
                self.model.status != self.available_status,
                ~still_in_use,
            )
            .values(status=self.available_status)
            .execution_options(synchronize_session="fetch")
        )
        return self._execute_conditional(stmt, resource_id, "release")

    def _execute_conditional(self, stmt: Any, resource_id: str, action: str) -> bool:
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error trying to {action} {self.model.__name__} {resource_id}: {str(e)}")
            raise RepositoryException(f"Failed to {action} {self.model.__name__}: {str(e)}")
        self.db.flush()
        return result.rowcount > 0


class DriverRepository(ResourceRepository):
    available_status = DriverStatus.AVAILABLE.value
    occupied_status = DriverStatus.BUSY.value
    link_field = "driver_id"

    def __init__(self, db: Session):
        super().__init__(db, Driver)

    def increment_trips(self, driver_id: str) -> None:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(total_trips=Driver.total_trips + 1)
            .execution_options(synchronize_session="fetch")
        )
        try:
            self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error incrementing trips for driver {driver_id}: {str(e)}")
            raise RepositoryException(f"Failed to update Driver: {str(e)}")
        self.db.flush()


class AmbulanceRepository(ResourceRepository):
    available_status = AmbulanceStatus.AVAILABLE.value
    occupied_status = AmbulanceStatus.ON_DUTY.value
    link_field = "ambulance_id"

    def __init__(self, db: Session):
        super().__init__(db, Ambulance)
