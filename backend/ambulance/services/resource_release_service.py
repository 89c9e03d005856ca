# backend/ambulance/services/resource_release_service.py
"""
Resource Release Coordinator.

Returns a booking's driver and ambulance to the available pool. Safe to call
any number of times: each release is a conditional UPDATE that only fires when
the resource is not already available and no other live booking holds it.
"""

from __future__ import annotations

from typing import Dict, Literal, Optional

from sqlalchemy.orm import Session

from ambulance.core.clock import Clock
from ambulance.core.exceptions import NotFoundException, RepositoryException, ResourceReleaseFailure
from ambulance.events.booking_events import ResourceReleased
from ambulance.models.booking import Booking
from ambulance.monitoring.prometheus_metrics import prometheus_metrics
from ambulance.repositories.factory import RepositoryFactory
from ambulance.repositories.resource_repository import ResourceRepository

from .base import BaseService

ReleaseOutcome = Literal["released", "noop", "not_linked", "missing", "failed"]


class ResourceReleaseService(BaseService):
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.driver_repository = RepositoryFactory.create_driver_repository(db)
        self.ambulance_repository = RepositoryFactory.create_ambulance_repository(db)

    def release(self, booking_id: str, *, clear_links: bool = False) -> Dict[str, ReleaseOutcome]:
        """
        Release whatever resources ``booking_id`` links to.

        Args:
            booking_id: Booking whose driver/ambulance should be freed
            clear_links: Also null the booking's resource columns; used when
                the booking may later be re-dispatched with other resources

        Returns:
            Outcome per resource kind
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return self.release_for(booking, clear_links=clear_links)

    def release_for(self, booking: Booking, *, clear_links: bool = False) -> Dict[str, ReleaseOutcome]:
        outcomes: Dict[str, ReleaseOutcome] = {
            "driver": self._release_one("driver", self.driver_repository, booking.driver_id, booking),
            "ambulance": self._release_one(
                "ambulance", self.ambulance_repository, booking.ambulance_id, booking
            ),
        }
        if clear_links and booking.has_resources:
            booking.driver_id = None
            booking.ambulance_id = None
            self.db.flush()
        return outcomes

    def _release_one(
        self,
        kind: str,
        repository: ResourceRepository,
        resource_id: Optional[str],
        booking: Booking,
    ) -> ReleaseOutcome:
        if resource_id is None:
            return "not_linked"

        outcome: ReleaseOutcome
        try:
            resource = repository.get_by_id(resource_id)
            if resource is None:
                raise ResourceReleaseFailure(kind, resource_id, booking.id)
            previous_status = resource.status
            outcome = "released" if repository.release(resource_id, booking.id) else "noop"
        except ResourceReleaseFailure as exc:
            self.logger.warning(
                exc.message,
                extra={"booking_id": booking.id, "resource_kind": kind, "resource_id": resource_id},
            )
            outcome = "missing"
        except RepositoryException as exc:
            failure = ResourceReleaseFailure(kind, resource_id, booking.id)
            self.logger.error(
                f"{failure.message}: {exc}",
                extra={"booking_id": booking.id, "resource_kind": kind, "resource_id": resource_id},
            )
            outcome = "failed"

        prometheus_metrics.record_release(kind, outcome)
        if outcome == "released":
            event = ResourceReleased(
                booking_id=booking.id,
                resource_kind=kind,
                resource_id=resource_id,
                previous_status=previous_status,
            )
            self.logger.info(
                f"Released {kind} {resource_id} from booking {booking.booking_code}",
                extra=event.to_dict(),
            )
        return outcome
