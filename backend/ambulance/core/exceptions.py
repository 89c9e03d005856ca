# backend/ambulance/core/exceptions.py
"""
Domain-specific exceptions for the booking lifecycle engine.

Sweeps catch these per booking so that one bad record never aborts a batch;
only ``RepositoryException`` raised while loading candidates ends a run early.
"""

from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class ValidationException(DomainException):
    """Raised when business validation fails."""


class NotFoundException(DomainException):
    """Raised when a requested record is not found."""


class InvalidStateTransition(DomainException):
    """Raised when a booking cannot move from its current status to the requested one."""

    def __init__(self, booking_id: str, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Booking {booking_id} cannot transition from {from_status} to {to_status}",
            details={
                "booking_id": booking_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )
        self.booking_id = booking_id
        self.from_status = from_status
        self.to_status = to_status


class ResourceReleaseFailure(DomainException):
    """Raised when a linked driver or ambulance cannot be returned to the pool."""

    def __init__(self, resource_kind: str, resource_id: str, booking_id: str) -> None:
        super().__init__(
            f"Could not release {resource_kind} {resource_id} for booking {booking_id}",
            details={
                "resource_kind": resource_kind,
                "resource_id": resource_id,
                "booking_id": booking_id,
            },
        )
        self.resource_kind = resource_kind
        self.resource_id = resource_id
        self.booking_id = booking_id


class PersistenceConflict(DomainException):
    """
    Raised when a compare-and-set update matched no row.

    Another worker already moved the record on; callers treat this as a
    benign skip.
    """

    def __init__(self, entity: str, entity_id: str, expected: Any) -> None:
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected {expected})",
            details={"entity": entity, "entity_id": entity_id, "expected": expected},
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected


class NotificationDeliveryFailure(DomainException):
    """Raised by notifier implementations when a message could not be handed off."""

    def __init__(self, event_type: str, target_id: str, reason: str = "") -> None:
        message = f"Failed to deliver {event_type} for {target_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"event_type": event_type, "target_id": target_id, "reason": reason},
        )
        self.event_type = event_type
        self.target_id = target_id


class RepositoryException(Exception):
    """Exception raised by repository layer for data access errors."""
