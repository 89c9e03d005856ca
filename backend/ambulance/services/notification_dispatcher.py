# backend/ambulance/services/notification_dispatcher.py
"""
Hand-off point between the lifecycle engine and notification delivery.

The engine only knows ``notify(booking_id, event_type, context)``; channels
(mail, SMS, push) live behind a ``Notifier``. Every attempt is written to
``notification_logs`` so reminder cool-downs survive restarts. Delivery errors
are logged and recorded, never raised into a sweep.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from ambulance.core.clock import Clock, system_clock
from ambulance.core.exceptions import NotificationDeliveryFailure
from ambulance.repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, booking_id: str, event_type: str, context: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier that only logs; real channels are wired in by deployment."""

    def notify(self, booking_id: str, event_type: str, context: Dict[str, Any]) -> None:
        logger.info(
            "Notification %s for booking %s",
            event_type,
            booking_id,
            extra={"booking_id": booking_id, "event_type": event_type},
        )


class NotificationDispatcher:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.clock: Clock = clock or system_clock
        self.log_repository = RepositoryFactory.create_notification_log_repository(db)

    def dispatch(
        self,
        event_type: str,
        booking_id: str,
        *,
        payment_id: Optional[str] = None,
        reminder_key: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> bool:
        """
        Deliver one notification and record the attempt.

        Returns:
            True if the notifier accepted the message
        """
        payload: Dict[str, Any] = dict(context or {})
        payload.setdefault("booking_id", booking_id)
        if payment_id is not None:
            payload.setdefault("payment_id", payment_id)

        error: Optional[str] = None
        try:
            self.notifier.notify(booking_id, event_type, payload)
        except NotificationDeliveryFailure as exc:
            error = exc.message
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__

        if error is not None:
            logger.warning(
                f"Notification {event_type} for booking {booking_id} was not delivered: {error}",
                extra={"booking_id": booking_id, "payment_id": payment_id, "event_type": event_type},
            )

        self.log_repository.create(
            booking_id=booking_id,
            payment_id=payment_id,
            event_type=event_type,
            reminder_key=reminder_key,
            delivered=error is None,
            error=error,
            created_at=occurred_at or self.clock.now(),
        )
        return error is None
