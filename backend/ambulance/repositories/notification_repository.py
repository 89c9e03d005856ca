# backend/ambulance/repositories/notification_repository.py
"""Notification log repository backing reminder cool-downs."""

from datetime import datetime
import logging
from typing import Collection, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ambulance.core.exceptions import RepositoryException
from ambulance.models.notification import NotificationLog

from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class NotificationLogRepository(BaseRepository[NotificationLog]):
    def __init__(self, db: Session):
        super().__init__(db, NotificationLog)

    def last_delivered_at(
        self, reminder_key: str, event_types: Optional[Collection[str]] = None
    ) -> Optional[datetime]:
        """Timestamp of the latest delivered notification recorded under ``reminder_key``."""
        conditions = [
            NotificationLog.reminder_key == reminder_key,
            NotificationLog.delivered.is_(True),
        ]
        if event_types:
            conditions.append(NotificationLog.event_type.in_(sorted(event_types)))
        stmt = (
            select(NotificationLog.created_at)
            .where(and_(*conditions))
            .order_by(NotificationLog.created_at.desc())
            .limit(1)
        )
        try:
            return self.db.execute(stmt).scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"Error reading notification log for {reminder_key}: {str(e)}")
            raise RepositoryException(f"Failed to read notification log: {str(e)}")
