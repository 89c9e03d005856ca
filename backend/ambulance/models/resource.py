# backend/ambulance/models/resource.py
"""
Dispatchable resources: drivers and ambulances.

A resource is busy exactly while it is linked to a non-terminal booking.
``maintenance``/``off``/``inactive`` are set by manual fleet workflows and are
never touched by the lifecycle engine except when releasing to ``available``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ambulance.database import Base
from ambulance.models.types import UTCDateTime


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class DriverStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFF = "off"
    INACTIVE = "inactive"


class AmbulanceStatus(str, Enum):
    AVAILABLE = "available"
    DISPATCHED = "dispatched"
    ON_DUTY = "on_duty"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DriverStatus.AVAILABLE.value, index=True
    )
    total_trips: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_now_utc, onupdate=_now_utc
    )

    def __repr__(self) -> str:
        return f"<Driver {self.name} {self.status}>"


class Ambulance(Base):
    __tablename__ = "ambulances"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    plate_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AmbulanceStatus.AVAILABLE.value, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_now_utc, onupdate=_now_utc
    )

    def __repr__(self) -> str:
        return f"<Ambulance {self.plate_number} {self.status}>"
