"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from ambulance.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

_POSTGRES_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 5,
    "pool_pre_ping": True,
    "pool_recycle": 300,
}


def build_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    """Create an engine for ``url`` with dialect-appropriate pool settings."""
    database_url = url or settings.database_url
    kwargs: dict[str, Any] = {"echo": settings.database_echo if echo is None else echo}
    if database_url.startswith("sqlite"):
        # Worker threads share the connection in local runs.
        kwargs["connect_args"] = {"check_same_thread": False}
    elif database_url.startswith("postgresql"):
        kwargs.update(_POSTGRES_POOL_KWARGS)
    logger.debug("Creating engine for %s", database_url.split("@")[-1])
    return create_engine(database_url, **kwargs)


engine = build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

__all__ = ["Base", "SessionLocal", "build_engine", "engine"]
