# backend/ambulance/repositories/base_repository.py
"""
Base Repository Pattern for the lifecycle engine.

Provides the foundation for all repository classes with:
- Common read/create operations
- Row locking and compare-and-set helpers

Repositories flush but never commit; the calling service owns the
transaction boundary.
"""

import logging
from typing import Any, Collection, Generic, List, Optional, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ambulance.core.exceptions import PersistenceConflict, RepositoryException
from ambulance.database.session_utils import supports_row_locks

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Base repository implementation with common data access patterns.

    Usage:
        class BookingRepository(BaseRepository[Booking]):
            def __init__(self, db: Session):
                super().__init__(db, Booking)
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str) -> Optional[T]:
        """Retrieve an entity by its primary key."""
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def get_for_update(self, id: str, skip_locked: bool = False) -> Optional[T]:
        """
        Load an entity and hold its row lock until the transaction ends.

        With ``skip_locked`` a row already locked by another transaction is
        returned as None instead of blocking. On dialects without ``FOR UPDATE``
        support the row is simply re-read; compare-and-set updates remain the
        correctness guard there.
        """
        stmt = select(self.model).where(self.model.id == id).execution_options(
            populate_existing=True
        )
        if supports_row_locks(self.db):
            stmt = stmt.with_for_update(skip_locked=skip_locked)
        try:
            return self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to lock {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.error(
                "Integrity error creating %s: %s", self.model.__name__, exc, exc_info=True
            )
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def compare_and_set_status(
        self,
        id: str,
        expected: Collection[str],
        new_status: str,
        **values: Any,
    ) -> None:
        """
        Atomically move ``id`` to ``new_status`` if its status is still in ``expected``.

        Additional column values are written in the same statement. Raises
        ``PersistenceConflict`` when no row matched.
        """
        expected_values = sorted(expected)
        stmt = (
            update(self.model)
            .where(self.model.id == id, self.model.status.in_(expected_values))
            .values(status=new_status, **values)
            .execution_options(synchronize_session="fetch")
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating status of {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

        if result.rowcount == 0:
            raise PersistenceConflict(self.model.__name__, id, expected_values)
        self.db.flush()

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding one by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find record: {str(e)}")

    def _scalar_ids(self, stmt: Any, description: str) -> List[str]:
        """Run a candidate query returning primary keys."""
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {description}: {str(e)}")
            raise RepositoryException(f"Failed to load {description}: {str(e)}")
