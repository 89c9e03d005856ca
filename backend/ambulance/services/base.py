# backend/ambulance/services/base.py
"""
Base Service Pattern for the lifecycle engine.

Provides common functionality for all service classes including:
- Transaction management
- Logging
- Performance monitoring
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, Generator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ambulance.core.clock import Clock, system_clock
from ambulance.core.exceptions import RepositoryException
from ambulance.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Clock injection
    - Transaction handling
    - Performance monitoring
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        """
        Initialize base service.

        Args:
            db: Database session
            clock: Time source; defaults to the UTC wall clock
        """
        self.db = db
        self.clock: Clock = clock or system_clock
        self.logger = logging.getLogger(self.__class__.__name__)
        self._metrics: Dict[str, Dict[str, Any]] = {}

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Context manager for database transactions.

        Commits on success; rolls back and re-raises on any error. Raw
        SQLAlchemy errors surface as ``RepositoryException``.
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Database operation failed: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("run_sweep")
            def run(self):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                finally:
                    elapsed = time.time() - start_time
                    self._record_metric(operation_name, elapsed, success)
                    if elapsed > 5.0:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                    )

            return cast(F, wrapper)

        return decorator

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        stats = self._metrics.setdefault(
            operation, {"count": 0, "total_time": 0.0, "success_count": 0, "failure_count": 0}
        )
        stats["count"] += 1
        stats["total_time"] += elapsed
        if success:
            stats["success_count"] += 1
        else:
            stats["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Return per-operation timing stats collected on this instance."""
        return {
            name: {**stats, "avg_time": stats["total_time"] / stats["count"] if stats["count"] else 0.0}
            for name, stats in self._metrics.items()
        }

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})
