# fieldbook/services/base.py
"""
Base Service Pattern

Provides common functionality for all service classes including:
- Transaction management
- Logging
- Injected clock
- Performance monitoring
"""

from contextlib import contextmanager
from datetime import datetime
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException, ServiceException
from ..core.timezone_utils import utc_now
from ..database import classify_store_error, with_db_retry
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


class BaseService:
    """
    Base class for all service layer components.

    Services own transaction boundaries; repositories only flush.
    """

    def __init__(self, db: Session, now_fn: Optional[Callable[[], datetime]] = None):
        """
        Initialize base service.

        Args:
            db: Database session
            now_fn: Clock returning aware UTC datetimes (defaults to wall clock)
        """
        self.db = db
        self._now_fn = now_fn or utc_now
        self.retry_attempts = 3
        self.logger = logging.getLogger(self.__class__.__name__)

    def now(self) -> datetime:
        return self._now_fn()

    def _with_retry(self, op_name: str, func: Callable[[], T]) -> T:
        return with_db_retry(op_name, func, max_attempts=self.retry_attempts)

    def _read_with_retry(self, op_name: str, func: Callable[[], T]) -> T:
        """Run a read under ``with_db_retry``, rolling back between attempts."""

        def _attempt() -> T:
            try:
                return func()
            except (SQLAlchemyError, RepositoryException) as e:
                if classify_store_error(e) is not None:
                    self.db.rollback()
                raise

        return self._with_retry(op_name, _attempt)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Commits on success and rolls back on any error. Transient store
        failures are re-raised untouched so ``with_db_retry`` can retry them;
        other SQLAlchemy failures surface as ServiceException.

        Usage:
            with self.transaction():
                self.db.add(entity)
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except (SQLAlchemyError, RepositoryException) as e:
            self.db.rollback()
            if classify_store_error(e) is not None:
                self.logger.warning(f"Transaction hit transient store error: {str(e)}")
                raise
            self.logger.error(f"Transaction failed: {str(e)}")
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("create_reservation")
            def create_reservation(self, ...):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    if elapsed > 1.0:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})
