# backend/homeserve/services/base.py
"""
Base service for homeserve.

Every service owns a session and runs each exposed operation as one unit
of work through ``transaction()``. Operations decorated with
``measure_operation`` report their duration and outcome to Prometheus.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_TX_DEPTH_KEY = "homeserve_tx_depth"
SLOW_OPERATION_SECONDS = 1.0

F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    """Session, logger and transaction handling shared by all services."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Run the block as one database transaction.

            with self.transaction():
                self.ledger.debit_customer(...)
                self.booking_repository.create(...)

        Blocks nest on the same session: an inner block joins the outer
        one, and only the outermost commits or rolls back. SQLAlchemy
        errors surface as ServiceException; anything else is re-raised
        unchanged after the rollback.
        """
        depth = self.db.info.get(_TX_DEPTH_KEY, 0)
        self.db.info[_TX_DEPTH_KEY] = depth + 1
        try:
            yield self.db
            if depth == 0:
                self.db.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Transaction failed: {str(e)}")
            if depth == 0:
                self.db.rollback()
            raise ServiceException(f"Database operation failed: {str(e)}", code="DATABASE_ERROR")
        except Exception as e:
            if depth == 0:
                self.logger.info(f"Transaction rolled back: {type(e).__name__}: {str(e)}")
                self.db.rollback()
            raise
        finally:
            self.db.info[_TX_DEPTH_KEY] = depth

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and count its successes and failures.

            @BaseService.measure_operation("accept_booking")
            def accept_booking(self, actor, booking_id): ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                error_type = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="error" if error_type else "success",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """INFO line for a completed operation with its identifying context."""
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})
