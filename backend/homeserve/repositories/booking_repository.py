# backend/homeserve/repositories/booking_repository.py
"""
Booking Repository for homeserve.

Data access for bookings: locked loads for state changes, filtered listing,
same-day worker conflict checks, the loyalty flag compare-and-set, and the
status audit trail.
"""

from datetime import date
import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import BookingStatus
from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatusAudit
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

WORKER_BUSY_STATUSES = (
    BookingStatus.ASSIGNED.value,
    BookingStatus.ACCEPTED.value,
    BookingStatus.IN_PROGRESS.value,
)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def list_bookings(
        self,
        *,
        customer_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Booking], int]:
        """
        Filtered, newest-first page of bookings.

        Returns:
            (page of bookings, total matching rows)
        """
        try:
            query = self._build_query()
            if customer_id is not None:
                query = query.filter(Booking.customer_id == customer_id)
            if worker_id is not None:
                query = query.filter(Booking.worker_id == worker_id)
            if status is not None:
                query = query.filter(Booking.status == status)
            if date_from is not None:
                query = query.filter(Booking.booking_date >= date_from)
            if date_to is not None:
                query = query.filter(Booking.booking_date <= date_to)

            total = query.count()
            items = (
                query.order_by(Booking.created_at.desc(), Booking.id.desc())
                .offset(skip)
                .limit(limit)
                .all()
            )
            return items, total
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing bookings: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}")

    def find_worker_conflicts(
        self,
        worker_id: str,
        booking_date: date,
        *,
        exclude_booking_id: Optional[str] = None,
        statuses: Iterable[str] = WORKER_BUSY_STATUSES,
    ) -> List[Booking]:
        """Other bookings of the worker on the same calendar day in a busy status."""
        query = self._build_query().filter(
            Booking.worker_id == worker_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(list(statuses)),
        )
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)
        return self._execute_query(query)

    def claim_loyalty_credit(self, booking: Booking, coins: int) -> bool:
        """
        Set the loyalty flag only if it is still unset.

        Returns:
            True for exactly one caller per booking.
        """
        matched = self._execute_update(
            update(Booking)
            .where(Booking.id == booking.id, Booking.loyalty_credited.is_(False))
            .values(loyalty_credited=True, loyalty_coins_earned=coins)
        )
        self.db.refresh(booking)
        return matched == 1

    def add_status_audit(
        self,
        booking: Booking,
        *,
        from_status: Optional[str],
        to_status: str,
        actor_id: str,
        actor_role: str,
        reason: Optional[str] = None,
        is_override: bool = False,
    ) -> BookingStatusAudit:
        audit = BookingStatusAudit(
            booking_id=booking.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            actor_role=actor_role,
            reason=reason,
            is_override=is_override,
        )
        self.db.add(audit)
        self.db.flush()
        return audit

    def get_status_history(self, booking_id: str) -> List[BookingStatusAudit]:
        query = (
            self.db.query(BookingStatusAudit)
            .filter(BookingStatusAudit.booking_id == booking_id)
            .order_by(BookingStatusAudit.created_at.asc(), BookingStatusAudit.id.asc())
        )
        return self._execute_query(query)
