# backend/homeserve/services/assignment_service.py
"""
Assignment Service for homeserve.

Admin (re)assignment of a worker to a booking. A worker may hold at most one
active booking (assigned, accepted or in-progress) per calendar day. The
check and the write happen under a per-worker-per-day lock held through
commit, so two concurrent assignments cannot both pass the check.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync, worker_day_lock_sync
from ..core.enums import BookingStatus
from ..core.exceptions import NotFoundException, StateConflictException
from ..models.booking import Booking
from ..models.worker import Worker
from ..principal import Principal
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .geo import (
    AssignableWorkerFinder,
    CityWorkerFinder,
    DistanceCalculator,
    HaversineDistanceCalculator,
    distance_between,
)
from .notification_service import NotificationDispatcher, NotificationService

ASSIGNABLE_STATUSES = (BookingStatus.PENDING.value, BookingStatus.ASSIGNED.value)


class AssignmentService(BaseService):
    """Worker date-conflict checks and (re)assignment."""

    def __init__(
        self,
        db: Session,
        notifications: Optional[NotificationDispatcher] = None,
        distance_calculator: Optional[DistanceCalculator] = None,
        worker_finder: Optional[AssignableWorkerFinder] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.worker_repository = RepositoryFactory.create_worker_repository(db)
        self.notifications = notifications or NotificationService(db)
        self.distance_calculator = distance_calculator or HaversineDistanceCalculator()
        self.worker_finder = worker_finder or CityWorkerFinder(db, self.distance_calculator)

    def _get_booking(self, booking_id: str, for_update: bool = False) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=for_update)
        if booking is None:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    def has_conflict(self, worker_id: str, booking: Booking) -> bool:
        """True when the worker already has another active booking that day."""
        conflicts = self.booking_repository.find_worker_conflicts(
            worker_id, booking.booking_date, exclude_booking_id=booking.id
        )
        return bool(conflicts)

    @BaseService.measure_operation("assign_worker")
    def assign_worker(self, booking_id: str, worker_id: str, actor: Principal) -> Booking:
        """
        Assign or reassign ``worker_id`` to the booking.

        The distance to the new worker is recorded when both ends have
        coordinates; the price is never changed.

        Raises:
            NotFoundException: booking or active worker not found
            StateConflictException: booking not assignable or worker busy that day
        """
        booking_date = self._get_booking(booking_id).booking_date

        with booking_lock_sync(booking_id), worker_day_lock_sync(worker_id, booking_date):
            with self.transaction():
                booking = self._get_booking(booking_id, for_update=True)
                if booking.status not in ASSIGNABLE_STATUSES:
                    raise StateConflictException(
                        f"Cannot assign a worker to a booking with status '{booking.status}'",
                        code="BOOKING_NOT_ASSIGNABLE",
                        details={"status": booking.status},
                    )

                worker = self.worker_repository.get_active(worker_id)
                if worker is None:
                    raise NotFoundException("Worker not found", code="WORKER_NOT_FOUND")

                if self.has_conflict(worker_id, booking):
                    self.logger.warning(
                        "Assignment rejected: worker busy",
                        extra={"booking_id": booking_id, "worker_id": worker_id},
                    )
                    raise StateConflictException(
                        "Worker is already booked for this date",
                        code="WORKER_DATE_CONFLICT",
                        details={"booking_date": booking.booking_date.isoformat()},
                    )

                previous_worker_id = booking.worker_id
                previous_status = booking.status
                booking.worker_id = worker.id
                booking.status = BookingStatus.ASSIGNED.value

                distance = distance_between(self.distance_calculator, booking.address, worker)
                if distance is not None:
                    booking.distance_km = distance

                self.booking_repository.add_status_audit(
                    booking,
                    from_status=previous_status,
                    to_status=booking.status,
                    actor_id=actor.id,
                    actor_role=actor.role.value,
                    reason="reassigned" if previous_worker_id else "assigned",
                )
                self._notify(booking, worker, previous_worker_id)

        self.log_operation(
            "assign_worker",
            booking_id=booking_id,
            worker_id=worker_id,
            previous_worker_id=previous_worker_id,
        )
        return booking

    def _notify(self, booking: Booking, worker: Worker, previous_worker_id: Optional[str]) -> None:
        payload = {"booking_id": booking.id}
        if previous_worker_id and previous_worker_id != worker.id:
            self.notifications.dispatch(
                recipient_id=previous_worker_id,
                recipient_model="worker",
                notification_type="booking",
                title="Job Reassigned",
                message=f"The booking for {booking.service_name} has been reassigned to another professional.",
                payload=payload,
            )
        self.notifications.dispatch(
            recipient_id=worker.id,
            recipient_model="worker",
            notification_type="booking",
            title="New Job Assigned",
            message=f"You have been assigned a new job: {booking.service_name} on {booking.booking_date.isoformat()}",
            payload=payload,
        )
        self.notifications.dispatch(
            recipient_id=booking.customer_id,
            recipient_model="customer",
            notification_type="booking",
            title="Professional Assigned",
            message=f"{worker.name} has been assigned to your booking for {booking.service_name}.",
            payload={**payload, "worker_id": worker.id},
        )

    def assignable_workers(self, booking_id: str, limit: int = 20) -> List[Worker]:
        """Candidates from the AssignableWorkerFinder, minus workers busy that day."""
        booking = self._get_booking(booking_id)
        candidates = self.worker_finder.find_for_booking(booking, limit=limit)
        return [w for w in candidates if not self.has_conflict(w.id, booking)]
