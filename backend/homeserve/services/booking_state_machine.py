"""
Booking lifecycle transition rules.

    pending ──assign──▶ assigned ──accept──▶ accepted ──start──▶ in-progress ──complete──▶ completed
       │                   │                    │
       └──reject───────────┴──▶ rejected        └──cancel──▶ cancelled

Assignment and customer cancellation are separate actions with their own
guards; this table covers what the assigned worker may do. Admins change
status only through the audited override, which skips the table but keeps
the payment guard on completion.
"""

from typing import Dict, FrozenSet, Optional

from ..core.enums import BookingStatus, PaymentStatus
from ..core.exceptions import InvalidTransitionException, StateConflictException, ValidationException
from ..models.booking import Booking

WORKER_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.REJECTED}),
    BookingStatus.ASSIGNED: frozenset({BookingStatus.ACCEPTED, BookingStatus.REJECTED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
}

WORKER_REQUIRED_STATUSES = frozenset(
    {BookingStatus.ASSIGNED, BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED}
)

REASON_REQUIRED_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED})


class BookingStateMachine:
    """Pure checks; callers persist the change and the audit row."""

    @staticmethod
    def can_transition(current: str, target: BookingStatus) -> bool:
        allowed = WORKER_TRANSITIONS.get(BookingStatus(current), frozenset())
        return target in allowed

    @classmethod
    def ensure_transition(cls, booking: Booking, target: BookingStatus, reason: Optional[str] = None) -> None:
        """
        Raises:
            InvalidTransitionException: target not reachable from the current status
            ValidationException: rejection or cancellation without a reason
            StateConflictException: completion while unpaid
        """
        if not cls.can_transition(booking.status, target):
            raise InvalidTransitionException(booking.status, target.value)
        if target in REASON_REQUIRED_STATUSES and not (reason or "").strip():
            raise ValidationException("Cancellation reason is required", code="REASON_REQUIRED")
        if target == BookingStatus.COMPLETED:
            cls.ensure_paid(booking)

    @staticmethod
    def ensure_paid(booking: Booking) -> None:
        if booking.payment_status != PaymentStatus.PAID.value:
            raise StateConflictException(
                "Payment must be collected before completing the job",
                code="PAYMENT_REQUIRED",
                details={"payment_status": booking.payment_status},
            )

    @classmethod
    def ensure_override(cls, booking: Booking, target: BookingStatus) -> None:
        """Guards an admin override still has to satisfy."""
        if booking.status == target.value:
            raise StateConflictException(
                f"Booking is already {target.value}", code="STATUS_UNCHANGED"
            )
        if target in WORKER_REQUIRED_STATUSES and not booking.worker_id:
            raise StateConflictException(
                f"A worker must be assigned before setting status '{target.value}'",
                code="WORKER_REQUIRED",
            )
        if target == BookingStatus.COMPLETED:
            cls.ensure_paid(booking)
