# backend/homeserve/services/booking_service.py
"""
Booking Service for homeserve.

Executes every booking operation end to end:
- Checkout (single and bulk) through the pricing pipeline
- Worker lifecycle actions (accept, reject, cancel, start, complete)
- Start/completion codes
- Payment collection and processor verification
- Customer cancellation and admin status override
- Work proof and reschedule requests

Each mutating operation holds the booking lock and runs in one transaction
that commits inside the lock, so settlement triggers for the same booking
never interleave.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session
import ulid

from ..core.booking_lock import booking_lock_sync, checkout_lock_sync
from ..core.config import settings
from ..core.enums import (
    BookingStatus,
    CoinTransactionType,
    CollectionMethod,
    OtpPurpose,
    PaymentMethod,
    PaymentStatus,
    RescheduleStatus,
    RoleName,
)
from ..core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from ..core.money import ZERO, to_money
from ..core.timezone_utils import utc_now
from ..models.booking import Booking, BookingStatusAudit
from ..models.coupon import Coupon
from ..models.worker import Worker
from ..principal import Principal
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate, BulkBookingCreate, RescheduleRequest
from ..schemas.pricing import PricePreviewRequest
from .base import BaseService
from .booking_state_machine import BookingStateMachine
from .config_service import ConfigService
from .geo import DistanceCalculator, HaversineDistanceCalculator, distance_between
from .ledger_service import LedgerService
from .notification_service import NotificationDispatcher, NotificationService
from .otp_gate import OTPGate
from .payment_processor import (
    PROCESSOR_PAID,
    PaymentProcessor,
    ProcessorEvent,
    ProcessorLink,
    ProcessorOrder,
    StripePaymentProcessor,
)
from .pricing_service import PriceQuote, PricingInputs, PricingService
from .settlement_service import SettlementService, short_ref

COLLECTABLE_STATUSES = (BookingStatus.IN_PROGRESS.value, BookingStatus.COMPLETED.value)
RESCHEDULABLE_STATUSES = (BookingStatus.ASSIGNED.value, BookingStatus.ACCEPTED.value)


@dataclass(frozen=True)
class CodeIssued:
    booking: Booking
    expires_at: datetime


@dataclass(frozen=True)
class CollectionResult:
    booking: Booking
    message: str
    order: Optional[ProcessorOrder] = None
    link: Optional[ProcessorLink] = None


@dataclass(frozen=True)
class VerificationResult:
    booking: Booking
    status: str
    message: str


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Collaborators are injected so tests can swap the processor, notifier
    and distance calculator; defaults are the production implementations.
    """

    def __init__(
        self,
        db: Session,
        ledger: Optional[LedgerService] = None,
        pricing: Optional[PricingService] = None,
        settlement: Optional[SettlementService] = None,
        otp_gate: Optional[OTPGate] = None,
        notifications: Optional[NotificationDispatcher] = None,
        payment_processor: Optional[PaymentProcessor] = None,
        config_service: Optional[ConfigService] = None,
        distance_calculator: Optional[DistanceCalculator] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.worker_repository = RepositoryFactory.create_worker_repository(db)
        self.ledger = ledger or LedgerService(db)
        self.pricing = pricing or PricingService(db, self.ledger)
        self.notifications = notifications or NotificationService(db)
        self.settlement = settlement or SettlementService(db, self.ledger, self.notifications)
        self.otp_gate = otp_gate or OTPGate()
        self.config_service = config_service or ConfigService(db)
        self.distance_calculator = distance_calculator or HaversineDistanceCalculator()
        self._payment_processor = payment_processor
        self.state_machine = BookingStateMachine()

    @property
    def payment_processor(self) -> PaymentProcessor:
        if self._payment_processor is None:
            self._payment_processor = StripePaymentProcessor()
        return self._payment_processor

    # Helpers

    def _get_booking(self, booking_id: str, for_update: bool = False) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=for_update)
        if booking is None:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    @contextmanager
    def _locked_booking(self, booking_id: str) -> Iterator[Booking]:
        """Booking lock plus one transaction, committed before the lock is released."""
        with booking_lock_sync(booking_id):
            with self.transaction():
                yield self._get_booking(booking_id, for_update=True)

    @staticmethod
    def _ensure_visible(actor: Principal, booking: Booking) -> None:
        if actor.is_admin:
            return
        if actor.is_customer and booking.customer_id == actor.id:
            return
        if actor.is_worker and booking.worker_id == actor.id:
            return
        raise ForbiddenException("Not authorized to access this booking", code="BOOKING_FORBIDDEN")

    @staticmethod
    def _ensure_assigned_worker(actor: Principal, booking: Booking, action: str) -> None:
        if not actor.is_worker or booking.worker_id != actor.id:
            raise ForbiddenException(
                f"Not authorized to {action} this booking", code="BOOKING_FORBIDDEN"
            )

    def _get_preferred_worker(self, worker_id: Optional[str]) -> Optional[Worker]:
        if not worker_id:
            return None
        worker = self.worker_repository.get_active(worker_id)
        if worker is None:
            raise NotFoundException("Worker not found", code="WORKER_NOT_FOUND")
        return worker

    def _transition(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Principal,
        *,
        reason: Optional[str] = None,
        is_override: bool = False,
    ) -> None:
        previous = booking.status
        booking.status = target.value
        now = utc_now()
        if target == BookingStatus.IN_PROGRESS:
            booking.started_at = now
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif target in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
            booking.cancelled_at = now
        self.booking_repository.add_status_audit(
            booking,
            from_status=previous,
            to_status=target.value,
            actor_id=actor.id,
            actor_role=actor.role.value,
            reason=reason,
            is_override=is_override,
        )
        self.logger.info(
            "Booking status changed",
            extra={
                "booking_id": booking.id,
                "from_status": previous,
                "to_status": target.value,
                "actor_id": actor.id,
                "actor_role": actor.role.value,
                "is_override": is_override,
            },
        )

    def _notify_customer(
        self,
        booking: Booking,
        title: str,
        message: str,
        notification_type: str = "booking",
        **payload: Any,
    ) -> None:
        self.notifications.dispatch(
            recipient_id=booking.customer_id,
            recipient_model="customer",
            notification_type=notification_type,
            title=title,
            message=message,
            payload={"booking_id": booking.id, **payload},
        )

    def _notify_worker(self, booking: Booking, title: str, message: str, **payload: Any) -> None:
        if not booking.worker_id:
            return
        self.notifications.dispatch(
            recipient_id=booking.worker_id,
            recipient_model="worker",
            notification_type="booking",
            title=title,
            message=message,
            payload={"booking_id": booking.id, **payload},
        )

    def _on_completed(self, booking: Booking) -> None:
        """One-time loyalty credit plus the worker-credit failsafe."""
        coins = settings.loyalty_coins_per_completion
        if coins > 0 and self.booking_repository.claim_loyalty_credit(booking, coins):
            self.ledger.credit_coins(
                booking.customer_id,
                coins,
                CoinTransactionType.EARNED,
                "Earned for booking completion",
                booking_id=booking.id,
            )
        self.settlement.credit_worker_for_booking(booking)

    def _mark_paid_in_full(self, booking: Booking, method: PaymentMethod, payment_id: Optional[str] = None) -> None:
        booking.amount_paid = to_money(booking.final_price)
        booking.payment_method = method.value
        if payment_id is not None:
            booking.payment_id = payment_id
        booking.payment_status = PaymentStatus.PAID.value
        self.db.flush()
        self.settlement.credit_worker_for_booking(booking)

    # Checkout

    def _pricing_inputs(
        self,
        customer_id: str,
        base_price: Decimal,
        distance_km: Optional[Decimal],
        data: Any,
    ) -> PricingInputs:
        return PricingInputs(
            customer_id=customer_id,
            base_price=base_price,
            fee_config=self.config_service.get_fee_config(),
            coin_config=self.config_service.get_coin_config(),
            distance_km=distance_km,
            coupon_code=data.coupon_code,
            coins=data.coins_to_use,
            wallet_amount=data.wallet_amount,
            external_amount_paid=data.amount_paid,
        )

    @staticmethod
    def _payment_method_for(data: Any, wallet_used: Decimal, external_paid: Decimal) -> Optional[str]:
        if data.payment_method is not None:
            return data.payment_method.value
        if wallet_used > ZERO and external_paid <= ZERO:
            return PaymentMethod.WALLET.value
        return None

    def _new_booking(
        self,
        *,
        booking_id: str,
        customer_id: str,
        line: Any,
        booking_date: date,
        booking_time: Optional[str],
        address: Dict[str, Any],
        worker: Optional[Worker],
        distance_km: Optional[Decimal],
        price: Any,
        coupon: Optional[Coupon],
        payment_id: Optional[str],
        payment_method: Optional[str],
        order_id: Optional[str] = None,
    ) -> Booking:
        """Persist one booking row from a service line and its price breakdown."""
        return self.booking_repository.create(
            id=booking_id,
            order_id=order_id,
            customer_id=customer_id,
            worker_id=worker.id if worker else None,
            service_id=line.service_id,
            service_name=line.service_name,
            category=line.category,
            description=line.description,
            booking_type=line.booking_type.value,
            booking_date=booking_date,
            booking_time=booking_time,
            days=line.days,
            start_date=line.start_date,
            end_date=line.end_date,
            address=address,
            city=address.get("city"),
            base_price=price.base_price,
            platform_fee=price.platform_fee,
            travel_charge=price.travel_charge,
            distance_km=distance_km,
            coupon_id=coupon.id if coupon and price.coupon_discount > ZERO else None,
            coupon_code=coupon.code if coupon and price.coupon_discount > ZERO else None,
            coupon_discount=price.coupon_discount,
            coins_used=price.coins_used,
            coin_discount=price.coin_discount,
            wallet_amount_used=price.wallet_amount_used,
            final_price=price.final_price,
            amount_paid=price.amount_paid,
            payment_status=price.payment_status.value,
            payment_method=payment_method,
            payment_id=payment_id,
            status=BookingStatus.PENDING.value,
        )

    def _announce_new_booking(self, booking: Booking, actor: Principal) -> None:
        self.booking_repository.add_status_audit(
            booking,
            from_status=None,
            to_status=booking.status,
            actor_id=actor.id,
            actor_role=actor.role.value,
        )
        self._notify_customer(
            booking,
            "Booking Confirmed",
            f"Your booking for {booking.service_name} on {booking.booking_date.isoformat()} has been placed.",
        )
        self._notify_worker(
            booking,
            "New Booking Request",
            f"You have a new booking request for {booking.service_name} on {booking.booking_date.isoformat()}",
        )

    @BaseService.measure_operation("preview_price")
    def preview_price(self, customer_id: str, data: PricePreviewRequest) -> PriceQuote:
        """Quote the pricing pipeline without mutating any ledger."""
        with self.transaction():
            inputs = PricingInputs(
                customer_id=customer_id,
                base_price=data.base_price,
                fee_config=self.config_service.get_fee_config(),
                coin_config=self.config_service.get_coin_config(),
                distance_km=data.distance_km,
                coupon_code=data.coupon_code.strip().upper() if data.coupon_code else None,
                coins=data.coins_to_use,
                wallet_amount=data.wallet_amount,
            )
            return self.pricing.quote(inputs)

    @BaseService.measure_operation("create_booking")
    def create_booking(self, actor: Principal, data: BookingCreate) -> Booking:
        """
        Price and persist a single booking.

        Coupon, coin and wallet effects are applied in that order, then the
        booking row; any failure rolls all of them back.

        Raises:
            NotFoundException: unknown coupon or worker
            StateConflictException: coupon, coin or wallet rule violated
        """
        customer_id = actor.id
        address = data.address.model_dump(exclude_none=True)

        with checkout_lock_sync(customer_id):
            with self.transaction():
                worker = self._get_preferred_worker(data.worker_id)
                distance = distance_between(self.distance_calculator, address, worker)
                quote = self.pricing.quote(
                    self._pricing_inputs(customer_id, data.base_price, distance, data)
                )

                booking_id = str(ulid.ULID())
                self.pricing.apply(quote, customer_id, booking_id=booking_id)
                booking = self._new_booking(
                    booking_id=booking_id,
                    customer_id=customer_id,
                    line=data,
                    booking_date=data.booking_date,
                    booking_time=data.booking_time,
                    address=address,
                    worker=worker,
                    distance_km=distance,
                    price=quote,
                    coupon=quote.coupon.coupon if quote.coupon else None,
                    payment_id=data.payment_id,
                    payment_method=self._payment_method_for(
                        data, quote.wallet_amount_used, quote.external_amount_paid
                    ),
                )
                self._announce_new_booking(booking, actor)

        self.log_operation(
            "create_booking",
            booking_id=booking.id,
            customer_id=customer_id,
            final_price=str(booking.final_price),
            payment_status=booking.payment_status,
        )
        return booking

    @BaseService.measure_operation("create_bulk_bookings")
    def create_bulk_bookings(self, actor: Principal, data: BulkBookingCreate) -> Tuple[str, List[Booking]]:
        """
        Price a multi-item order once and split it across its bookings.

        Returns:
            (order id shared by the bookings, bookings in item order)
        """
        customer_id = actor.id
        order_id = str(ulid.ULID())
        address = data.address.model_dump(exclude_none=True)

        with checkout_lock_sync(customer_id):
            with self.transaction():
                workers = [self._get_preferred_worker(item.worker_id) for item in data.items]
                distances = [distance_between(self.distance_calculator, address, w) for w in workers]
                known = [d for d in distances if d is not None]
                total_distance = sum(known, Decimal("0")) if known else None

                base_prices = [to_money(item.base_price) for item in data.items]
                quote = self.pricing.quote(
                    self._pricing_inputs(
                        customer_id, sum(base_prices, Decimal("0")), total_distance, data
                    )
                )
                allocations = self.pricing.allocate(quote, base_prices)
                booking_ids = [str(ulid.ULID()) for _ in data.items]

                self.pricing.apply(
                    quote, customer_id, order_id=order_id, coupon_booking_id=booking_ids[0]
                )

                bookings: List[Booking] = []
                coupon = quote.coupon.coupon if quote.coupon else None
                for booking_id, item, worker, distance, allocation in zip(
                    booking_ids, data.items, workers, distances, allocations
                ):
                    booking = self._new_booking(
                        booking_id=booking_id,
                        customer_id=customer_id,
                        line=item,
                        booking_date=item.booking_date or data.booking_date,
                        booking_time=item.booking_time or data.booking_time,
                        address=address,
                        worker=worker,
                        distance_km=distance,
                        price=allocation,
                        coupon=coupon,
                        payment_id=data.payment_id,
                        payment_method=self._payment_method_for(
                            data, allocation.wallet_amount_used, allocation.external_amount_paid
                        ),
                        order_id=order_id,
                    )
                    self._announce_new_booking(booking, actor)
                    bookings.append(booking)

        self.log_operation(
            "create_bulk_bookings",
            order_id=order_id,
            customer_id=customer_id,
            items=len(bookings),
            final_price=str(quote.final_price),
        )
        return order_id, bookings

    # Reads

    def list_bookings(
        self,
        actor: Principal,
        *,
        status: Optional[BookingStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        customer_id: Optional[str] = None,
        worker_id: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Booking], int]:
        """Customers and workers see only their own bookings; admins may filter freely."""
        if actor.is_customer:
            customer_id, worker_id = actor.id, None
        elif actor.is_worker:
            customer_id, worker_id = None, actor.id
        page_size = min(limit or settings.default_page_size, settings.max_page_size)
        return self.booking_repository.list_bookings(
            customer_id=customer_id,
            worker_id=worker_id,
            status=status.value if status else None,
            date_from=date_from,
            date_to=date_to,
            skip=skip,
            limit=page_size,
        )

    def get_booking(self, actor: Principal, booking_id: str) -> Booking:
        booking = self._get_booking(booking_id)
        self._ensure_visible(actor, booking)
        return booking

    def get_status_history(self, actor: Principal, booking_id: str) -> List[BookingStatusAudit]:
        self.get_booking(actor, booking_id)
        return self.booking_repository.get_status_history(booking_id)

    # Worker lifecycle

    @BaseService.measure_operation("accept_booking")
    def accept_booking(self, actor: Principal, booking_id: str) -> Booking:
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "accept")
            self.state_machine.ensure_transition(booking, BookingStatus.ACCEPTED)
            self._transition(booking, BookingStatus.ACCEPTED, actor)
            self._notify_customer(
                booking,
                "Booking Accepted",
                "Your booking has been accepted! The worker will start the job soon.",
            )
        return booking

    @BaseService.measure_operation("reject_booking")
    def reject_booking(self, actor: Principal, booking_id: str, reason: str) -> Booking:
        """Worker declines a pending/assigned booking; anything already paid is refunded."""
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "reject")
            self.state_machine.ensure_transition(booking, BookingStatus.REJECTED, reason)
            booking.cancellation_reason = reason.strip()
            self._transition(booking, BookingStatus.REJECTED, actor, reason=booking.cancellation_reason)
            self.settlement.refund_booking(booking)
            self._notify_customer(
                booking,
                "Booking Rejected",
                f"Your booking has been rejected. Reason: {booking.cancellation_reason}",
            )
        return booking

    @BaseService.measure_operation("worker_cancel_booking")
    def worker_cancel_booking(self, actor: Principal, booking_id: str, reason: str) -> Booking:
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "cancel")
            self.state_machine.ensure_transition(booking, BookingStatus.CANCELLED, reason)
            booking.cancellation_reason = reason.strip()
            self._transition(booking, BookingStatus.CANCELLED, actor, reason=booking.cancellation_reason)
            self.otp_gate.clear(booking, OtpPurpose.START)
            self.settlement.refund_booking(booking)
            self._notify_customer(
                booking,
                "Booking Cancelled",
                f"Your booking was cancelled by the professional. Reason: {booking.cancellation_reason}",
            )
        return booking

    @BaseService.measure_operation("request_start_code")
    def request_start_code(self, actor: Principal, booking_id: str) -> CodeIssued:
        """Issue a start code and send it to the customer; the worker never sees it."""
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "start")
            if booking.status != BookingStatus.ACCEPTED.value:
                raise StateConflictException(
                    "Booking must be accepted to start", code="BOOKING_NOT_ACCEPTED"
                )
            code = self.otp_gate.issue(booking, OtpPurpose.START)
            self._notify_customer(
                booking,
                "Start Job OTP",
                f"Share this OTP with the worker to start the job: {code}",
                notification_type="otp",
            )
            expires_at = booking.start_otp_expires_at
        return CodeIssued(booking=booking, expires_at=expires_at)

    @BaseService.measure_operation("start_with_code")
    def start_with_code(self, actor: Principal, booking_id: str, code: str) -> Booking:
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "start")
            self.state_machine.ensure_transition(booking, BookingStatus.IN_PROGRESS)
            self.otp_gate.verify(booking, OtpPurpose.START, code)
            self.otp_gate.clear(booking, OtpPurpose.START)
            self._transition(booking, BookingStatus.IN_PROGRESS, actor)
            self._notify_customer(
                booking, "Booking Started", f"Your booking for {booking.service_name} has started."
            )
        return booking

    @BaseService.measure_operation("request_completion_code")
    def request_completion_code(self, actor: Principal, booking_id: str) -> CodeIssued:
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "complete")
            if booking.status != BookingStatus.IN_PROGRESS.value:
                raise StateConflictException(
                    "Booking must be in-progress to request completion OTP",
                    code="BOOKING_NOT_IN_PROGRESS",
                )
            code = self.otp_gate.issue(booking, OtpPurpose.COMPLETION)
            self._notify_customer(
                booking,
                "Job Completion OTP",
                f"Worker wants to complete the job. Share this OTP to confirm: {code}",
                notification_type="otp",
            )
            expires_at = booking.completion_otp_expires_at
        return CodeIssued(booking=booking, expires_at=expires_at)

    @BaseService.measure_operation("complete_with_code")
    def complete_with_code(self, actor: Principal, booking_id: str, code: str) -> Booking:
        """
        Close an in-progress job.

        The code is checked before the payment guard and is only cleared
        once both pass, so an unpaid attempt leaves the code usable.
        """
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "complete")
            if not self.state_machine.can_transition(booking.status, BookingStatus.COMPLETED):
                raise InvalidTransitionException(booking.status, BookingStatus.COMPLETED.value)
            self.otp_gate.verify(booking, OtpPurpose.COMPLETION, code)
            self.state_machine.ensure_paid(booking)

            self.otp_gate.clear(booking, OtpPurpose.COMPLETION)
            self._transition(booking, BookingStatus.COMPLETED, actor)
            self._on_completed(booking)
            self._notify_customer(
                booking, "Booking Completed", "Your booking has been marked as completed."
            )
        return booking

    # Customer and admin

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, actor: Principal, booking_id: str, reason: Optional[str] = None) -> Booking:
        """
        Customer cancellation, allowed only before a worker is attached.

        Raises:
            ForbiddenException: not the booking's customer
            StateConflictException: worker already assigned or booking closed
        """
        with self._locked_booking(booking_id) as booking:
            if not (actor.is_customer and booking.customer_id == actor.id):
                raise ForbiddenException(
                    "Not authorized to cancel this booking", code="BOOKING_FORBIDDEN"
                )
            if booking.worker_id:
                raise StateConflictException(
                    "Cannot cancel booking after a worker has been assigned.",
                    code="WORKER_ASSIGNED",
                )
            if booking.status == BookingStatus.CANCELLED.value:
                raise StateConflictException("Booking is already cancelled.", code="ALREADY_CANCELLED")
            if booking.is_terminal():
                raise InvalidTransitionException(booking.status, BookingStatus.CANCELLED.value)

            booking.cancellation_reason = reason
            self._transition(booking, BookingStatus.CANCELLED, actor, reason=reason)
            self.settlement.refund_booking(booking)
        return booking

    @BaseService.measure_operation("admin_override_status")
    def admin_override_status(
        self, actor: Principal, booking_id: str, target: BookingStatus, reason: str
    ) -> Booking:
        """
        Privileged status change outside the worker transition table.

        Recorded as an override in the audit trail. Completion still needs
        a paid booking, active states need a worker, and cancelling or
        rejecting refunds whatever was paid.
        """
        if actor.role != RoleName.ADMIN:
            raise ForbiddenException("Not authorized to perform this action.", code="ADMIN_REQUIRED")

        with self._locked_booking(booking_id) as booking:
            self.state_machine.ensure_override(booking, target)
            if target in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
                booking.cancellation_reason = reason
            self.otp_gate.clear(booking, OtpPurpose.START)
            self.otp_gate.clear(booking, OtpPurpose.COMPLETION)
            self._transition(booking, target, actor, reason=reason, is_override=True)

            if target in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
                self.settlement.refund_booking(booking)
            elif target == BookingStatus.COMPLETED:
                self._on_completed(booking)

            self._notify_customer(
                booking, "Booking Status Updated", f"Your booking status is now {target.value}"
            )
        self.logger.warning(
            "Admin override applied",
            extra={"booking_id": booking_id, "admin_id": actor.id, "to_status": target.value},
        )
        return booking

    # Payments

    @BaseService.measure_operation("collect_payment")
    def collect_payment(
        self, actor: Principal, booking_id: str, method: CollectionMethod
    ) -> CollectionResult:
        """
        Collect the outstanding amount by cash or through the processor.

        Processor calls happen before any change to the booking; a failed
        call raises ExternalServiceException with nothing mutated.
        """
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "collect payment for")
            if booking.status not in COLLECTABLE_STATUSES:
                raise StateConflictException(
                    "Booking must be completed or in-progress to collect payment",
                    code="BOOKING_NOT_COLLECTABLE",
                )
            if booking.payment_status == PaymentStatus.PAID.value:
                raise StateConflictException("Payment already collected", code="ALREADY_PAID")

            amount = to_money(booking.amount_due)
            currency = settings.payment_currency

            if method == CollectionMethod.CASH:
                payment_id = f"CASH-{int(utc_now().timestamp() * 1000)}"
                self._mark_paid_in_full(booking, PaymentMethod.CASH, payment_id)
                self._notify_customer(
                    booking,
                    "Payment Collected",
                    f"Payment of ₹{amount} has been collected via Cash.",
                    notification_type="payment",
                )
                result = CollectionResult(booking=booking, message="Payment collected successfully")

            elif method == CollectionMethod.PROCESSOR_ORDER:
                order = self.payment_processor.create_order(booking.id, amount, currency)
                booking.payment_id = order.payment_id
                result = CollectionResult(booking=booking, message="Payment order created", order=order)

            else:
                link = self.payment_processor.create_payment_link(
                    booking.id, amount, currency, f"{booking.service_name} #{short_ref(booking.id)}"
                )
                booking.payment_id = link.payment_id
                booking.payment_link = link.url
                self._notify_customer(
                    booking,
                    "Payment Link",
                    f"Pay ₹{amount} for your booking: {link.url}",
                    notification_type="payment",
                    payment_link=link.url,
                )
                result = CollectionResult(booking=booking, message="Initiate UPI Payment", link=link)

        self.log_operation(
            "collect_payment", booking_id=booking_id, method=method.value, amount=str(amount)
        )
        return result

    def _finalize_processor_payment(self, booking: Booking) -> None:
        method = PaymentMethod.UPI if booking.payment_link else PaymentMethod.CARD
        self._mark_paid_in_full(booking, method)
        self._notify_customer(
            booking,
            "Payment Received",
            f"Payment of ₹{to_money(booking.final_price)} has been verified.",
            notification_type="payment",
        )
        self._notify_worker(
            booking,
            "Payment Received",
            f"Payment for booking #{short_ref(booking.id)} has been received.",
        )

    @BaseService.measure_operation("verify_payment_status")
    def verify_payment_status(self, actor: Principal, booking_id: str) -> VerificationResult:
        """Poll the processor for the stored payment and settle once it is paid."""
        with self._locked_booking(booking_id) as booking:
            self._ensure_visible(actor, booking)
            if booking.payment_status == PaymentStatus.PAID.value:
                return VerificationResult(booking=booking, status=PROCESSOR_PAID, message="Payment already verified")
            if not booking.payment_id or booking.payment_method == PaymentMethod.CASH.value:
                raise ValidationException(
                    "No payment link generated for this booking", code="NO_PAYMENT_REFERENCE"
                )

            status = self.payment_processor.fetch_status(booking.payment_id)
            if status != PROCESSOR_PAID:
                return VerificationResult(booking=booking, status=status, message="Payment not yet completed")

            self._finalize_processor_payment(booking)
        self.log_operation("verify_payment_status", booking_id=booking_id, status=status)
        return VerificationResult(booking=booking, status=PROCESSOR_PAID, message="Payment verified successfully")

    @BaseService.measure_operation("handle_processor_event")
    def handle_processor_event(self, event: ProcessorEvent) -> Optional[Booking]:
        """Settle a booking from a verified processor webhook; unrelated events are ignored."""
        if event.status != PROCESSOR_PAID or not event.booking_id:
            return None
        if self.booking_repository.get_by_id(event.booking_id) is None:
            self.logger.warning(
                "Processor event for unknown booking",
                extra={"booking_id": event.booking_id, "payment_id": event.payment_id},
            )
            return None

        with self._locked_booking(event.booking_id) as booking:
            if booking.payment_status == PaymentStatus.PAID.value or booking.status not in COLLECTABLE_STATUSES:
                return booking
            if event.payment_id != booking.payment_id:
                self.logger.warning(
                    "Processor event for a stale payment",
                    extra={
                        "booking_id": booking.id,
                        "payment_id": event.payment_id,
                        "current_payment_id": booking.payment_id,
                    },
                )
                return None
            self._finalize_processor_payment(booking)
        self.log_operation("handle_processor_event", booking_id=booking.id, event_type=event.event_type)
        return booking

    # Worker artefacts

    @BaseService.measure_operation("upload_work_proof")
    def upload_work_proof(self, actor: Principal, booking_id: str, photos: List[str]) -> Booking:
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "upload work proof for")
            if booking.status not in COLLECTABLE_STATUSES:
                raise StateConflictException(
                    "Work proof can only be added to in-progress or completed bookings",
                    code="BOOKING_NOT_STARTED",
                )
            if not photos:
                raise ValidationException("At least one photo is required", code="PHOTOS_REQUIRED")
            booking.work_proof_photos = list(booking.work_proof_photos or []) + list(photos)
        return booking

    @BaseService.measure_operation("request_reschedule")
    def request_reschedule(self, actor: Principal, booking_id: str, data: RescheduleRequest) -> Booking:
        """Store the worker's proposal and tell the customer; the schedule itself is unchanged."""
        with self._locked_booking(booking_id) as booking:
            self._ensure_assigned_worker(actor, booking, "reschedule")
            if booking.status not in RESCHEDULABLE_STATUSES:
                raise StateConflictException(
                    "Only assigned or accepted bookings can be rescheduled",
                    code="BOOKING_NOT_RESCHEDULABLE",
                )
            booking.reschedule_request = {
                "requested_date": data.requested_date.isoformat(),
                "requested_time": data.requested_time,
                "reason": data.reason,
                "status": RescheduleStatus.PENDING.value,
                "requested_at": utc_now().isoformat(),
            }
            self._notify_customer(
                booking,
                "Reschedule Requested",
                f"Worker has requested to reschedule your booking to {data.requested_time} on "
                f"{data.requested_date.isoformat()}. Reason: {data.reason}",
                requested_date=data.requested_date.isoformat(),
                requested_time=data.requested_time,
            )
        return booking
