# backend/homeserve/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService and AssignmentService.

Endpoints:
    POST /price-preview - Quote a checkout without mutating anything
    POST / - Create a booking
    POST /bulk - Create one booking per cart item under a shared order
    GET / - List bookings visible to the caller
    GET /{booking_id} - Booking details
    GET /{booking_id}/history - Status audit trail
    GET /{booking_id}/assignable-workers - Candidate workers (admin)
    PUT /{booking_id}/assign - Assign or reassign a worker (admin)
    PUT /{booking_id}/accept - Worker accepts
    PUT /{booking_id}/reject - Worker rejects with a reason
    PUT /{booking_id}/worker-cancel - Worker cancels an accepted job
    PUT /{booking_id}/request-start-otp - Send the start code to the customer
    PUT /{booking_id}/start - Start with the customer's code
    PUT /{booking_id}/request-completion-otp - Send the completion code
    PUT /{booking_id}/complete - Complete with the customer's code
    PUT /{booking_id}/payment - Collect payment (cash / processor order / link)
    GET /{booking_id}/verify-payment - Poll the processor for the stored payment
    PUT /{booking_id}/cancel - Customer cancels before assignment
    PUT /{booking_id}/admin-status - Audited admin override
    PUT /{booking_id}/work-proof - Attach work photos
    PUT /{booking_id}/reschedule - Worker proposes a new slot
"""

import asyncio
from datetime import date
from decimal import Decimal
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_assignment_service,
    get_booking_service,
    get_current_principal,
    require_admin,
    require_customer,
    require_worker,
)
from ...core.config import settings
from ...core.enums import BookingStatus
from ...core.exceptions import DomainException
from ...principal import Principal
from ...schemas.booking import (
    AdminStatusOverride,
    AssignableWorkerResponse,
    AssignWorkerRequest,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BulkBookingCreate,
    BulkBookingResponse,
    CancelBookingRequest,
    CodeIssuedResponse,
    CollectPaymentRequest,
    CollectPaymentResponse,
    OtpVerifyRequest,
    RejectBookingRequest,
    RescheduleRequest,
    StatusAuditResponse,
    VerifyPaymentResponse,
    WorkerCancelRequest,
    WorkProofRequest,
)
from ...schemas.pricing import PriceBreakdownOut, PricePreviewRequest
from ...services.assignment_service import AssignmentService
from ...services.booking_service import BookingService, CodeIssued

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _code_issued(result: CodeIssued) -> CodeIssuedResponse:
    return CodeIssuedResponse(
        message="OTP sent to customer",
        booking_id=result.booking.id,
        expires_at=result.expires_at,
    )


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post("/price-preview", response_model=PriceBreakdownOut)
async def preview_price(
    payload: PricePreviewRequest,
    current_user: Principal = Depends(require_customer),
    booking_service: BookingService = Depends(get_booking_service),
) -> PriceBreakdownOut:
    """Run the pricing pipeline for a prospective booking; nothing is charged."""
    try:
        quote = await asyncio.to_thread(booking_service.preview_price, current_user.id, payload)
        return PriceBreakdownOut(
            base_price=quote.base_price,
            platform_fee=quote.platform_fee,
            travel_charge=quote.travel_charge,
            distance_km=quote.distance_km,
            coupon_code=quote.coupon_code,
            coupon_discount=quote.coupon_discount,
            coins_used=quote.coins_used,
            coin_discount=quote.coin_discount,
            wallet_amount_used=quote.wallet_amount_used,
            final_price=quote.final_price,
            amount_paid=quote.amount_paid,
            payment_status=quote.payment_status.value,
            max_coins_allowed=quote.coin.max_allowed,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: Principal = Depends(require_customer),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.create_booking, current_user, payload)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bulk", response_model=BulkBookingResponse, status_code=status.HTTP_201_CREATED)
async def create_bulk_bookings(
    payload: BulkBookingCreate,
    current_user: Principal = Depends(require_customer),
    booking_service: BookingService = Depends(get_booking_service),
) -> BulkBookingResponse:
    try:
        order_id, bookings = await asyncio.to_thread(
            booking_service.create_bulk_bookings, current_user, payload
        )
        return BulkBookingResponse(
            order_id=order_id,
            bookings=[BookingResponse.model_validate(b) for b in bookings],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    customer_id: Optional[str] = Query(None, description="Admin only"),
    worker_id: Optional[str] = Query(None, description="Admin only"),
    skip: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    current_user: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    """List bookings; customers and workers only see their own."""
    try:
        items, total = await asyncio.to_thread(
            booking_service.list_bookings,
            current_user,
            status=status_filter,
            date_from=date_from,
            date_to=date_to,
            customer_id=customer_id,
            worker_id=worker_id,
            skip=skip,
            limit=limit,
        )
        return BookingListResponse(
            items=[BookingResponse.model_validate(b) for b in items],
            total=total,
            skip=skip,
            limit=limit,
        )
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Routes scoped to one booking
# ============================================================================


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, current_user, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/history", response_model=List[StatusAuditResponse])
async def get_booking_history(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[StatusAuditResponse]:
    try:
        rows = await asyncio.to_thread(booking_service.get_status_history, current_user, booking_id)
        return [StatusAuditResponse.model_validate(r) for r in rows]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/assignable-workers", response_model=List[AssignableWorkerResponse])
async def get_assignable_workers(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    limit: int = Query(20, ge=1, le=100),
    current_user: Principal = Depends(require_admin),
    assignment_service: AssignmentService = Depends(get_assignment_service),
) -> List[AssignableWorkerResponse]:
    try:
        workers = await asyncio.to_thread(
            assignment_service.assignable_workers, booking_id, limit
        )
        return [AssignableWorkerResponse.model_validate(w) for w in workers]
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/assign", response_model=BookingResponse)
async def assign_worker(
    payload: AssignWorkerRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_admin),
    assignment_service: AssignmentService = Depends(get_assignment_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            assignment_service.assign_worker, booking_id, payload.worker_id, current_user
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.accept_booking, current_user, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    payload: RejectBookingRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.reject_booking, current_user, booking_id, payload.reason
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/worker-cancel", response_model=BookingResponse)
async def worker_cancel_booking(
    payload: WorkerCancelRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.worker_cancel_booking, current_user, booking_id, payload.reason
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/request-start-otp", response_model=CodeIssuedResponse)
async def request_start_otp(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> CodeIssuedResponse:
    """The code goes to the customer only; the response never contains it."""
    try:
        result = await asyncio.to_thread(booking_service.request_start_code, current_user, booking_id)
        return _code_issued(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/start", response_model=BookingResponse)
async def start_booking(
    payload: OtpVerifyRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.start_with_code, current_user, booking_id, payload.otp
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/request-completion-otp", response_model=CodeIssuedResponse)
async def request_completion_otp(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> CodeIssuedResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.request_completion_code, current_user, booking_id
        )
        return _code_issued(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    payload: OtpVerifyRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.complete_with_code, current_user, booking_id, payload.otp
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/payment", response_model=CollectPaymentResponse)
async def collect_payment(
    payload: CollectPaymentRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> CollectPaymentResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.collect_payment, current_user, booking_id, payload.method
        )
        response = CollectPaymentResponse(
            message=result.message,
            booking=BookingResponse.model_validate(result.booking),
        )
        if result.order is not None:
            response.payment_id = result.order.payment_id
            response.amount = Decimal(result.order.amount_minor) / 100
            response.currency = result.order.currency
            response.client_secret = result.order.client_secret
        if result.link is not None:
            response.payment_id = result.link.payment_id
            response.payment_link = result.link.url
        return response
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment_status(
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> VerifyPaymentResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.verify_payment_status, current_user, booking_id
        )
        return VerifyPaymentResponse(
            message=result.message,
            status=result.status,
            booking=BookingResponse.model_validate(result.booking),
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    payload: CancelBookingRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_customer),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking, current_user, booking_id, payload.reason
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/admin-status", response_model=BookingResponse)
async def admin_override_status(
    payload: AdminStatusOverride,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_admin),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.admin_override_status,
            current_user,
            booking_id,
            payload.status,
            payload.reason,
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/work-proof", response_model=BookingResponse)
async def upload_work_proof(
    payload: WorkProofRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.upload_work_proof, current_user, booking_id, payload.photos
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{booking_id}/reschedule", response_model=BookingResponse)
async def request_reschedule(
    payload: RescheduleRequest,
    booking_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    current_user: Principal = Depends(require_worker),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.request_reschedule, current_user, booking_id, payload
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)
