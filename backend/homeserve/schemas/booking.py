"""Booking request and response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import BookingStatus, BookingType, CollectionMethod, PaymentMethod
from ._strict_base import StrictModel, StrictRequestModel


class AddressSnapshot(StrictRequestModel):
    """Service address copied onto the booking at creation."""

    line1: str = Field(..., min_length=1, max_length=300)
    line2: Optional[str] = Field(default=None, max_length=300)
    landmark: Optional[str] = Field(default=None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    pincode: Optional[str] = Field(default=None, max_length=12)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _coordinates_together(self) -> "AddressSnapshot":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class _ServiceLine(StrictRequestModel):
    """Fields describing one requested service."""

    service_id: Optional[str] = Field(default=None, max_length=64)
    service_name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    base_price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    worker_id: Optional[str] = Field(
        default=None, max_length=26, description="Worker the customer booked directly"
    )
    booking_type: BookingType = BookingType.FULL_DAY
    days: int = Field(default=1, ge=1, le=60)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _date_range(self) -> "_ServiceLine":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class _PaymentRequest(StrictRequestModel):
    coupon_code: Optional[str] = Field(default=None, max_length=50)
    coins_to_use: int = Field(default=0, ge=0)
    wallet_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    amount_paid: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        max_digits=12,
        decimal_places=2,
        description="Amount already paid to the processor at checkout",
    )
    payment_id: Optional[str] = Field(default=None, max_length=255)
    payment_method: Optional[PaymentMethod] = None

    @field_validator("coupon_code")
    @classmethod
    def _normalize_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().upper()
        return value or None

    @model_validator(mode="after")
    def _payment_reference(self) -> "_PaymentRequest":
        if self.amount_paid > 0 and not self.payment_id:
            raise ValueError("payment_id is required when amount_paid is set")
        return self


class BookingCreate(_ServiceLine, _PaymentRequest):
    booking_date: date
    booking_time: str = Field(..., min_length=1, max_length=20)
    address: AddressSnapshot


class BulkBookingItem(_ServiceLine):
    booking_date: Optional[date] = None
    booking_time: Optional[str] = Field(default=None, max_length=20)


class BulkBookingCreate(_PaymentRequest):
    items: List[BulkBookingItem] = Field(..., min_length=1, max_length=20)
    booking_date: date
    booking_time: str = Field(..., min_length=1, max_length=20)
    address: AddressSnapshot


class RejectBookingRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=500)


class CancelBookingRequest(StrictRequestModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class WorkerCancelRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=500)


class OtpVerifyRequest(StrictRequestModel):
    otp: str = Field(..., min_length=1, max_length=8)


class CollectPaymentRequest(StrictRequestModel):
    method: CollectionMethod


class WorkProofRequest(StrictRequestModel):
    photos: List[str] = Field(..., min_length=1, max_length=10)

    @field_validator("photos")
    @classmethod
    def _non_blank(cls, value: List[str]) -> List[str]:
        cleaned = [p.strip() for p in value if p and p.strip()]
        if not cleaned:
            raise ValueError("At least one photo is required")
        return cleaned


class RescheduleRequest(StrictRequestModel):
    requested_date: date
    requested_time: str = Field(..., min_length=1, max_length=20)
    reason: str = Field(..., min_length=1, max_length=500)


class AssignWorkerRequest(StrictRequestModel):
    worker_id: str = Field(..., min_length=1, max_length=26)


class AdminStatusOverride(StrictRequestModel):
    status: BookingStatus
    reason: str = Field(..., min_length=1, max_length=500)


class BookingResponse(StrictModel):
    id: str
    order_id: Optional[str] = None
    customer_id: str
    worker_id: Optional[str] = None
    service_id: Optional[str] = None
    service_name: str
    category: Optional[str] = None
    description: Optional[str] = None
    booking_type: str
    booking_date: date
    booking_time: Optional[str] = None
    days: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    address: Dict[str, Any]
    base_price: Decimal
    platform_fee: Decimal
    travel_charge: Decimal
    distance_km: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    coupon_discount: Decimal
    coins_used: int
    coin_discount: Decimal
    wallet_amount_used: Decimal
    final_price: Decimal
    amount_paid: Decimal
    payment_status: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    payment_link: Optional[str] = None
    status: str
    work_proof_photos: List[str] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None
    reschedule_request: Optional[Dict[str, Any]] = None
    loyalty_credited: bool
    loyalty_coins_earned: int
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookingListResponse(StrictModel):
    items: List[BookingResponse]
    total: int
    skip: int
    limit: int


class BulkBookingResponse(StrictModel):
    order_id: str
    bookings: List[BookingResponse]


class StatusAuditResponse(StrictModel):
    from_status: Optional[str] = None
    to_status: str
    actor_id: str
    actor_role: str
    reason: Optional[str] = None
    is_override: bool
    created_at: datetime


class CodeIssuedResponse(StrictModel):
    message: str
    booking_id: str
    expires_at: datetime


class CollectPaymentResponse(StrictModel):
    message: str
    booking: BookingResponse
    payment_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    client_secret: Optional[str] = None
    payment_link: Optional[str] = None


class VerifyPaymentResponse(StrictModel):
    message: str
    status: str
    booking: BookingResponse


class AssignableWorkerResponse(StrictModel):
    id: str
    name: str
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
