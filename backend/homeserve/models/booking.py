# backend/homeserve/models/booking.py
"""
Booking model for the homeserve platform.

A booking is one customer service request tracked from creation to
completion, cancellation or rejection. It carries a frozen price breakdown,
the payment state derived from it, the one-time code digests that gate job
start and completion, and the worker-side artefacts (work proof, reschedule
request).
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import BookingStatus, PaymentStatus
from ..database import Base

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_clause(column: str, values: Any) -> str:
    quoted = ", ".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({quoted})"


class Booking(Base):
    """
    Booking record with price breakdown and lifecycle state.

    Price invariants:
        final_price = max(0, base_price + platform_fee + travel_charge
                             - coupon_discount - coin_discount)
        amount_paid = external payment + wallet_amount_used
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    order_id = Column(String(26), nullable=True, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    worker_id = Column(String(26), ForeignKey("workers.id"), nullable=True, index=True)

    # Service identifiers
    service_id = Column(String(64), nullable=True)
    service_name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    booking_type = Column(String(20), nullable=False, default="full-day")

    # Schedule
    booking_date = Column(Date, nullable=False, index=True)
    booking_time = Column(String(20), nullable=True)
    days = Column(Integer, nullable=False, default=1)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Address snapshot {line1, city, pincode, latitude, longitude, ...}
    address = Column(JSON, nullable=False, default=dict)
    city = Column(String(100), nullable=True, index=True)

    # Price breakdown
    base_price = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False, default=0)
    travel_charge = Column(Numeric(12, 2), nullable=False, default=0)
    distance_km = Column(Numeric(10, 2), nullable=True)
    coupon_id = Column(String(26), ForeignKey("coupons.id"), nullable=True)
    coupon_code = Column(String(50), nullable=True)
    coupon_discount = Column(Numeric(12, 2), nullable=False, default=0)
    coins_used = Column(Integer, nullable=False, default=0)
    coin_discount = Column(Numeric(12, 2), nullable=False, default=0)
    wallet_amount_used = Column(Numeric(12, 2), nullable=False, default=0)
    final_price = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)

    # Payment
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_method = Column(String(20), nullable=True)
    payment_id = Column(String(255), nullable=True)
    payment_link = Column(String(1000), nullable=True)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)

    # One-time codes are stored as digests only
    start_otp_digest = Column(String(64), nullable=True)
    start_otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    completion_otp_digest = Column(String(64), nullable=True)
    completion_otp_expires_at = Column(DateTime(timezone=True), nullable=True)

    work_proof_photos = Column(JSON, nullable=False, default=list)
    cancellation_reason = Column(Text, nullable=True)
    reschedule_request = Column(JSON, nullable=True)

    loyalty_credited = Column(Boolean, nullable=False, default=False)
    loyalty_coins_earned = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    worker = relationship("Worker")
    coupon = relationship("Coupon")

    __table_args__ = (
        CheckConstraint(_in_clause("status", BookingStatus), name="ck_bookings_status"),
        CheckConstraint(
            _in_clause("payment_status", PaymentStatus), name="ck_bookings_payment_status"
        ),
        CheckConstraint("base_price >= 0", name="ck_bookings_base_price_non_negative"),
        CheckConstraint("final_price >= 0", name="ck_bookings_final_price_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_bookings_amount_paid_non_negative"),
        CheckConstraint(
            "wallet_amount_used >= 0", name="ck_bookings_wallet_amount_non_negative"
        ),
        CheckConstraint("coins_used >= 0", name="ck_bookings_coins_used_non_negative"),
        Index("ix_bookings_worker_date_status", "worker_id", "booking_date", "status"),
    )

    @property
    def external_amount_paid(self):
        return self.amount_paid - self.wallet_amount_used

    @property
    def amount_due(self):
        return max(Decimal(self.final_price) - Decimal(self.amount_paid), Decimal("0"))

    def is_terminal(self) -> bool:
        return self.status in {s.value for s in BookingStatus.terminal()}

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: customer={self.customer_id}, worker={self.worker_id}, "
            f"status={self.status}, payment={self.payment_status}>"
        )


class BookingStatusAudit(Base):
    """One row per status change; admin overrides are flagged."""

    __tablename__ = "booking_status_audit"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    actor_id = Column(String(64), nullable=False)
    actor_role = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    is_override = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<BookingStatusAudit {self.booking_id}: {self.from_status}->{self.to_status}>"
