"""Coupon and per-booking coupon redemption models."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
import ulid

from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Coupon(Base):
    """Discount code with global and per-user usage limits and a validity window."""

    __tablename__ = "coupons"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    coupon_type = Column(String(20), nullable=False)
    value = Column(Numeric(12, 2), nullable=False)
    min_order_value = Column(Numeric(12, 2), nullable=False, default=0)
    max_discount = Column(Numeric(12, 2), nullable=True)
    usage_limit = Column(Integer, nullable=True)  # NULL = unlimited
    usage_count = Column(Integer, nullable=False, default=0)
    user_usage_limit = Column(Integer, nullable=False, default=1)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("coupon_type IN ('percentage', 'fixed')", name="ck_coupons_type"),
        CheckConstraint("value > 0", name="ck_coupons_value_positive"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit", name="ck_coupons_usage_within_limit"
        ),
    )

    def __repr__(self) -> str:
        return f"<Coupon {self.code}: {self.coupon_type} {self.value}>"


class CouponUsage(Base):
    """One redemption of a coupon by a customer for a booking (or bulk order)."""

    __tablename__ = "coupon_usages"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    coupon_id = Column(String(26), ForeignKey("coupons.id"), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    booking_id = Column(String(26), nullable=False, unique=True)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
