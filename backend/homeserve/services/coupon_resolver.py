"""Coupon validation, discount computation and guarded redemption."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..core.enums import CouponType
from ..core.exceptions import NotFoundException, StateConflictException
from ..core.money import round_rupees, to_money
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.coupon import Coupon, CouponUsage
from ..repositories.factory import RepositoryFactory
from .base import BaseService


@dataclass(frozen=True)
class CouponQuote:
    """A validated coupon and the discount it grants on a given total."""

    coupon: Coupon
    discount: Decimal

    @property
    def code(self) -> str:
        return self.coupon.code


class CouponResolver(BaseService):
    """
    Validates coupon codes against persisted counters.

    ``resolve`` only reads. ``redeem`` performs the mutation with
    compare-and-increment semantics, so it may still fail if a concurrent
    redemption exhausted the coupon after validation.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_coupon_repository(db)

    @staticmethod
    def compute_discount(coupon: Coupon, order_total: Decimal) -> Decimal:
        """Percentage of total capped at max_discount, or a fixed value; whole rupees."""
        if coupon.coupon_type == CouponType.PERCENTAGE.value:
            discount = Decimal(order_total) * Decimal(coupon.value) / Decimal(100)
            if coupon.max_discount is not None and discount > Decimal(coupon.max_discount):
                discount = Decimal(coupon.max_discount)
        else:
            discount = Decimal(coupon.value)
        discount = round_rupees(discount)
        return min(discount, to_money(order_total))

    def resolve(
        self,
        code: str,
        customer_id: str,
        order_total: Decimal,
        now: Optional[datetime] = None,
    ) -> CouponQuote:
        """
        Validate a coupon for this customer and order total.

        Raises:
            NotFoundException: unknown code
            StateConflictException: inactive, outside window, exhausted,
                already used by this customer, or order below minimum
        """
        coupon = self.repository.get_by_code(code)
        if coupon is None:
            raise NotFoundException("Invalid coupon code", code="COUPON_NOT_FOUND")

        moment = ensure_utc(now) or utc_now()
        if not coupon.is_active:
            raise StateConflictException("Coupon is not active", code="COUPON_INACTIVE")

        valid_from = ensure_utc(coupon.valid_from)
        valid_until = ensure_utc(coupon.valid_until)
        if moment < valid_from or moment > valid_until:
            raise StateConflictException(
                "Coupon has expired or is not yet valid", code="COUPON_EXPIRED"
            )

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise StateConflictException("Coupon usage limit reached", code="COUPON_EXHAUSTED")

        used = self.repository.count_customer_usages(coupon.id, customer_id)
        if used >= coupon.user_usage_limit:
            raise StateConflictException(
                "You have already used this coupon", code="COUPON_ALREADY_USED"
            )

        total = to_money(order_total)
        if total < to_money(coupon.min_order_value):
            raise StateConflictException(
                f"Minimum order value of {to_money(coupon.min_order_value)} required",
                code="COUPON_MIN_ORDER",
                details={"min_order_value": str(to_money(coupon.min_order_value))},
            )

        return CouponQuote(coupon=coupon, discount=self.compute_discount(coupon, total))

    def redeem(self, quote: CouponQuote, customer_id: str, booking_id: str) -> CouponUsage:
        """
        Increment the usage counter and record the redemption.

        Must run inside the caller's transaction so a later failure rolls
        the increment back. Callers serialize checkouts per customer, which
        makes the per-customer count check race-free.
        """
        coupon = quote.coupon
        used = self.repository.count_customer_usages(coupon.id, customer_id)
        if used >= coupon.user_usage_limit:
            raise StateConflictException(
                "You have already used this coupon", code="COUPON_ALREADY_USED"
            )
        if not self.repository.try_increment_usage(coupon):
            raise StateConflictException("Coupon usage limit reached", code="COUPON_EXHAUSTED")
        usage = self.repository.record_usage(coupon, customer_id, booking_id, quote.discount)

        self.logger.info(
            "Coupon redeemed",
            extra={
                "coupon_code": coupon.code,
                "customer_id": customer_id,
                "booking_id": booking_id,
                "discount": str(quote.discount),
                "usage_count": coupon.usage_count,
            },
        )
        return usage
