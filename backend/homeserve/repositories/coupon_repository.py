"""Coupon lookups, guarded usage increments and redemption records."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from ..models.coupon import Coupon, CouponUsage
from .base_repository import BaseRepository


class CouponRepository(BaseRepository[Coupon]):
    def __init__(self, db: Session):
        super().__init__(db, Coupon)

    def get_by_code(self, code: str, for_update: bool = False) -> Optional[Coupon]:
        query = self._build_query().filter(Coupon.code == code.strip().upper())
        if for_update:
            query = query.with_for_update()
        return query.first()

    def count_customer_usages(self, coupon_id: str, customer_id: str) -> int:
        return (
            self.db.query(CouponUsage)
            .filter(CouponUsage.coupon_id == coupon_id, CouponUsage.customer_id == customer_id)
            .count()
        )

    def try_increment_usage(self, coupon: Coupon) -> bool:
        """
        Compare-and-increment guarded by the global limit.

        Returns:
            False when the coupon is already exhausted.
        """
        matched = self._execute_update(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
        )
        self.db.refresh(coupon)
        return matched == 1

    def record_usage(
        self, coupon: Coupon, customer_id: str, booking_id: str, discount: Decimal
    ) -> CouponUsage:
        usage = CouponUsage(
            coupon_id=coupon.id,
            customer_id=customer_id,
            booking_id=booking_id,
            discount_amount=discount,
        )
        self.db.add(usage)
        self.db.flush()
        return usage
