"""Fee/coin configuration snapshots and price preview DTOs."""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from ._strict_base import FrozenConfigModel, StrictModel, StrictRequestModel


class FeeConfig(FrozenConfigModel):
    platform_fee: Decimal = Field(default=Decimal("0"), ge=0)
    travel_charge_per_km: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = False


class CoinConfig(FrozenConfigModel):
    coin_to_rupee_rate: Decimal = Field(default=Decimal("1"), gt=0)
    max_usage_percentage: Decimal = Field(default=Decimal("50"), ge=0, le=100)
    is_active: bool = True


class FeeConfigUpdate(StrictRequestModel):
    platform_fee: Optional[Decimal] = Field(default=None, ge=0)
    travel_charge_per_km: Optional[Decimal] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class CoinConfigUpdate(StrictRequestModel):
    coin_to_rupee_rate: Optional[Decimal] = Field(default=None, gt=0)
    max_usage_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    is_active: Optional[bool] = None


class PricePreviewRequest(StrictRequestModel):
    base_price: Decimal = Field(..., gt=0)
    coupon_code: Optional[str] = Field(default=None, max_length=50)
    coins_to_use: int = Field(default=0, ge=0)
    wallet_amount: Decimal = Field(default=Decimal("0"), ge=0)
    distance_km: Optional[Decimal] = Field(default=None, ge=0)


class PriceBreakdownOut(StrictModel):
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
    max_coins_allowed: int
