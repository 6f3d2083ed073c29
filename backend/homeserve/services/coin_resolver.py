"""Loyalty coin redemption limits and discount computation."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..core.enums import CoinTransactionType
from ..core.exceptions import InsufficientBalanceException, StateConflictException
from ..core.money import ZERO, floor_int, to_money
from ..models.coins import CoinTransaction
from ..schemas.pricing import CoinConfig
from .base import BaseService
from .ledger_service import LedgerService


@dataclass(frozen=True)
class CoinQuote:
    coins: int
    discount: Decimal
    max_allowed: int


class CoinResolver(BaseService):
    """Validates a coin request against the cap and the customer's balance."""

    def __init__(self, db: Session, ledger: Optional[LedgerService] = None):
        super().__init__(db)
        self.ledger = ledger or LedgerService(db)

    @staticmethod
    def max_coins_allowed(post_coupon_total: Decimal, config: CoinConfig) -> int:
        """floor(max_usage_percentage% of the total, expressed in coins)."""
        if not config.is_active or post_coupon_total <= ZERO:
            return 0
        rupees = Decimal(post_coupon_total) * config.max_usage_percentage / Decimal(100)
        return floor_int(rupees / config.coin_to_rupee_rate)

    def resolve(
        self,
        customer_id: str,
        coins: int,
        post_coupon_total: Decimal,
        config: CoinConfig,
    ) -> CoinQuote:
        """
        Raises:
            StateConflictException: coins disabled or request above the cap
            InsufficientBalanceException: balance below the request
        """
        max_allowed = self.max_coins_allowed(post_coupon_total, config)
        if coins <= 0:
            return CoinQuote(coins=0, discount=ZERO, max_allowed=max_allowed)

        if not config.is_active:
            raise StateConflictException("Coin redemption is currently disabled", code="COINS_DISABLED")
        if coins > max_allowed:
            raise StateConflictException(
                f"You can use at most {max_allowed} coins on this order",
                code="COIN_CAP_EXCEEDED",
                details={"requested": coins, "max_allowed": max_allowed},
            )
        balance = self.ledger.coin_balance(customer_id)
        if balance < coins:
            raise InsufficientBalanceException(
                "Insufficient coin balance",
                details={"requested": coins, "available": balance},
            )
        discount = to_money(Decimal(coins) * config.coin_to_rupee_rate)
        return CoinQuote(coins=coins, discount=discount, max_allowed=max_allowed)

    def spend(
        self,
        quote: CoinQuote,
        customer_id: str,
        *,
        booking_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Optional[CoinTransaction]:
        if quote.coins <= 0:
            return None
        reference = booking_id or order_id
        return self.ledger.debit_coins(
            customer_id,
            quote.coins,
            CoinTransactionType.SPENT,
            f"Redeemed on booking #{reference}",
            booking_id=booking_id,
            order_id=order_id,
        )
