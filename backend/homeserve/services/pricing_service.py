"""Centralized pricing pipeline for bookings and bulk orders."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.enums import PaymentStatus, WalletTransactionType
from ..core.exceptions import InsufficientBalanceException, StateConflictException, ValidationException
from ..core.money import CENT, ONE, ZERO, floor_to, round_rupees, to_money
from ..schemas.pricing import CoinConfig, FeeConfig
from .base import BaseService
from .coin_resolver import CoinQuote, CoinResolver
from .coupon_resolver import CouponQuote, CouponResolver
from .ledger_service import LedgerService


def compute_payment_status(amount_paid: Decimal, final_price: Decimal) -> PaymentStatus:
    """
    Payment status as a pure function of what was paid against what is owed.

    A free booking (final price 0) stays pending until a collection is
    recorded for it.
    """
    paid = to_money(amount_paid)
    owed = to_money(final_price)
    if owed > ZERO and paid >= owed:
        return PaymentStatus.PAID
    if ZERO < paid < owed:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


def allocate_proportionally(
    total: Decimal,
    weights: Sequence[Decimal],
    quantum: Decimal = CENT,
    caps: Optional[Sequence[Decimal]] = None,
) -> List[Decimal]:
    """
    Split ``total`` across items in proportion to ``weights``.

    Each share but the last is floored to ``quantum``; the last item takes the
    remainder so the shares sum to ``total`` exactly. With ``caps``, any part
    of the remainder above the last item's cap spills back onto earlier items
    that still have room.
    """
    count = len(weights)
    if count == 0:
        return []
    amount = Decimal(total)
    weight_sum = sum((Decimal(w) for w in weights), Decimal(0))
    if amount == 0 or weight_sum <= 0:
        shares = [Decimal(0).quantize(quantum)] * count
        shares[-1] = amount
        return shares

    shares = [floor_to(amount * Decimal(w) / weight_sum, quantum) for w in weights[:-1]]
    shares.append(amount - sum(shares, Decimal(0)))

    if caps is not None:
        overflow = shares[-1] - Decimal(caps[-1])
        if overflow > 0:
            shares[-1] = Decimal(caps[-1])
            for index in range(count - 2, -1, -1):
                room = Decimal(caps[index]) - shares[index]
                if room <= 0:
                    continue
                take = min(room, overflow)
                shares[index] += take
                overflow -= take
                if overflow <= 0:
                    break
    return shares


@dataclass(frozen=True)
class PricingInputs:
    """Everything one pricing run depends on, including the config snapshots."""

    customer_id: str
    base_price: Decimal
    fee_config: FeeConfig
    coin_config: CoinConfig
    distance_km: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    coins: int = 0
    wallet_amount: Decimal = ZERO
    external_amount_paid: Decimal = ZERO


@dataclass(frozen=True)
class PriceQuote:
    """Validated price breakdown; nothing has been mutated yet."""

    base_price: Decimal
    platform_fee: Decimal
    travel_charge: Decimal
    distance_km: Optional[Decimal]
    coupon: Optional[CouponQuote]
    coin: CoinQuote
    wallet_amount_used: Decimal
    external_amount_paid: Decimal
    final_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.base_price + self.platform_fee + self.travel_charge

    @property
    def coupon_discount(self) -> Decimal:
        return self.coupon.discount if self.coupon else ZERO

    @property
    def coupon_code(self) -> Optional[str]:
        return self.coupon.code if self.coupon else None

    @property
    def coins_used(self) -> int:
        return self.coin.coins

    @property
    def coin_discount(self) -> Decimal:
        return self.coin.discount

    @property
    def amount_paid(self) -> Decimal:
        return self.external_amount_paid + self.wallet_amount_used

    @property
    def payment_status(self) -> PaymentStatus:
        return compute_payment_status(self.amount_paid, self.final_price)


@dataclass(frozen=True)
class LineAllocation:
    """One bulk line item's share of an aggregate quote."""

    base_price: Decimal
    platform_fee: Decimal
    travel_charge: Decimal
    coupon_discount: Decimal
    coins_used: int
    coin_discount: Decimal
    wallet_amount_used: Decimal
    external_amount_paid: Decimal
    final_price: Decimal
    payment_status: PaymentStatus = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "payment_status", compute_payment_status(self.amount_paid, self.final_price)
        )

    @property
    def amount_paid(self) -> Decimal:
        return self.external_amount_paid + self.wallet_amount_used


class PricingService(BaseService):
    """
    Deterministic pricing pipeline.

    Steps run in a fixed order, each consuming the residual of the previous:
    fees, coupon, coins, wallet. ``quote`` validates every step without
    touching any ledger; ``apply`` then commits the coupon, coin and wallet
    effects in that order inside the caller's transaction.
    """

    def __init__(
        self,
        db: Session,
        ledger: Optional[LedgerService] = None,
        coupon_resolver: Optional[CouponResolver] = None,
        coin_resolver: Optional[CoinResolver] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or LedgerService(db)
        self.coupon_resolver = coupon_resolver or CouponResolver(db)
        self.coin_resolver = coin_resolver or CoinResolver(db, self.ledger)

    @staticmethod
    def compute_fees(
        fee_config: FeeConfig, distance_km: Optional[Decimal]
    ) -> tuple[Decimal, Decimal]:
        """Platform fee and travel charge; both zero while fees are inactive."""
        if not fee_config.is_active:
            return ZERO, ZERO
        platform_fee = to_money(fee_config.platform_fee)
        travel_charge = ZERO
        if distance_km is not None and distance_km > 0:
            travel_charge = round_rupees(Decimal(distance_km) * fee_config.travel_charge_per_km)
        return platform_fee, travel_charge

    @BaseService.measure_operation("pricing.quote")
    def quote(self, inputs: PricingInputs) -> PriceQuote:
        """
        Run the pipeline without mutating anything.

        Raises:
            ValidationException: negative amounts
            NotFoundException: unknown coupon code
            StateConflictException: coupon, coin or wallet rule violated
        """
        base_price = to_money(inputs.base_price)
        if base_price <= ZERO:
            raise ValidationException("Base price must be greater than zero", code="INVALID_PRICE")
        wallet_requested = to_money(inputs.wallet_amount)
        external_paid = to_money(inputs.external_amount_paid)
        if wallet_requested < ZERO or external_paid < ZERO or inputs.coins < 0:
            raise ValidationException("Amounts must not be negative", code="INVALID_AMOUNT")

        platform_fee, travel_charge = self.compute_fees(inputs.fee_config, inputs.distance_km)
        total = base_price + platform_fee + travel_charge

        coupon_quote: Optional[CouponQuote] = None
        if inputs.coupon_code:
            coupon_quote = self.coupon_resolver.resolve(inputs.coupon_code, inputs.customer_id, total)
            total -= coupon_quote.discount

        coin_quote = self.coin_resolver.resolve(
            inputs.customer_id, inputs.coins, max(total, ZERO), inputs.coin_config
        )
        total -= coin_quote.discount

        final_price = max(total, ZERO)

        if wallet_requested > ZERO:
            balance = self.ledger.customer_balance(inputs.customer_id)
            if balance < wallet_requested:
                raise InsufficientBalanceException(
                    "Insufficient wallet balance",
                    details={"requested": str(wallet_requested), "available": str(balance)},
                )
            if wallet_requested > final_price:
                raise StateConflictException(
                    "Wallet amount exceeds payable amount",
                    code="WALLET_EXCEEDS_PAYABLE",
                    details={"requested": str(wallet_requested), "payable": str(final_price)},
                )

        if external_paid + wallet_requested > final_price:
            raise StateConflictException(
                "Payment amount exceeds payable amount",
                code="PAYMENT_EXCEEDS_PAYABLE",
            )

        return PriceQuote(
            base_price=base_price,
            platform_fee=platform_fee,
            travel_charge=travel_charge,
            distance_km=inputs.distance_km,
            coupon=coupon_quote,
            coin=coin_quote,
            wallet_amount_used=wallet_requested,
            external_amount_paid=external_paid,
            final_price=final_price,
        )

    def apply(
        self,
        quote: PriceQuote,
        customer_id: str,
        *,
        booking_id: Optional[str] = None,
        order_id: Optional[str] = None,
        coupon_booking_id: Optional[str] = None,
    ) -> None:
        """
        Commit coupon, coin and wallet effects of a quote, in that order.

        ``booking_id`` tags ledger rows of a single booking; bulk orders pass
        ``order_id`` instead and link the coupon redemption to
        ``coupon_booking_id`` (the first booking of the order).
        """
        if quote.coupon is not None:
            self.coupon_resolver.redeem(
                quote.coupon, customer_id, coupon_booking_id or booking_id or order_id
            )
        self.coin_resolver.spend(quote.coin, customer_id, booking_id=booking_id, order_id=order_id)
        if quote.wallet_amount_used > ZERO:
            reference = booking_id or order_id
            self.ledger.debit_customer(
                customer_id,
                quote.wallet_amount_used,
                WalletTransactionType.BOOKING_PAYMENT,
                f"Payment for booking #{reference}",
                booking_id=booking_id,
                order_id=order_id,
            )

    @staticmethod
    def allocate(quote: PriceQuote, base_prices: Sequence[Decimal]) -> List[LineAllocation]:
        """
        Distribute an aggregate quote across bulk line items.

        Fees and discounts follow each item's pre-discount share (its base
        price). Payments follow each item's payable share so that an order
        paid in full leaves every item paid in full.
        """
        weights = [to_money(price) for price in base_prices]
        fees = allocate_proportionally(quote.platform_fee, weights)
        travel = allocate_proportionally(quote.travel_charge, weights)
        coupons = allocate_proportionally(quote.coupon_discount, weights)
        coin_discounts = allocate_proportionally(quote.coin_discount, weights)
        coins = allocate_proportionally(Decimal(quote.coins_used), weights, quantum=ONE)

        finals = [
            max(weights[i] + fees[i] + travel[i] - coupons[i] - coin_discounts[i], ZERO)
            for i in range(len(weights))
        ]
        paid = allocate_proportionally(quote.amount_paid, finals, caps=finals)
        wallet = allocate_proportionally(quote.wallet_amount_used, paid, caps=paid)

        return [
            LineAllocation(
                base_price=weights[i],
                platform_fee=fees[i],
                travel_charge=travel[i],
                coupon_discount=coupons[i],
                coins_used=int(coins[i]),
                coin_discount=coin_discounts[i],
                wallet_amount_used=wallet[i],
                external_amount_paid=paid[i] - wallet[i],
                final_price=finals[i],
            )
            for i in range(len(weights))
        ]
