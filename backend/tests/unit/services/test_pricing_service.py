from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

import pytest

from homeserve.core.enums import CouponType, PaymentStatus
from homeserve.core.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from homeserve.models.booking import Booking
from homeserve.models.coupon import Coupon, CouponUsage
from homeserve.schemas.pricing import CoinConfig, FeeConfig
from homeserve.services.coin_resolver import CoinResolver
from homeserve.services.coupon_resolver import CouponResolver
from homeserve.services.ledger_service import LedgerService
from homeserve.services.pricing_service import (
    PricingInputs,
    PricingService,
    allocate_proportionally,
    compute_payment_status,
)
from tests.factories.builders import activate_fees, fund_coins, fund_wallet, make_coupon

ACTIVE_FEES = FeeConfig(platform_fee=Decimal("50"), travel_charge_per_km=Decimal("10"), is_active=True)
DEFAULT_COINS = CoinConfig()


def _inputs(customer_id: str, **overrides) -> PricingInputs:
    fields = dict(
        customer_id=customer_id,
        base_price=Decimal("1000"),
        fee_config=ACTIVE_FEES,
        coin_config=DEFAULT_COINS,
    )
    fields.update(overrides)
    return PricingInputs(**fields)


@pytest.fixture
def pricing(db) -> PricingService:
    return PricingService(db)


class TestPricingPipeline:
    def test_coupon_applies_to_total_including_platform_fee(self, db, pricing, customer):
        make_coupon(db, "SAVE10")

        quote = pricing.quote(_inputs(customer.id, coupon_code="SAVE10"))

        assert quote.platform_fee == Decimal("50.00")
        assert quote.travel_charge == Decimal("0.00")
        assert quote.coupon_discount == Decimal("105.00")
        assert quote.final_price == Decimal("945.00")

    def test_coins_apply_after_coupon(self, db, pricing, customer):
        make_coupon(db, "SAVE10")
        fund_coins(db, customer.id, 100)

        quote = pricing.quote(_inputs(customer.id, coupon_code="SAVE10", coins=50))

        assert quote.coin.max_allowed == 472
        assert quote.coin_discount == Decimal("50.00")
        assert quote.final_price == Decimal("895.00")

    def test_wallet_shortfall_rejects_checkout_without_side_effects(
        self, db, booking_service, customer
    ):
        activate_fees(db, "50")
        coupon = make_coupon(db, "SAVE10")
        fund_coins(db, customer.id, 100)
        fund_wallet(db, customer.id, "500")

        from tests.factories.builders import booking_request

        with pytest.raises(InsufficientBalanceException) as exc:
            booking_service.create_booking(
                customer,
                booking_request(coupon_code="SAVE10", coins_to_use=50, wallet_amount=Decimal("895")),
            )

        assert exc.value.message == "Insufficient wallet balance"
        db.refresh(coupon)
        assert coupon.usage_count == 0
        assert db.query(CouponUsage).count() == 0
        assert db.query(Booking).count() == 0
        ledger = LedgerService(db)
        assert ledger.coin_balance(customer.id) == 100
        assert ledger.customer_balance(customer.id) == Decimal("500.00")

    def test_travel_charge_uses_distance_and_rounds_to_rupees(self, pricing, customer):
        quote = pricing.quote(_inputs(customer.id, distance_km=Decimal("3.46")))

        assert quote.travel_charge == Decimal("35.00")
        assert quote.final_price == Decimal("1085.00")

    def test_inactive_fees_charge_nothing(self, pricing, customer):
        quote = pricing.quote(
            _inputs(customer.id, fee_config=FeeConfig(platform_fee=Decimal("50")), distance_km=Decimal("5"))
        )

        assert quote.platform_fee == Decimal("0.00")
        assert quote.travel_charge == Decimal("0.00")
        assert quote.final_price == Decimal("1000.00")

    def test_wallet_above_payable_is_rejected(self, db, pricing, customer):
        fund_wallet(db, customer.id, "5000")

        with pytest.raises(StateConflictException) as exc:
            pricing.quote(_inputs(customer.id, wallet_amount=Decimal("1200")))

        assert exc.value.code == "WALLET_EXCEEDS_PAYABLE"

    def test_full_wallet_payment_marks_quote_paid(self, db, pricing, customer):
        fund_wallet(db, customer.id, "5000")

        quote = pricing.quote(_inputs(customer.id, wallet_amount=Decimal("1050")))

        assert quote.amount_paid == Decimal("1050.00")
        assert quote.payment_status == PaymentStatus.PAID

    def test_zero_base_price_is_invalid(self, pricing, customer):
        with pytest.raises(ValidationException):
            pricing.quote(_inputs(customer.id, base_price=Decimal("0")))

    def test_failure_after_coupon_and_coins_rolls_everything_back(
        self, db, booking_service, customer
    ):
        coupon = make_coupon(db, "SAVE10")
        fund_coins(db, customer.id, 100)
        fund_wallet(db, customer.id, "1000")

        from tests.factories.builders import booking_request

        boom = InsufficientBalanceException("Insufficient wallet balance")
        with patch.object(booking_service.ledger, "debit_customer", side_effect=boom):
            with pytest.raises(InsufficientBalanceException):
                booking_service.create_booking(
                    customer,
                    booking_request(coupon_code="SAVE10", coins_to_use=50, wallet_amount=Decimal("100")),
                )

        db.refresh(coupon)
        assert coupon.usage_count == 0
        assert db.query(CouponUsage).count() == 0
        assert LedgerService(db).coin_balance(customer.id) == 100
        assert LedgerService(db).customer_balance(customer.id) == Decimal("1000.00")


class TestPaymentStatus:
    @pytest.mark.parametrize(
        "paid, final, expected",
        [
            ("0", "100", PaymentStatus.PENDING),
            ("40", "100", PaymentStatus.PARTIAL),
            ("100", "100", PaymentStatus.PAID),
            ("0", "0", PaymentStatus.PENDING),
            ("150", "100", PaymentStatus.PAID),
        ],
    )
    def test_status_is_derived_from_amounts(self, paid, final, expected):
        assert compute_payment_status(Decimal(paid), Decimal(final)) == expected


class TestCouponRules:
    def test_unknown_code(self, db, customer):
        with pytest.raises(NotFoundException):
            CouponResolver(db).resolve("NOPE", customer.id, Decimal("1000"))

    def test_inactive_coupon(self, db, customer):
        make_coupon(db, "OFF", is_active=False)
        with pytest.raises(StateConflictException) as exc:
            CouponResolver(db).resolve("OFF", customer.id, Decimal("1000"))
        assert exc.value.code == "COUPON_INACTIVE"

    def test_expired_coupon(self, db, customer):
        from datetime import timedelta

        from homeserve.core.timezone_utils import utc_now

        make_coupon(
            db,
            "OLD",
            valid_from=utc_now() - timedelta(days=10),
            valid_until=utc_now() - timedelta(days=1),
        )
        with pytest.raises(StateConflictException) as exc:
            CouponResolver(db).resolve("OLD", customer.id, Decimal("1000"))
        assert exc.value.code == "COUPON_EXPIRED"

    def test_global_limit_reached(self, db, customer):
        make_coupon(db, "ONCE", usage_limit=1, usage_count=1)
        with pytest.raises(StateConflictException) as exc:
            CouponResolver(db).resolve("ONCE", customer.id, Decimal("1000"))
        assert exc.value.code == "COUPON_EXHAUSTED"

    def test_minimum_order_value(self, db, customer):
        make_coupon(db, "BIG", min_order_value=Decimal("2000"))
        with pytest.raises(StateConflictException) as exc:
            CouponResolver(db).resolve("BIG", customer.id, Decimal("1000"))
        assert exc.value.code == "COUPON_MIN_ORDER"

    def test_per_customer_limit(self, db, create_booking, customer, other_customer):
        make_coupon(db, "SAVE10")
        create_booking(coupon_code="SAVE10")

        with pytest.raises(StateConflictException) as exc:
            create_booking(coupon_code="SAVE10")
        assert exc.value.code == "COUPON_ALREADY_USED"

        other = create_booking(actor=other_customer, coupon_code="save10")
        assert other.coupon_discount == Decimal("100.00")
        assert db.query(Coupon).filter_by(code="SAVE10").one().usage_count == 2

    def test_percentage_discount_capped_by_max_discount(self):
        coupon = Coupon(coupon_type=CouponType.PERCENTAGE.value, value=Decimal("20"), max_discount=Decimal("100"))
        assert CouponResolver.compute_discount(coupon, Decimal("1000")) == Decimal("100.00")

    def test_percentage_discount_rounds_half_up_to_rupees(self):
        coupon = Coupon(coupon_type=CouponType.PERCENTAGE.value, value=Decimal("10"), max_discount=None)
        assert CouponResolver.compute_discount(coupon, Decimal("1055")) == Decimal("106.00")

    def test_fixed_discount_never_exceeds_total(self):
        coupon = Coupon(coupon_type=CouponType.FIXED.value, value=Decimal("500"), max_discount=None)
        assert CouponResolver.compute_discount(coupon, Decimal("300")) == Decimal("300.00")


class TestCoinRules:
    def test_cap_is_floor_of_percentage(self):
        assert CoinResolver.max_coins_allowed(Decimal("945"), CoinConfig()) == 472

    def test_cap_respects_conversion_rate(self):
        config = CoinConfig(coin_to_rupee_rate=Decimal("0.5"))
        assert CoinResolver.max_coins_allowed(Decimal("100"), config) == 100

    def test_disabled_coins(self, db, customer):
        fund_coins(db, customer.id, 100)
        config = CoinConfig(is_active=False)

        assert CoinResolver.max_coins_allowed(Decimal("1000"), config) == 0
        with pytest.raises(StateConflictException) as exc:
            CoinResolver(db).resolve(customer.id, 10, Decimal("1000"), config)
        assert exc.value.code == "COINS_DISABLED"

    def test_request_above_cap(self, db, customer):
        fund_coins(db, customer.id, 1000)
        with pytest.raises(StateConflictException) as exc:
            CoinResolver(db).resolve(customer.id, 501, Decimal("1000"), CoinConfig())
        assert exc.value.code == "COIN_CAP_EXCEEDED"
        assert exc.value.details["max_allowed"] == 500

    def test_request_above_balance(self, db, customer):
        fund_coins(db, customer.id, 10)
        with pytest.raises(InsufficientBalanceException):
            CoinResolver(db).resolve(customer.id, 20, Decimal("1000"), CoinConfig())

    def test_zero_coins_is_a_no_op(self, db, customer):
        quote = CoinResolver(db).resolve(customer.id, 0, Decimal("1000"), CoinConfig())
        assert quote.coins == 0
        assert quote.discount == Decimal("0.00")
        assert quote.max_allowed == 500


class TestAllocation:
    def test_shares_sum_to_total(self):
        shares = allocate_proportionally(Decimal("100.00"), [Decimal("1")] * 3)
        assert shares == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]

    def test_cap_overflow_spills_to_earlier_items(self):
        shares = allocate_proportionally(
            Decimal("10.00"), [Decimal("1"), Decimal("1")], caps=[Decimal("10"), Decimal("2")]
        )
        assert shares == [Decimal("8.00"), Decimal("2")]

    def test_integer_quantum_for_coins(self):
        shares = allocate_proportionally(Decimal(7), [Decimal("1"), Decimal("1")], quantum=Decimal("1"))
        assert shares == [Decimal("3"), Decimal("4")]

    def test_bulk_allocation_matches_aggregate(self, db, pricing, customer):
        make_coupon(db, "SAVE10")
        fund_wallet(db, customer.id, "2000")
        quote = pricing.quote(
            _inputs(
                customer.id,
                base_price=Decimal("1000"),
                fee_config=FeeConfig(platform_fee=Decimal("50"), is_active=True),
                coupon_code="SAVE10",
                wallet_amount=Decimal("945"),
            )
        )

        lines = PricingService.allocate(quote, [Decimal("600"), Decimal("400")])

        assert [line.platform_fee for line in lines] == [Decimal("30.00"), Decimal("20.00")]
        assert [line.coupon_discount for line in lines] == [Decimal("63.00"), Decimal("42.00")]
        assert [line.final_price for line in lines] == [Decimal("567.00"), Decimal("378.00")]
        assert sum(line.final_price for line in lines) == quote.final_price
        assert sum(line.wallet_amount_used for line in lines) == quote.wallet_amount_used
        assert all(line.payment_status == PaymentStatus.PAID for line in lines)
