"""
Payment processor boundary.

The booking core needs four things from a processor: create an order the
client app pays against, create a shareable payment link, poll a payment's
status, and verify webhook signatures. ``StripePaymentProcessor`` maps them
onto PaymentIntents and Checkout Sessions. Every Stripe failure surfaces as
ExternalServiceException before any ledger is touched.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, Optional, Protocol

import stripe

from ..core.config import settings
from ..core.exceptions import ExternalServiceException, ValidationException

logger = logging.getLogger(__name__)

PROCESSOR_PAID = "paid"
PROCESSOR_PENDING = "pending"
PROCESSOR_FAILED = "failed"

_INTENT_STATUS = {
    "succeeded": PROCESSOR_PAID,
    "canceled": PROCESSOR_FAILED,
    "requires_payment_method": PROCESSOR_PENDING,
    "requires_confirmation": PROCESSOR_PENDING,
    "requires_action": PROCESSOR_PENDING,
    "processing": PROCESSOR_PENDING,
    "requires_capture": PROCESSOR_PENDING,
}


@dataclass(frozen=True)
class ProcessorOrder:
    payment_id: str
    amount_minor: int
    currency: str
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class ProcessorLink:
    payment_id: str
    url: str


@dataclass(frozen=True)
class ProcessorEvent:
    """A verified webhook event reduced to what settlement needs."""

    event_type: str
    payment_id: Optional[str]
    booking_id: Optional[str]
    status: str


class PaymentProcessor(Protocol):
    def create_order(self, booking_id: str, amount: Decimal, currency: str) -> ProcessorOrder: ...

    def create_payment_link(
        self, booking_id: str, amount: Decimal, currency: str, description: str
    ) -> ProcessorLink: ...

    def fetch_status(self, payment_id: str) -> str: ...

    def verify_webhook(self, payload: bytes, signature: str) -> ProcessorEvent: ...


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripePaymentProcessor:
    """PaymentProcessor backed by the Stripe API."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        stripe.api_key = api_key or settings.stripe_secret_key.get_secret_value()
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret.get_secret_value()

    def create_order(self, booking_id: str, amount: Decimal, currency: str) -> ProcessorOrder:
        amount_minor = to_minor_units(amount)
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata={"booking_id": booking_id},
                description=f"receipt_{booking_id}",
            )
        except stripe.StripeError as exc:
            logger.error("Stripe error creating order for booking %s: %s", booking_id, str(exc))
            raise ExternalServiceException("Failed to create payment order") from exc
        return ProcessorOrder(
            payment_id=intent.id,
            amount_minor=amount_minor,
            currency=currency,
            client_secret=getattr(intent, "client_secret", None),
        )

    def create_payment_link(
        self, booking_id: str, amount: Decimal, currency: str, description: str
    ) -> ProcessorLink:
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "unit_amount": to_minor_units(amount),
                            "product_data": {"name": description},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=settings.payment_link_success_url,
                metadata={"booking_id": booking_id},
                payment_intent_data={"metadata": {"booking_id": booking_id}},
            )
        except stripe.StripeError as exc:
            logger.error("Stripe error creating payment link for booking %s: %s", booking_id, str(exc))
            raise ExternalServiceException("Failed to create payment link") from exc
        return ProcessorLink(payment_id=session.id, url=session.url)

    def fetch_status(self, payment_id: str) -> str:
        try:
            if payment_id.startswith("cs_"):
                session = stripe.checkout.Session.retrieve(payment_id)
                if session.payment_status == "paid":
                    return PROCESSOR_PAID
                return PROCESSOR_FAILED if session.status == "expired" else PROCESSOR_PENDING
            intent = stripe.PaymentIntent.retrieve(payment_id)
        except stripe.StripeError as exc:
            logger.error("Stripe error fetching payment %s: %s", payment_id, str(exc))
            raise ExternalServiceException("Failed to fetch payment status") from exc
        return _INTENT_STATUS.get(intent.status, PROCESSOR_PENDING)

    def verify_webhook(self, payload: bytes, signature: str) -> ProcessorEvent:
        """
        Raises:
            ValidationException: bad signature or malformed payload
        """
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected webhook with invalid signature")
            raise ValidationException("Invalid webhook signature", code="INVALID_SIGNATURE") from exc
        except ValueError as exc:
            raise ValidationException("Malformed webhook payload", code="INVALID_PAYLOAD") from exc

        obj: Dict[str, Any] = event["data"]["object"]
        metadata = obj.get("metadata") or {}
        event_type = event["type"]
        if event_type == "checkout.session.completed":
            status = PROCESSOR_PAID if obj.get("payment_status") == "paid" else PROCESSOR_PENDING
        elif event_type == "payment_intent.succeeded":
            status = PROCESSOR_PAID
        elif event_type == "payment_intent.payment_failed":
            status = PROCESSOR_FAILED
        else:
            status = PROCESSOR_PENDING
        return ProcessorEvent(
            event_type=event_type,
            payment_id=obj.get("id"),
            booking_id=metadata.get("booking_id"),
            status=status,
        )
