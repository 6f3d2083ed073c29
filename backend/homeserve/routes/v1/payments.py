# backend/homeserve/routes/v1/payments.py
"""
Payment processor webhook - API v1

POST /api/v1/payments/webhook receives processor events. The signature is
verified before anything is read; a paid event settles the booking the
same way verify-payment does.
"""

import asyncio
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Header, Request

from ...api.dependencies import get_booking_service, get_payment_processor
from ...core.exceptions import DomainException
from ...services.booking_service import BookingService
from ...services.payment_processor import PaymentProcessor
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


@router.post("/webhook")
async def processor_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    processor: PaymentProcessor = Depends(get_payment_processor),
    booking_service: BookingService = Depends(get_booking_service),
) -> Dict[str, str]:
    payload = await request.body()
    try:
        event = processor.verify_webhook(payload, stripe_signature)
        booking = await asyncio.to_thread(booking_service.handle_processor_event, event)
    except DomainException as e:
        handle_domain_exception(e)

    logger.info(
        "Processor webhook handled",
        extra={"event_type": event.event_type, "booking_id": event.booking_id},
    )
    return {"status": "processed" if booking is not None else "ignored"}
