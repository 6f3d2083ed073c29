# backend/homeserve/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.assignment_service import AssignmentService
from ...services.booking_service import BookingService
from ...services.config_service import ConfigService
from ...services.ledger_service import LedgerService
from ...services.payment_processor import PaymentProcessor, StripePaymentProcessor
from ...services.settlement_service import SettlementService
from .database import get_db


def get_payment_processor() -> PaymentProcessor:
    """Payment processor for collection, verification and webhooks."""
    return StripePaymentProcessor()


def get_booking_service(
    db: Session = Depends(get_db),
    payment_processor: PaymentProcessor = Depends(get_payment_processor),
) -> BookingService:
    return BookingService(db, payment_processor=payment_processor)


def get_assignment_service(db: Session = Depends(get_db)) -> AssignmentService:
    return AssignmentService(db)


def get_settlement_service(db: Session = Depends(get_db)) -> SettlementService:
    return SettlementService(db)


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    return LedgerService(db)


def get_config_service(db: Session = Depends(get_db)) -> ConfigService:
    return ConfigService(db)
