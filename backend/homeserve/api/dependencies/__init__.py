# backend/homeserve/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import (
    get_current_principal,
    require_admin,
    require_customer,
    require_role,
    require_worker,
)
from .database import get_db
from .services import (
    get_assignment_service,
    get_booking_service,
    get_config_service,
    get_ledger_service,
    get_payment_processor,
    get_settlement_service,
)

__all__ = [
    # Auth
    "get_current_principal",
    "require_role",
    "require_customer",
    "require_worker",
    "require_admin",
    # Database
    "get_db",
    # Services
    "get_assignment_service",
    "get_booking_service",
    "get_config_service",
    "get_ledger_service",
    "get_payment_processor",
    "get_settlement_service",
]
