# backend/homeserve/repositories/factory.py
"""
Repository Factory for homeserve.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .coupon_repository import CouponRepository
    from .ledger_repository import (
        CoinLedgerRepository,
        CustomerWalletRepository,
        WorkerWalletRepository,
    )
    from .notification_repository import NotificationRepository
    from .platform_config_repository import PlatformConfigRepository
    from .withdrawal_repository import WithdrawalRepository
    from .worker_repository import WorkerRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking queries and status audit."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_coupon_repository(db: Session) -> "CouponRepository":
        from .coupon_repository import CouponRepository

        return CouponRepository(db)

    @staticmethod
    def create_customer_wallet_repository(db: Session) -> "CustomerWalletRepository":
        from .ledger_repository import CustomerWalletRepository

        return CustomerWalletRepository(db)

    @staticmethod
    def create_worker_wallet_repository(db: Session) -> "WorkerWalletRepository":
        from .ledger_repository import WorkerWalletRepository

        return WorkerWalletRepository(db)

    @staticmethod
    def create_coin_ledger_repository(db: Session) -> "CoinLedgerRepository":
        from .ledger_repository import CoinLedgerRepository

        return CoinLedgerRepository(db)

    @staticmethod
    def create_withdrawal_repository(db: Session) -> "WithdrawalRepository":
        from .withdrawal_repository import WithdrawalRepository

        return WithdrawalRepository(db)

    @staticmethod
    def create_platform_config_repository(db: Session) -> "PlatformConfigRepository":
        from .platform_config_repository import PlatformConfigRepository

        return PlatformConfigRepository(db)

    @staticmethod
    def create_worker_repository(db: Session) -> "WorkerRepository":
        from .worker_repository import WorkerRepository

        return WorkerRepository(db)

    @staticmethod
    def create_notification_repository(db: Session) -> "NotificationRepository":
        from .notification_repository import NotificationRepository

        return NotificationRepository(db)
