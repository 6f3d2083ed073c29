# backend/homeserve/models/__init__.py
"""
SQLAlchemy models for the homeserve platform.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import Booking, BookingStatusAudit
from .coins import CoinTransaction, UserCoins
from .coupon import Coupon, CouponUsage
from .notification import Notification
from .platform_config import PlatformConfig
from .wallet import (
    Wallet,
    WalletTransaction,
    WithdrawalRequest,
    WorkerWallet,
    WorkerWalletTransaction,
)
from .worker import Worker

__all__ = [
    "Booking",
    "BookingStatusAudit",
    "CoinTransaction",
    "Coupon",
    "CouponUsage",
    "Notification",
    "PlatformConfig",
    "UserCoins",
    "Wallet",
    "WalletTransaction",
    "WithdrawalRequest",
    "Worker",
    "WorkerWallet",
    "WorkerWalletTransaction",
]
