# backend/homeserve/core/enums.py
"""
Core enums for the homeserve platform.

Enumeration types shared by models, schemas and services so that
persisted string values stay consistent across layers.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles an AuthGateway may resolve a credential to."""

    ADMIN = "admin"
    WORKER = "worker"
    CUSTOMER = "customer"


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @classmethod
    def terminal(cls) -> frozenset["BookingStatus"]:
        return frozenset({cls.COMPLETED, cls.CANCELLED, cls.REJECTED})


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    WALLET = "wallet"
    NETBANKING = "netbanking"


class CollectionMethod(str, Enum):
    """How a worker asks to collect the outstanding amount."""

    CASH = "cash"
    PROCESSOR_ORDER = "processor-order"
    PROCESSOR_LINK = "processor-link"


class BookingType(str, Enum):
    FULL_DAY = "full-day"
    HALF_DAY = "half-day"
    MULTIPLE_DAYS = "multiple-days"
    HOURLY = "hourly"


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class TransactionDirection(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class WalletTransactionType(str, Enum):
    """Tags attached to customer and worker wallet ledger entries."""

    TOP_UP = "top_up"
    BOOKING_PAYMENT = "booking_payment"
    REFUND_WALLET = "refund_wallet"
    REFUND_EXTERNAL = "refund_external"
    BOOKING_EARNING = "booking_earning"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_REVERSAL = "withdrawal_reversal"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class CoinTransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"
    EXPIRED = "expired"
    ADMIN_CREDIT = "admin-credit"
    WELCOME_BONUS = "welcome-bonus"
    REFERRAL = "referral"
    CASHBACK = "cashback"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RescheduleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OtpPurpose(str, Enum):
    START = "start"
    COMPLETION = "completion"
