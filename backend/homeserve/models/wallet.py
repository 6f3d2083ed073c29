# backend/homeserve/models/wallet.py
"""
Wallet ledgers for customers and workers.

Each wallet keeps a cached balance next to an append-only transaction log.
Amounts on transactions are always positive; ``direction`` carries the sign.
The cached balance equals the signed sum of the log and never goes negative.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import WithdrawalStatus
from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Wallet(Base):
    """Customer wallet."""

    __tablename__ = "wallets"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    owner_id = Column(String(64), nullable=False, unique=True, index=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    transactions = relationship(
        "WalletTransaction",
        back_populates="wallet",
        order_by="WalletTransaction.created_at",
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),)

    def __repr__(self) -> str:
        return f"<Wallet owner={self.owner_id} balance={self.balance}>"


class WalletTransaction(Base):
    """Customer wallet ledger entry."""

    __tablename__ = "wallet_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    wallet_id = Column(String(26), ForeignKey("wallets.id"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    txn_type = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    note = Column(Text, nullable=True)
    booking_id = Column(String(26), nullable=True, index=True)
    order_id = Column(String(26), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_wallet_transactions_amount_positive"),
        CheckConstraint("direction IN ('credit', 'debit')", name="ck_wallet_transactions_direction"),
        UniqueConstraint("booking_id", "txn_type", name="uq_wallet_transactions_booking_type"),
    )


class WorkerWallet(Base):
    """Worker earnings wallet."""

    __tablename__ = "worker_wallets"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    worker_id = Column(String(26), ForeignKey("workers.id"), nullable=False, unique=True, index=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    transactions = relationship(
        "WorkerWalletTransaction",
        back_populates="wallet",
        order_by="WorkerWalletTransaction.created_at",
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_worker_wallets_balance_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<WorkerWallet worker={self.worker_id} balance={self.balance}>"


class WorkerWalletTransaction(Base):
    """Worker wallet ledger entry."""

    __tablename__ = "worker_wallet_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    wallet_id = Column(String(26), ForeignKey("worker_wallets.id"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    txn_type = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    note = Column(Text, nullable=True)
    booking_id = Column(String(26), nullable=True, index=True)
    withdrawal_id = Column(String(26), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    wallet = relationship("WorkerWallet", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_worker_wallet_transactions_amount_positive"),
        CheckConstraint(
            "direction IN ('credit', 'debit')", name="ck_worker_wallet_transactions_direction"
        ),
        UniqueConstraint(
            "booking_id", "txn_type", name="uq_worker_wallet_transactions_booking_type"
        ),
        UniqueConstraint(
            "withdrawal_id", "txn_type", name="uq_worker_wallet_transactions_withdrawal_type"
        ),
    )


class WithdrawalRequest(Base):
    """
    Worker payout request.

    The worker balance is debited when the request is created; rejection
    re-credits it under the same request id, approval leaves the debit standing.
    """

    __tablename__ = "withdrawal_requests"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    worker_id = Column(String(26), ForeignKey("workers.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default=WithdrawalStatus.PENDING.value)
    rejection_reason = Column(Text, nullable=True)
    processed_by = Column(String(64), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_requests_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_withdrawal_requests_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<WithdrawalRequest {self.id}: worker={self.worker_id} {self.amount} {self.status}>"
