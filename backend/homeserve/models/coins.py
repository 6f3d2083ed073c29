"""Loyalty coin balance and ledger."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
import ulid

from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserCoins(Base):
    __tablename__ = "user_coins"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    owner_id = Column(String(64), nullable=False, unique=True, index=True)
    balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    transactions = relationship(
        "CoinTransaction", back_populates="account", order_by="CoinTransaction.created_at"
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_user_coins_balance_non_negative"),)

    def __repr__(self) -> str:
        return f"<UserCoins owner={self.owner_id} balance={self.balance}>"


class CoinTransaction(Base):
    __tablename__ = "coin_transactions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    account_id = Column(String(26), ForeignKey("user_coins.id"), nullable=False, index=True)
    direction = Column(String(10), nullable=False)
    txn_type = Column(String(20), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    booking_id = Column(String(26), nullable=True, index=True)
    order_id = Column(String(26), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    account = relationship("UserCoins", back_populates="transactions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_coin_transactions_amount_positive"),
        UniqueConstraint("booking_id", "txn_type", name="uq_coin_transactions_booking_type"),
    )
