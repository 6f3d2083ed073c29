"""Wallet, coin and payout DTOs."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class PayoutRequest(StrictRequestModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class WithdrawalRejectRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalResponse(StrictModel):
    id: str
    worker_id: str
    amount: Decimal
    status: str
    rejection_reason: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class WalletTransactionResponse(StrictModel):
    id: str
    direction: str
    txn_type: str
    amount: Decimal
    balance_after: Decimal
    note: Optional[str] = None
    booking_id: Optional[str] = None
    created_at: datetime


class WorkerWalletTransactionResponse(WalletTransactionResponse):
    withdrawal_id: Optional[str] = None


class CoinTransactionResponse(StrictModel):
    id: str
    direction: str
    txn_type: str
    amount: int
    balance_after: int
    description: Optional[str] = None
    booking_id: Optional[str] = None
    created_at: datetime


class CustomerWalletResponse(StrictModel):
    balance: Decimal
    coin_balance: int
    transactions: List[WalletTransactionResponse]
    coin_transactions: List[CoinTransactionResponse]


class WorkerWalletResponse(StrictModel):
    balance: Decimal
    transactions: List[WorkerWalletTransactionResponse]
