# backend/homeserve/services/ledger_service.py
"""
Ledger primitives for customer wallets, worker wallets and loyalty coins.

Every mutation is one atomic unit: the balance update and the appended log
row are flushed together inside the caller's transaction, under the owner's
wallet lock. A debit that the balance does not cover raises before any row
is appended, so the cached balance always equals the signed sum of the log.

These methods never commit; the calling operation owns the unit of work.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.booking_lock import wallet_lock_sync
from ..core.enums import CoinTransactionType, TransactionDirection, WalletTransactionType
from ..core.exceptions import InsufficientBalanceException, ValidationException
from ..core.money import ZERO, to_money
from ..models.coins import CoinTransaction, UserCoins
from ..models.wallet import Wallet, WalletTransaction, WorkerWallet, WorkerWalletTransaction
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

CUSTOMER_LEDGER = "customer"
WORKER_LEDGER = "worker"
COIN_LEDGER = "coins"


class LedgerService(BaseService):
    """Credits and debits against the three ledgers."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.customer_wallets = RepositoryFactory.create_customer_wallet_repository(db)
        self.worker_wallets = RepositoryFactory.create_worker_wallet_repository(db)
        self.coins = RepositoryFactory.create_coin_ledger_repository(db)

    @staticmethod
    def _positive_amount(amount: Decimal) -> Decimal:
        value = to_money(amount)
        if value <= ZERO:
            raise ValidationException("Amount must be greater than zero", code="INVALID_AMOUNT")
        return value

    # Customer wallet

    def get_customer_wallet(self, owner_id: str) -> Wallet:
        return self.customer_wallets.get_or_create(owner_id)

    def customer_balance(self, owner_id: str) -> Decimal:
        wallet = self.customer_wallets.get_by_owner(owner_id)
        return to_money(wallet.balance) if wallet is not None else ZERO

    def credit_customer(
        self,
        owner_id: str,
        amount: Decimal,
        txn_type: WalletTransactionType,
        note: str,
        *,
        booking_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> WalletTransaction:
        value = self._positive_amount(amount)
        with wallet_lock_sync(CUSTOMER_LEDGER, owner_id):
            wallet = self.customer_wallets.get_or_create(owner_id, for_update=True)
            self.customer_wallets.apply_credit(wallet, value)
            txn = self.customer_wallets.append_transaction(
                wallet,
                direction=TransactionDirection.CREDIT.value,
                txn_type=txn_type.value,
                amount=value,
                balance_after=wallet.balance,
                note=note,
                booking_id=booking_id,
                order_id=order_id,
            )
        self._log_entry(CUSTOMER_LEDGER, TransactionDirection.CREDIT, txn_type.value, owner_id, value, booking_id)
        return txn

    def debit_customer(
        self,
        owner_id: str,
        amount: Decimal,
        txn_type: WalletTransactionType,
        note: str,
        *,
        booking_id: Optional[str] = None,
        order_id: Optional[str] = None,
        insufficient_message: str = "Insufficient wallet balance",
    ) -> WalletTransaction:
        value = self._positive_amount(amount)
        with wallet_lock_sync(CUSTOMER_LEDGER, owner_id):
            wallet = self.customer_wallets.get_or_create(owner_id, for_update=True)
            if not self.customer_wallets.apply_debit(wallet, value):
                self._log_rejected(CUSTOMER_LEDGER, owner_id, value, wallet.balance)
                raise InsufficientBalanceException(
                    insufficient_message,
                    details={"requested": str(value), "available": str(to_money(wallet.balance))},
                )
            txn = self.customer_wallets.append_transaction(
                wallet,
                direction=TransactionDirection.DEBIT.value,
                txn_type=txn_type.value,
                amount=value,
                balance_after=wallet.balance,
                note=note,
                booking_id=booking_id,
                order_id=order_id,
            )
        self._log_entry(CUSTOMER_LEDGER, TransactionDirection.DEBIT, txn_type.value, owner_id, value, booking_id)
        return txn

    def customer_transactions(self, owner_id: str, limit: int = 50) -> List[WalletTransaction]:
        wallet = self.customer_wallets.get_by_owner(owner_id)
        return self.customer_wallets.list_transactions(wallet, limit) if wallet else []

    # Worker wallet

    def get_worker_wallet(self, worker_id: str) -> Optional[WorkerWallet]:
        return self.worker_wallets.get_by_owner(worker_id)

    def worker_balance(self, worker_id: str) -> Decimal:
        wallet = self.worker_wallets.get_by_owner(worker_id)
        return to_money(wallet.balance) if wallet is not None else ZERO

    def credit_worker(
        self,
        worker_id: str,
        amount: Decimal,
        txn_type: WalletTransactionType,
        note: str,
        *,
        booking_id: Optional[str] = None,
        withdrawal_id: Optional[str] = None,
    ) -> WorkerWalletTransaction:
        value = self._positive_amount(amount)
        with wallet_lock_sync(WORKER_LEDGER, worker_id):
            wallet = self.worker_wallets.get_or_create(worker_id, for_update=True)
            self.worker_wallets.apply_credit(wallet, value)
            txn = self.worker_wallets.append_transaction(
                wallet,
                direction=TransactionDirection.CREDIT.value,
                txn_type=txn_type.value,
                amount=value,
                balance_after=wallet.balance,
                note=note,
                booking_id=booking_id,
                withdrawal_id=withdrawal_id,
            )
        self._log_entry(WORKER_LEDGER, TransactionDirection.CREDIT, txn_type.value, worker_id, value, booking_id)
        return txn

    def debit_worker(
        self,
        worker_id: str,
        amount: Decimal,
        txn_type: WalletTransactionType,
        note: str,
        *,
        withdrawal_id: Optional[str] = None,
    ) -> WorkerWalletTransaction:
        value = self._positive_amount(amount)
        with wallet_lock_sync(WORKER_LEDGER, worker_id):
            wallet = self.worker_wallets.get_or_create(worker_id, for_update=True)
            if not self.worker_wallets.apply_debit(wallet, value):
                self._log_rejected(WORKER_LEDGER, worker_id, value, wallet.balance)
                raise InsufficientBalanceException(
                    "Insufficient balance",
                    details={"requested": str(value), "available": str(to_money(wallet.balance))},
                )
            txn = self.worker_wallets.append_transaction(
                wallet,
                direction=TransactionDirection.DEBIT.value,
                txn_type=txn_type.value,
                amount=value,
                balance_after=wallet.balance,
                note=note,
                withdrawal_id=withdrawal_id,
            )
        self._log_entry(WORKER_LEDGER, TransactionDirection.DEBIT, txn_type.value, worker_id, value, None)
        return txn

    def find_worker_transaction(
        self, *, booking_id: str, txn_type: WalletTransactionType
    ) -> Optional[WorkerWalletTransaction]:
        return self.worker_wallets.find_transaction(booking_id=booking_id, txn_type=txn_type.value)

    def find_customer_transaction(
        self, *, booking_id: str, txn_type: WalletTransactionType
    ) -> Optional[WalletTransaction]:
        return self.customer_wallets.find_transaction(booking_id=booking_id, txn_type=txn_type.value)

    def worker_transactions(self, worker_id: str, limit: int = 50) -> List[WorkerWalletTransaction]:
        wallet = self.worker_wallets.get_by_owner(worker_id)
        return self.worker_wallets.list_transactions(wallet, limit) if wallet else []

    # Loyalty coins

    def get_coin_account(self, owner_id: str) -> UserCoins:
        return self.coins.get_or_create(owner_id)

    def coin_balance(self, owner_id: str) -> int:
        account = self.coins.get_by_owner(owner_id)
        return int(account.balance) if account is not None else 0

    def credit_coins(
        self,
        owner_id: str,
        coins: int,
        txn_type: CoinTransactionType,
        description: str,
        *,
        booking_id: Optional[str] = None,
    ) -> CoinTransaction:
        if coins <= 0:
            raise ValidationException("Coin amount must be greater than zero", code="INVALID_AMOUNT")
        with wallet_lock_sync(COIN_LEDGER, owner_id):
            account = self.coins.get_or_create(owner_id, for_update=True)
            self.coins.apply_credit(account, coins)
            txn = self.coins.append_transaction(
                account,
                direction=TransactionDirection.CREDIT.value,
                txn_type=txn_type.value,
                amount=coins,
                balance_after=account.balance,
                description=description,
                booking_id=booking_id,
            )
        self._log_entry(COIN_LEDGER, TransactionDirection.CREDIT, txn_type.value, owner_id, coins, booking_id)
        return txn

    def debit_coins(
        self,
        owner_id: str,
        coins: int,
        txn_type: CoinTransactionType,
        description: str,
        *,
        booking_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> CoinTransaction:
        if coins <= 0:
            raise ValidationException("Coin amount must be greater than zero", code="INVALID_AMOUNT")
        with wallet_lock_sync(COIN_LEDGER, owner_id):
            account = self.coins.get_or_create(owner_id, for_update=True)
            if not self.coins.apply_debit(account, coins):
                self._log_rejected(COIN_LEDGER, owner_id, coins, account.balance)
                raise InsufficientBalanceException(
                    "Insufficient coin balance",
                    details={"requested": coins, "available": int(account.balance)},
                )
            txn = self.coins.append_transaction(
                account,
                direction=TransactionDirection.DEBIT.value,
                txn_type=txn_type.value,
                amount=coins,
                balance_after=account.balance,
                description=description,
                booking_id=booking_id,
                order_id=order_id,
            )
        self._log_entry(COIN_LEDGER, TransactionDirection.DEBIT, txn_type.value, owner_id, coins, booking_id)
        return txn

    def coin_transactions(self, owner_id: str, limit: int = 50) -> List[CoinTransaction]:
        account = self.coins.get_by_owner(owner_id)
        return self.coins.list_transactions(account, limit) if account else []

    # Logging

    def _log_entry(
        self,
        ledger: str,
        direction: TransactionDirection,
        txn_type: str,
        owner_id: str,
        amount: object,
        booking_id: Optional[str],
    ) -> None:
        prometheus_metrics.record_ledger_entry(ledger, direction.value, txn_type)
        self.logger.info(
            "Ledger %s %s on %s ledger",
            direction.value,
            txn_type,
            ledger,
            extra={
                "ledger": ledger,
                "owner_id": owner_id,
                "amount": str(amount),
                "txn_type": txn_type,
                "booking_id": booking_id,
            },
        )

    def _log_rejected(self, ledger: str, owner_id: str, amount: object, balance: object) -> None:
        self.logger.warning(
            "Ledger debit rejected: insufficient balance",
            extra={
                "ledger": ledger,
                "owner_id": owner_id,
                "amount": str(amount),
                "balance": str(balance),
            },
        )
