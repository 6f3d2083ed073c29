# backend/homeserve/repositories/ledger_repository.py
"""
Data access for balance-plus-log ledgers.

The same pattern backs three ledgers: customer wallets, worker wallets and
loyalty coins. Balance changes are single UPDATE statements evaluated by the
database, and debits only match when the balance covers the amount, so two
concurrent debits can never both succeed against the same funds.
"""

from decimal import Decimal
from typing import Any, Generic, List, Optional, Type, TypeVar, Union

from sqlalchemy import case, func, update
from sqlalchemy.exc import SQLAlchemyError

from ..core.enums import TransactionDirection
from ..core.exceptions import RepositoryException
from ..models.coins import CoinTransaction, UserCoins
from ..models.wallet import Wallet, WalletTransaction, WorkerWallet, WorkerWalletTransaction
from .base_repository import BaseRepository

A = TypeVar("A")
Amount = Union[Decimal, int]


class LedgerRepository(BaseRepository[A], Generic[A]):
    """Account rows with a cached balance plus an append-only transaction table."""

    transaction_model: Type[Any]
    owner_column: str
    account_fk: str

    def get_by_owner(self, owner_id: str, for_update: bool = False) -> Optional[A]:
        try:
            query = self.db.query(self.model).filter(
                getattr(self.model, self.owner_column) == owner_id
            )
            if for_update:
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading ledger for owner {owner_id}: {str(e)}")
            raise RepositoryException(f"Failed to load {self.model.__name__}: {str(e)}")

    def get_or_create(self, owner_id: str, for_update: bool = False) -> A:
        """Ledgers are created lazily on first need."""
        account = self.get_by_owner(owner_id, for_update=for_update)
        if account is not None:
            return account
        return self.create(**{self.owner_column: owner_id, "balance": 0})

    def apply_credit(self, account: A, amount: Amount) -> None:
        self._execute_update(
            update(self.model)
            .where(self.model.id == account.id)
            .values(balance=self.model.balance + amount)
        )
        self.db.refresh(account)

    def apply_debit(self, account: A, amount: Amount) -> bool:
        """
        Compare-and-swap debit.

        Returns:
            False when the balance does not cover ``amount``; nothing changes.
        """
        matched = self._execute_update(
            update(self.model)
            .where(self.model.id == account.id, self.model.balance >= amount)
            .values(balance=self.model.balance - amount)
        )
        self.db.refresh(account)
        return matched == 1

    def append_transaction(self, account: A, **fields: Any) -> Any:
        try:
            txn = self.transaction_model(**{self.account_fk: account.id}, **fields)
            self.db.add(txn)
            self.db.flush()
            return txn
        except SQLAlchemyError as e:
            self.logger.error(f"Error appending {self.transaction_model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to append ledger entry: {str(e)}")

    def find_transaction(self, **criteria: Any) -> Optional[Any]:
        try:
            return self.db.query(self.transaction_model).filter_by(**criteria).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error scanning ledger entries: {str(e)}")
            raise RepositoryException(f"Failed to scan ledger entries: {str(e)}")

    def list_transactions(self, account: A, limit: int = 50) -> List[Any]:
        fk = getattr(self.transaction_model, self.account_fk)
        query = (
            self.db.query(self.transaction_model)
            .filter(fk == account.id)
            .order_by(self.transaction_model.created_at.desc(), self.transaction_model.id.desc())
            .limit(limit)
        )
        return self._execute_query(query)

    def signed_total(self, account: A) -> Amount:
        """Signed sum of the log: credits minus debits."""
        fk = getattr(self.transaction_model, self.account_fk)
        amount = self.transaction_model.amount
        signed = case(
            (self.transaction_model.direction == TransactionDirection.CREDIT.value, amount),
            else_=-amount,
        )
        total = self.db.query(func.coalesce(func.sum(signed), 0)).filter(fk == account.id).scalar()
        return total


class CustomerWalletRepository(LedgerRepository[Wallet]):
    transaction_model = WalletTransaction
    owner_column = "owner_id"
    account_fk = "wallet_id"

    def __init__(self, db):
        super().__init__(db, Wallet)


class WorkerWalletRepository(LedgerRepository[WorkerWallet]):
    transaction_model = WorkerWalletTransaction
    owner_column = "worker_id"
    account_fk = "wallet_id"

    def __init__(self, db):
        super().__init__(db, WorkerWallet)


class CoinLedgerRepository(LedgerRepository[UserCoins]):
    transaction_model = CoinTransaction
    owner_column = "owner_id"
    account_fk = "account_id"

    def __init__(self, db):
        super().__init__(db, UserCoins)

    def apply_credit(self, account: UserCoins, amount: Amount) -> None:
        self._execute_update(
            update(UserCoins)
            .where(UserCoins.id == account.id)
            .values(
                balance=UserCoins.balance + amount,
                total_earned=UserCoins.total_earned + amount,
            )
        )
        self.db.refresh(account)

    def apply_debit(self, account: UserCoins, amount: Amount) -> bool:
        matched = self._execute_update(
            update(UserCoins)
            .where(UserCoins.id == account.id, UserCoins.balance >= amount)
            .values(
                balance=UserCoins.balance - amount,
                total_spent=UserCoins.total_spent + amount,
            )
        )
        self.db.refresh(account)
        return matched == 1
