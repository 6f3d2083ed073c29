# backend/homeserve/services/settlement_service.py
"""
Settlement Service for homeserve.

Moves money once a booking reaches a financial end state:
- Worker earnings are credited exactly once per paid booking, whichever
  trigger path (cash collection, processor verification, completion
  failsafe) gets there first.
- Cancelled bookings refund the customer wallet, wallet-funded and
  externally-paid portions as separate tagged transactions.
- Worker payouts reserve funds on request and re-credit on rejection.

Every per-booking step runs under the booking lock so the idempotency scan
and the credit it guards cannot interleave with another trigger.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync, wallet_lock_sync
from ..core.enums import PaymentStatus, WalletTransactionType, WithdrawalStatus
from ..core.exceptions import (
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from ..core.money import ZERO, to_money
from ..core.timezone_utils import utc_now
from ..models.booking import Booking
from ..models.wallet import WalletTransaction, WithdrawalRequest, WorkerWalletTransaction
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .ledger_service import WORKER_LEDGER, LedgerService
from .notification_service import NotificationDispatcher, NotificationService


def short_ref(booking_id: str) -> str:
    """Last six characters of an id, as shown to users."""
    return booking_id[-6:]


class SettlementService(BaseService):
    """Worker credits, customer refunds and worker payouts."""

    def __init__(
        self,
        db: Session,
        ledger: Optional[LedgerService] = None,
        notifications: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or LedgerService(db)
        self.notifications = notifications or NotificationService(db)
        self.withdrawal_repository = RepositoryFactory.create_withdrawal_repository(db)

    # Worker crediting

    def credit_worker_for_booking(self, booking: Booking) -> Optional[WorkerWalletTransaction]:
        """
        Credit the assigned worker with the booking's final price, once.

        Joins the caller's transaction. Returns the new ledger entry, or
        None when the booking is not payable to a worker or was already
        credited.
        """
        with booking_lock_sync(booking.id):
            if booking.payment_status != PaymentStatus.PAID.value or not booking.worker_id:
                return None

            amount = to_money(booking.final_price)
            existing = self.ledger.find_worker_transaction(
                booking_id=booking.id, txn_type=WalletTransactionType.BOOKING_EARNING
            )
            if existing is not None or amount <= ZERO:
                prometheus_metrics.record_settlement("worker_credit", "skipped")
                self.logger.info(
                    "Worker credit skipped",
                    extra={
                        "booking_id": booking.id,
                        "worker_id": booking.worker_id,
                        "already_credited": existing is not None,
                    },
                )
                return None

            txn = self.ledger.credit_worker(
                booking.worker_id,
                amount,
                WalletTransactionType.BOOKING_EARNING,
                f"Payment for Booking #{short_ref(booking.id)}",
                booking_id=booking.id,
            )
        prometheus_metrics.record_settlement("worker_credit", "applied")
        self.logger.info(
            "Worker credited for booking",
            extra={"booking_id": booking.id, "worker_id": booking.worker_id, "amount": str(amount)},
        )
        return txn

    # Refunds

    def refund_booking(self, booking: Booking) -> List[WalletTransaction]:
        """
        Return what the customer paid for a cancelled booking to their wallet.

        The wallet-funded and externally-paid portions are credited as two
        separate transactions. Re-running the refund for the same booking
        appends nothing.
        """
        with booking_lock_sync(booking.id):
            if booking.payment_status not in (PaymentStatus.PAID.value, PaymentStatus.PARTIAL.value):
                return []

            wallet_part = to_money(booking.wallet_amount_used or 0)
            external_part = to_money(booking.amount_paid or 0) - wallet_part
            if wallet_part + external_part <= ZERO:
                return []
            ref = short_ref(booking.id)
            portions = [
                (
                    WalletTransactionType.REFUND_WALLET,
                    wallet_part,
                    f"Refund for cancelled booking #{ref}",
                ),
                (
                    WalletTransactionType.REFUND_EXTERNAL,
                    external_part,
                    f"Refund (Online Payment) for cancelled booking #{ref}",
                ),
            ]

            refunds: List[WalletTransaction] = []
            for txn_type, amount, note in portions:
                if amount <= ZERO:
                    continue
                if self.ledger.find_customer_transaction(booking_id=booking.id, txn_type=txn_type):
                    prometheus_metrics.record_settlement("refund", "skipped")
                    continue
                refunds.append(
                    self.ledger.credit_customer(
                        booking.customer_id, amount, txn_type, note, booking_id=booking.id
                    )
                )
                prometheus_metrics.record_settlement("refund", "applied")

            booking.payment_status = PaymentStatus.REFUNDED.value
            self.db.flush()

        if refunds:
            total = sum((to_money(t.amount) for t in refunds), ZERO)
            self.notifications.dispatch(
                recipient_id=booking.customer_id,
                recipient_model="customer",
                notification_type="wallet",
                title="Refund Processed",
                message=f"₹{total} has been refunded to your wallet for booking #{ref}.",
                payload={"booking_id": booking.id, "amount": str(total)},
            )
            self.logger.info(
                "Booking refunded",
                extra={"booking_id": booking.id, "customer_id": booking.customer_id, "amount": str(total)},
            )
        return refunds

    # Payouts

    @BaseService.measure_operation("request_payout")
    def request_payout(self, worker_id: str, amount: Decimal) -> WithdrawalRequest:
        """
        Reserve ``amount`` from the worker wallet as a pending withdrawal.

        Raises:
            ValidationException: non-positive amount
            StateConflictException: a pending request exists
            InsufficientBalanceException: balance below the amount
        """
        value = to_money(amount)
        if value <= ZERO:
            raise ValidationException("Invalid amount", code="INVALID_AMOUNT")

        with wallet_lock_sync(WORKER_LEDGER, worker_id):
            with self.transaction():
                if self.withdrawal_repository.get_pending_for_worker(worker_id) is not None:
                    raise StateConflictException(
                        "You already have a pending withdrawal request",
                        code="WITHDRAWAL_PENDING",
                    )
                request = self.withdrawal_repository.create(worker_id=worker_id, amount=value)
                self.ledger.debit_worker(
                    worker_id,
                    value,
                    WalletTransactionType.WITHDRAWAL,
                    "Withdrawal Request",
                    withdrawal_id=request.id,
                )

        prometheus_metrics.inc_payout_request("requested")
        self.log_operation("request_payout", worker_id=worker_id, withdrawal_id=request.id, amount=str(value))
        return request

    def _load_pending(self, withdrawal_id: str) -> WithdrawalRequest:
        request = self.withdrawal_repository.get_by_id(withdrawal_id, for_update=True)
        if request is None:
            raise NotFoundException("Withdrawal request not found", code="WITHDRAWAL_NOT_FOUND")
        if request.status != WithdrawalStatus.PENDING.value:
            raise StateConflictException(
                "Withdrawal request has already been processed",
                code="WITHDRAWAL_PROCESSED",
                details={"status": request.status},
            )
        return request

    def _worker_of(self, withdrawal_id: str) -> str:
        request = self.withdrawal_repository.get_by_id(withdrawal_id)
        if request is None:
            raise NotFoundException("Withdrawal request not found", code="WITHDRAWAL_NOT_FOUND")
        return request.worker_id

    @BaseService.measure_operation("approve_withdrawal")
    def approve_withdrawal(self, withdrawal_id: str, admin_id: str) -> WithdrawalRequest:
        """Mark a pending request disbursed; the reserved debit stands."""
        worker_id = self._worker_of(withdrawal_id)
        with wallet_lock_sync(WORKER_LEDGER, worker_id):
            with self.transaction():
                request = self._load_pending(withdrawal_id)
                request.status = WithdrawalStatus.APPROVED.value
                request.processed_by = admin_id
                request.processed_at = utc_now()
                self.db.flush()
                self.notifications.dispatch(
                    recipient_id=worker_id,
                    recipient_model="worker",
                    notification_type="wallet",
                    title="Withdrawal Approved",
                    message=f"Your withdrawal of ₹{to_money(request.amount)} has been approved.",
                    payload={"withdrawal_id": request.id},
                )

        prometheus_metrics.inc_payout_request("approved")
        self.log_operation("approve_withdrawal", withdrawal_id=withdrawal_id, admin_id=admin_id)
        return request

    @BaseService.measure_operation("reject_withdrawal")
    def reject_withdrawal(self, withdrawal_id: str, admin_id: str, reason: str) -> WithdrawalRequest:
        """Reject a pending request and re-credit the reserved amount."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("Rejection reason is required", code="REASON_REQUIRED")

        worker_id = self._worker_of(withdrawal_id)
        with wallet_lock_sync(WORKER_LEDGER, worker_id):
            with self.transaction():
                request = self._load_pending(withdrawal_id)
                request.status = WithdrawalStatus.REJECTED.value
                request.rejection_reason = reason
                request.processed_by = admin_id
                request.processed_at = utc_now()
                self.ledger.credit_worker(
                    worker_id,
                    request.amount,
                    WalletTransactionType.WITHDRAWAL_REVERSAL,
                    f"Refund: Withdrawal Rejected ({reason})",
                    withdrawal_id=request.id,
                )
                self.notifications.dispatch(
                    recipient_id=worker_id,
                    recipient_model="worker",
                    notification_type="wallet",
                    title="Withdrawal Rejected",
                    message=f"Your withdrawal of ₹{to_money(request.amount)} was rejected: {reason}",
                    payload={"withdrawal_id": request.id},
                )

        prometheus_metrics.inc_payout_request("rejected")
        self.log_operation("reject_withdrawal", withdrawal_id=withdrawal_id, admin_id=admin_id)
        return request

    def list_withdrawals(
        self,
        *,
        status: Optional[str] = None,
        worker_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[WithdrawalRequest]:
        return self.withdrawal_repository.list_requests(
            status=status, worker_id=worker_id, skip=skip, limit=limit
        )
