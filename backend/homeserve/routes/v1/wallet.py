# backend/homeserve/routes/v1/wallet.py
"""
Wallet routes - API v1

Endpoints under /api/v1/wallet:
    GET /me - Customer wallet and coin balances with recent transactions
    GET /worker - Worker wallet with recent transactions
    POST /worker/withdrawals - Request a payout
    GET /worker/withdrawals - Worker's own payout requests
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, Query, status

from ...api.dependencies import (
    get_ledger_service,
    get_settlement_service,
    require_customer,
    require_worker,
)
from ...core.exceptions import DomainException
from ...principal import Principal
from ...schemas.wallet import (
    CoinTransactionResponse,
    CustomerWalletResponse,
    PayoutRequest,
    WalletTransactionResponse,
    WithdrawalResponse,
    WorkerWalletResponse,
    WorkerWalletTransactionResponse,
)
from ...services.ledger_service import LedgerService
from ...services.settlement_service import SettlementService
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wallet-v1"])


@router.get("/me", response_model=CustomerWalletResponse)
async def get_customer_wallet(
    limit: int = Query(50, ge=1, le=200),
    current_user: Principal = Depends(require_customer),
    ledger: LedgerService = Depends(get_ledger_service),
) -> CustomerWalletResponse:
    def _load() -> CustomerWalletResponse:
        return CustomerWalletResponse(
            balance=ledger.customer_balance(current_user.id),
            coin_balance=ledger.coin_balance(current_user.id),
            transactions=[
                WalletTransactionResponse.model_validate(t)
                for t in ledger.customer_transactions(current_user.id, limit)
            ],
            coin_transactions=[
                CoinTransactionResponse.model_validate(t)
                for t in ledger.coin_transactions(current_user.id, limit)
            ],
        )

    return await asyncio.to_thread(_load)


@router.get("/worker", response_model=WorkerWalletResponse)
async def get_worker_wallet(
    limit: int = Query(50, ge=1, le=200),
    current_user: Principal = Depends(require_worker),
    ledger: LedgerService = Depends(get_ledger_service),
) -> WorkerWalletResponse:
    def _load() -> WorkerWalletResponse:
        return WorkerWalletResponse(
            balance=ledger.worker_balance(current_user.id),
            transactions=[
                WorkerWalletTransactionResponse.model_validate(t)
                for t in ledger.worker_transactions(current_user.id, limit)
            ],
        )

    return await asyncio.to_thread(_load)


@router.post(
    "/worker/withdrawals",
    response_model=WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_payout(
    payload: PayoutRequest,
    current_user: Principal = Depends(require_worker),
    settlement: SettlementService = Depends(get_settlement_service),
) -> WithdrawalResponse:
    try:
        request = await asyncio.to_thread(settlement.request_payout, current_user.id, payload.amount)
        return WithdrawalResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/worker/withdrawals", response_model=List[WithdrawalResponse])
async def list_own_withdrawals(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: Principal = Depends(require_worker),
    settlement: SettlementService = Depends(get_settlement_service),
) -> List[WithdrawalResponse]:
    requests = await asyncio.to_thread(
        settlement.list_withdrawals, worker_id=current_user.id, skip=skip, limit=limit
    )
    return [WithdrawalResponse.model_validate(r) for r in requests]
