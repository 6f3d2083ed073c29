# backend/homeserve/routes/v1/admin.py
"""
Admin routes - API v1

Endpoints under /api/v1/admin:
    GET /withdrawals - Payout requests, optionally filtered by status
    PUT /withdrawals/{withdrawal_id}/approve - Approve a pending payout
    PUT /withdrawals/{withdrawal_id}/reject - Reject and re-credit
    GET /config/fees, PUT /config/fees - Fee configuration
    GET /config/coins, PUT /config/coins - Coin configuration
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_config_service, get_settlement_service, require_admin
from ...core.enums import WithdrawalStatus
from ...core.exceptions import DomainException
from ...principal import Principal
from ...schemas.pricing import CoinConfig, CoinConfigUpdate, FeeConfig, FeeConfigUpdate
from ...schemas.wallet import WithdrawalRejectRequest, WithdrawalResponse
from ...services.config_service import ConfigService
from ...services.settlement_service import SettlementService
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-v1"])


@router.get("/withdrawals", response_model=List[WithdrawalResponse])
async def list_withdrawals(
    status_filter: Optional[WithdrawalStatus] = Query(None, alias="status"),
    worker_id: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: Principal = Depends(require_admin),
    settlement: SettlementService = Depends(get_settlement_service),
) -> List[WithdrawalResponse]:
    requests = await asyncio.to_thread(
        settlement.list_withdrawals,
        status=status_filter.value if status_filter else None,
        worker_id=worker_id,
        skip=skip,
        limit=limit,
    )
    return [WithdrawalResponse.model_validate(r) for r in requests]


@router.put("/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(
    withdrawal_id: str,
    current_user: Principal = Depends(require_admin),
    settlement: SettlementService = Depends(get_settlement_service),
) -> WithdrawalResponse:
    try:
        request = await asyncio.to_thread(
            settlement.approve_withdrawal, withdrawal_id, current_user.id
        )
        return WithdrawalResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    withdrawal_id: str,
    payload: WithdrawalRejectRequest,
    current_user: Principal = Depends(require_admin),
    settlement: SettlementService = Depends(get_settlement_service),
) -> WithdrawalResponse:
    try:
        request = await asyncio.to_thread(
            settlement.reject_withdrawal, withdrawal_id, current_user.id, payload.reason
        )
        return WithdrawalResponse.model_validate(request)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/config/fees", response_model=FeeConfig)
async def get_fee_config(
    current_user: Principal = Depends(require_admin),
    config_service: ConfigService = Depends(get_config_service),
) -> FeeConfig:
    return await asyncio.to_thread(config_service.get_fee_config)


@router.put("/config/fees", response_model=FeeConfig)
async def update_fee_config(
    payload: FeeConfigUpdate,
    current_user: Principal = Depends(require_admin),
    config_service: ConfigService = Depends(get_config_service),
) -> FeeConfig:
    try:
        return await asyncio.to_thread(config_service.update_fee_config, payload)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/config/coins", response_model=CoinConfig)
async def get_coin_config(
    current_user: Principal = Depends(require_admin),
    config_service: ConfigService = Depends(get_config_service),
) -> CoinConfig:
    return await asyncio.to_thread(config_service.get_coin_config)


@router.put("/config/coins", response_model=CoinConfig)
async def update_coin_config(
    payload: CoinConfigUpdate,
    current_user: Principal = Depends(require_admin),
    config_service: ConfigService = Depends(get_config_service),
) -> CoinConfig:
    try:
        return await asyncio.to_thread(config_service.update_coin_config, payload)
    except DomainException as e:
        handle_domain_exception(e)
