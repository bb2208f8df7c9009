"""Admin endpoints for withdrawals, earnings and subscription fees."""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.database import get_db
from patronly.config import settings
from patronly.auth.dependencies import admin_required
from patronly.auth.security import Identity
from patronly.schemas.earnings import (
    EarningListResponse, EarningResponse, EarningsSummaryResponse, OwnerEarningsSummary,
)
from patronly.schemas.fees import SubscriptionFeeResponse, SubscriptionFeeUpdate
from patronly.schemas.withdrawals import (
    WithdrawalDecisionRequest, WithdrawalListResponse, WithdrawalResponse,
)
from patronly.services.earnings_ledger import EarningsLedger
from patronly.services.fees import FeeService
from patronly.services.withdrawals import WithdrawalService

router = APIRouter()


@router.get("/withdrawals", response_model=WithdrawalListResponse)
async def list_withdrawals(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """List withdrawals across all creators, optionally filtered by status."""
    withdrawals = await WithdrawalService(db).list_all(status=status, skip=skip, limit=limit)
    return WithdrawalListResponse(
        items=[WithdrawalResponse.model_validate(w) for w in withdrawals],
        total=len(withdrawals),
    )


@router.post("/withdrawals/{withdrawal_id}/decision", response_model=WithdrawalResponse)
async def decide_withdrawal(
    withdrawal_id: str,
    request_data: WithdrawalDecisionRequest,
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """
    Approve or reject a pending withdrawal.

    - 409 if the withdrawal was already decided
    - Money movement after approval happens outside this service
    """
    return await WithdrawalService(db).decide(
        withdrawal_id, request_data.outcome, admin.user_id, request_data.note
    )


@router.get("/earnings", response_model=EarningListResponse)
async def list_earnings(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """List earnings across all creators (newest first)."""
    ledger = EarningsLedger(db)
    earnings = await ledger.list_all(skip=skip, limit=limit)
    return EarningListResponse(
        items=[EarningResponse.model_validate(e) for e in earnings],
        total=await ledger.count_all(),
    )


@router.get("/earnings/summary", response_model=EarningsSummaryResponse)
async def earnings_summary(
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """Platform revenue totals plus per-creator aggregates."""
    ledger = EarningsLedger(db)
    totals = await ledger.platform_totals()
    by_owner = await ledger.totals_by_owner()
    return EarningsSummaryResponse(
        **totals,
        by_owner=[OwnerEarningsSummary(**row) for row in by_owner],
    )


@router.get("/subscription-fees", response_model=SubscriptionFeeResponse)
async def get_global_fee(
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """Global subscription fee, or the built-in default when none is configured."""
    fee = await FeeService(db).get_global()
    if fee is None:
        return SubscriptionFeeResponse(is_global=True, amount=settings.DEFAULT_SUBSCRIPTION_FEE)
    return fee


@router.put("/subscription-fees", response_model=SubscriptionFeeResponse)
async def set_global_fee(
    request_data: SubscriptionFeeUpdate,
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """Set the platform-wide subscription fee."""
    return await FeeService(db).set_global(request_data.amount)


@router.put("/subscription-fees/{creator_id}", response_model=SubscriptionFeeResponse)
async def set_creator_fee(
    creator_id: str,
    request_data: SubscriptionFeeUpdate,
    admin: Identity = Depends(admin_required),
    db: AsyncSession = Depends(get_db)
):
    """Override the subscription fee for one creator."""
    return await FeeService(db).set_for_creator(creator_id, request_data.amount)
