"""Schemas for creator earnings endpoints."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class EarningResponse(BaseModel):
    """Schema for a single earning."""

    uuid: str
    owner_id: str
    subscription_id: str
    amount: float
    gross_amount: float
    percentage_rate: float
    status: str
    withdrawal_id: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EarningListResponse(BaseModel):
    items: List[EarningResponse]
    total: int


class PendingBalanceResponse(BaseModel):
    owner_id: str
    pending_balance: float
    minimum_withdrawal: float
    can_withdraw: bool


class OwnerEarningsSummary(BaseModel):
    """Per-owner earnings aggregate for admins."""
    owner_id: str
    total_earned: float
    pending: float
    paid: float
    payment_count: int


class EarningsSummaryResponse(BaseModel):
    gross_revenue: float
    creator_earnings: float
    platform_revenue: float
    by_owner: List[OwnerEarningsSummary]
