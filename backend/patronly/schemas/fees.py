"""Schemas for subscription fee configuration."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class SubscriptionFeeUpdate(BaseModel):
    amount: Decimal = Field(..., gt=0)


class SubscriptionFeeResponse(BaseModel):
    creator_id: Optional[str] = None
    is_global: bool
    amount: float
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EffectiveFeeResponse(BaseModel):
    creator_id: str
    amount: float
    currency: str
