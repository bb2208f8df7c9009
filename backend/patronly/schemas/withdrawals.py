"""Schemas for withdrawal endpoints."""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class WithdrawalResponse(BaseModel):
    uuid: str
    owner_id: str
    amount: float
    status: str
    decided_by: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WithdrawalListResponse(BaseModel):
    items: List[WithdrawalResponse]
    total: int


class WithdrawalDecisionRequest(BaseModel):
    """Admin decision on a pending withdrawal."""
    outcome: Literal["approved", "rejected"]
    note: Optional[str] = Field(None, max_length=1000)
