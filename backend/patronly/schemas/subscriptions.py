"""Pydantic schemas for subscription and payment endpoints."""
from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class SubscriptionCreateRequest(BaseModel):
    """Schema for subscribing to a creator."""
    owner_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the creator's subscription fee; may not be lower")


class CheckoutResponse(BaseModel):
    """Where to send the subscriber to pay."""
    checkout_url: str
    reference: str
    subscription_id: str


class SubscriptionResponse(BaseModel):
    """Schema for subscription detail response. ``status`` is the derived status."""
    uuid: str
    subscriber_id: str
    owner_id: str
    amount_paid: float
    currency: str
    payment_reference: str
    status: str
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SubscriptionListResponse(BaseModel):
    items: list[SubscriptionResponse]
    total: int


class AccessResponse(BaseModel):
    """Whether the caller currently has access to a creator's gated content."""
    owner_id: str
    has_access: bool
    subscription: Optional[SubscriptionResponse] = None


class PaymentVerifyRequest(BaseModel):
    reference: str = Field(..., min_length=1)


class PaymentStatusResponse(BaseModel):
    """Result of a verification attempt for one payment reference."""
    reference: str
    outcome: str
    status: Optional[str] = None
    expires_at: Optional[datetime] = None
