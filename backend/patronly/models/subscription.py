"""Subscription model: one subscriber's paid access to one creator."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4
from sqlalchemy import String, Numeric, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from patronly.database import Base


class SubscriptionStatus(str, Enum):
    """Stored subscription states.

    ``expired`` is normally derived at read time from ``expires_at``; the
    expiry sweep may also write it.
    """
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


class Subscription(Base):
    """Subscription opened at checkout and activated by payment reconciliation."""

    __tablename__ = "subscriptions"

    # Primary key
    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Parties (opaque identity-provider ids)
    subscriber_id: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Payment info
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="NGN")
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SubscriptionStatus.PENDING.value)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Indexes
    __table_args__ = (
        Index("idx_subscription_pair", "subscriber_id", "owner_id"),
        Index("idx_subscription_owner_id", "owner_id"),
        Index("idx_subscription_status", "status"),
    )

    def effective_status(self, now: datetime | None = None) -> str:
        """Status as seen by readers: active rows past ``expires_at`` read as expired."""
        now = now or datetime.utcnow()
        if (
            self.status == SubscriptionStatus.ACTIVE.value
            and self.expires_at is not None
            and self.expires_at <= now
        ):
            return SubscriptionStatus.EXPIRED.value
        return self.status

    def __repr__(self) -> str:
        return f"<Subscription(uuid={self.uuid}, reference={self.payment_reference}, status={self.status})>"
