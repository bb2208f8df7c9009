"""Earning model for tracking creator revenue from subscription payments."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from patronly.database import Base


class EarningStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class Earning(Base):
    """Records the creator's share of one activated subscription.

    Created once per pending -> active transition. ``amount`` is the creator
    share; ``percentage_rate`` freezes the split that applied at activation.
    """
    __tablename__ = "earnings"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("subscriptions.uuid"), nullable=False, unique=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    percentage_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EarningStatus.PENDING.value)
    withdrawal_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("withdrawals.uuid"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    subscription = relationship("Subscription", foreign_keys=[subscription_id])

    __table_args__ = (
        Index("idx_earning_owner_status", "owner_id", "status"),
        Index("idx_earning_withdrawal_id", "withdrawal_id"),
    )

    def __repr__(self) -> str:
        return f"<Earning(uuid={self.uuid}, owner_id={self.owner_id}, amount={self.amount}, status={self.status})>"
