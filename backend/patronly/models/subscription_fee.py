"""Subscription fee configuration (global default and per-creator overrides)."""
from datetime import datetime
from decimal import Decimal
from uuid import uuid4
from sqlalchemy import String, Numeric, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from patronly.database import Base


class SubscriptionFee(Base):
    """Price a subscriber pays for one validity window.

    Either ``is_global`` is set (platform default) or ``creator_id`` names the
    creator the fee applies to.
    """

    __tablename__ = "subscription_fees"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    creator_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        scope = "global" if self.is_global else self.creator_id
        return f"<SubscriptionFee(scope={scope}, amount={self.amount})>"
