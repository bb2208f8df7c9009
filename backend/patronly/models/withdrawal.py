"""Withdrawal model for creator payout requests."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4
from sqlalchemy import String, Numeric, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from patronly.database import Base


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Withdrawal(Base):
    """A creator's request to cash out their pending earnings.

    Decided once by an administrator; approved and rejected are terminal.
    """

    __tablename__ = "withdrawals"

    # Primary key
    uuid: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WithdrawalStatus.PENDING.value)

    # Decision
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Indexes
    __table_args__ = (
        Index("idx_withdrawal_owner_id", "owner_id"),
        Index("idx_withdrawal_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Withdrawal(uuid={self.uuid}, owner_id={self.owner_id}, amount={self.amount}, status={self.status})>"
