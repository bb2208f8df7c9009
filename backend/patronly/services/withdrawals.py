"""Withdrawal workflow: creators cash out pending earnings, admins decide."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.config import settings
from patronly.errors import AlreadyDecided, InsufficientBalance, WithdrawalConflict, WithdrawalNotFound
from patronly.models.withdrawal import Withdrawal, WithdrawalStatus
from patronly.services.earnings_ledger import EarningsLedger

logger = logging.getLogger(__name__)


class _OwnerLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


# Serializes withdrawal requests per owner inside this process. Row locks and
# the conditional earnings update cover requests served by other processes.
_owner_locks: Dict[str, _OwnerLock] = {}


@asynccontextmanager
async def owner_lock(owner_id: str):
    """Hold the owner's in-process lock. The entry is dropped once nobody holds or awaits it."""
    entry = _owner_locks.get(owner_id)
    if entry is None:
        entry = _owner_locks[owner_id] = _OwnerLock()
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0:
            del _owner_locks[owner_id]


DECISIONS = (WithdrawalStatus.APPROVED.value, WithdrawalStatus.REJECTED.value)


class WithdrawalService:
    """Creates and decides withdrawals. Each public call is one transaction."""

    def __init__(self, db: AsyncSession, earnings: EarningsLedger | None = None):
        self.db = db
        self.earnings = earnings or EarningsLedger(db)

    async def request_withdrawal(self, owner_id: str) -> Withdrawal:
        """
        Claim the owner's entire pending balance as one withdrawal.

        - Locks the owner's pending earnings
        - Raises InsufficientBalance below MIN_WITHDRAWAL_AMOUNT
        - Inserts the withdrawal and flips exactly the locked earnings to paid
        - Commits both together, or rolls back both
        """
        async with owner_lock(owner_id):
            pending = await self.earnings.lock_pending(owner_id)
            balance = sum((e.amount for e in pending), Decimal("0"))
            minimum = Decimal(settings.MIN_WITHDRAWAL_AMOUNT)

            if balance < minimum:
                await self.db.rollback()
                logger.info(f"Withdrawal refused for owner {owner_id}: balance {balance} below {minimum}")
                raise InsufficientBalance(
                    f"Pending balance {balance} is below the minimum withdrawal of {minimum}"
                )

            try:
                withdrawal = Withdrawal(
                    owner_id=owner_id,
                    amount=balance,
                    status=WithdrawalStatus.PENDING.value,
                )
                self.db.add(withdrawal)
                await self.db.flush()

                flipped = await self.earnings.mark_paid(
                    owner_id, [e.uuid for e in pending], withdrawal.uuid
                )
                if flipped != len(pending):
                    raise WithdrawalConflict()

                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        await self.db.refresh(withdrawal)
        logger.info(
            f"Withdrawal {withdrawal.uuid} created for owner {owner_id}: "
            f"{balance} from {len(pending)} earning(s)"
        )
        return withdrawal

    async def get(self, withdrawal_id: str) -> Optional[Withdrawal]:
        result = await self.db.execute(select(Withdrawal).where(Withdrawal.uuid == withdrawal_id))
        return result.scalar_one_or_none()

    async def decide(
        self,
        withdrawal_id: str,
        outcome: str,
        admin_id: str,
        note: str | None = None,
    ) -> Withdrawal:
        """Approve or reject a pending withdrawal. Decisions are final."""
        if outcome not in DECISIONS:
            raise ValueError(f"Unsupported withdrawal outcome: {outcome}")

        now = datetime.utcnow()
        result = await self.db.execute(
            update(Withdrawal)
            .where(
                Withdrawal.uuid == withdrawal_id,
                Withdrawal.status == WithdrawalStatus.PENDING.value,
            )
            .values(status=outcome, decided_by=admin_id, note=note, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await self.db.rollback()
            withdrawal = await self.get(withdrawal_id)
            if withdrawal is None:
                raise WithdrawalNotFound()
            raise AlreadyDecided(f"Withdrawal {withdrawal_id} is already {withdrawal.status}")

        await self.db.commit()
        withdrawal = await self.get(withdrawal_id)
        await self.db.refresh(withdrawal)
        logger.info(f"Withdrawal {withdrawal_id} {outcome} by admin {admin_id}")
        return withdrawal

    async def history(self, owner_id: str) -> List[Withdrawal]:
        result = await self.db.execute(
            select(Withdrawal)
            .where(Withdrawal.owner_id == owner_id)
            .order_by(desc(Withdrawal.created_at))
        )
        return list(result.scalars().all())

    async def list_all(self, status: str | None = None, skip: int = 0, limit: int = 50) -> List[Withdrawal]:
        query = select(Withdrawal)
        if status:
            query = query.where(Withdrawal.status == status)
        result = await self.db.execute(
            query.order_by(desc(Withdrawal.created_at)).offset(skip).limit(limit)
        )
        return list(result.scalars().all())
