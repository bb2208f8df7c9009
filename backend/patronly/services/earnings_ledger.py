"""Earnings ledger: creator revenue derived from activated subscriptions."""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import select, update, func, case, desc
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.config import settings
from patronly.models.earning import Earning, EarningStatus
from patronly.services.events import EventBus, SubscriptionActivated

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def current_creator_rate() -> Decimal:
    """Revenue share credited to creators for activations happening now."""
    return Decimal(settings.CREATOR_REVENUE_SHARE)


def creator_share(gross: Decimal, rate: Decimal) -> Decimal:
    """Creator's cut of a gross payment, rounded to the currency's minor unit."""
    return (Decimal(gross) * Decimal(rate)).quantize(CENTS, rounding=ROUND_HALF_UP)


class EarningsLedger:
    """Records and aggregates creator earnings.

    Methods flush but do not commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession, rate_provider: Callable[[], Decimal] = current_creator_rate):
        self.db = db
        self.rate_provider = rate_provider

    async def on_subscription_activated(self, event: SubscriptionActivated) -> None:
        """Event handler: book the creator's share at the rate in force right now."""
        await self.record_from_activation(event, self.rate_provider())

    async def record_from_activation(self, event: SubscriptionActivated, rate: Decimal) -> Optional[Earning]:
        """Create the pending Earning for an activation.

        Idempotent on subscription id: a redelivered event returns None and
        writes nothing. The unique constraint on ``subscription_id`` backs this up.
        """
        rate = Decimal(rate)
        if rate <= 0 or rate > 1:
            raise ValueError(f"Revenue share must be in (0, 1], got {rate}")

        existing = await self.db.execute(
            select(Earning.uuid).where(Earning.subscription_id == event.subscription_id)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info(f"Earning for subscription {event.subscription_id} already recorded, skipping")
            return None

        earning = Earning(
            owner_id=event.owner_id,
            subscription_id=event.subscription_id,
            gross_amount=Decimal(event.amount),
            amount=creator_share(event.amount, rate),
            percentage_rate=rate,
            status=EarningStatus.PENDING.value,
        )
        self.db.add(earning)
        await self.db.flush()

        logger.info(
            f"Recorded earning {earning.uuid} for owner {event.owner_id}: "
            f"{earning.amount} of {event.amount} at rate {rate}"
        )
        return earning

    async def pending_balance(self, owner_id: str) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Earning.amount), 0)).where(
                Earning.owner_id == owner_id,
                Earning.status == EarningStatus.PENDING.value,
            )
        )
        return Decimal(result.scalar() or 0)

    async def lock_pending(self, owner_id: str) -> List[Earning]:
        """Pending earnings of the owner, row-locked for the rest of the transaction."""
        result = await self.db.execute(
            select(Earning)
            .where(
                Earning.owner_id == owner_id,
                Earning.status == EarningStatus.PENDING.value,
            )
            .order_by(Earning.created_at)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def mark_paid(
        self,
        owner_id: str,
        earning_ids: Sequence[str],
        withdrawal_id: str,
        now: datetime | None = None,
    ) -> int:
        """Flip the given earnings from pending to paid and tie them to a withdrawal.

        Only rows that are still pending are touched. Returns the number of
        rows flipped so the caller can detect a concurrent claim.
        """
        if not earning_ids:
            return 0
        now = now or datetime.utcnow()
        result = await self.db.execute(
            update(Earning)
            .where(
                Earning.owner_id == owner_id,
                Earning.uuid.in_(list(earning_ids)),
                Earning.status == EarningStatus.PENDING.value,
            )
            .values(status=EarningStatus.PAID.value, withdrawal_id=withdrawal_id, paid_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def history(self, owner_id: str) -> List[Earning]:
        result = await self.db.execute(
            select(Earning)
            .where(Earning.owner_id == owner_id)
            .order_by(desc(Earning.created_at))
        )
        return list(result.scalars().all())

    async def list_all(self, skip: int = 0, limit: int = 50) -> List[Earning]:
        result = await self.db.execute(
            select(Earning).order_by(desc(Earning.created_at)).offset(skip).limit(limit)
        )
        return list(result.scalars().all())

    async def count_all(self) -> int:
        result = await self.db.execute(select(func.count(Earning.uuid)))
        return result.scalar() or 0

    async def totals_by_owner(self) -> List[Dict]:
        """Lifetime, pending and paid earnings per owner (admin aggregate)."""
        pending_amount = case((Earning.status == EarningStatus.PENDING.value, Earning.amount), else_=0)
        paid_amount = case((Earning.status == EarningStatus.PAID.value, Earning.amount), else_=0)
        result = await self.db.execute(
            select(
                Earning.owner_id,
                func.sum(Earning.amount),
                func.sum(pending_amount),
                func.sum(paid_amount),
                func.count(Earning.uuid),
            )
            .group_by(Earning.owner_id)
            .order_by(desc(func.sum(Earning.amount)))
        )
        return [
            {
                "owner_id": owner_id,
                "total_earned": Decimal(total or 0),
                "pending": Decimal(pending or 0),
                "paid": Decimal(paid or 0),
                "payment_count": count,
            }
            for owner_id, total, pending, paid, count in result.all()
        ]

    async def platform_totals(self) -> Dict[str, Decimal]:
        """Gross revenue, creator share and platform share across all owners."""
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(Earning.gross_amount), 0),
                func.coalesce(func.sum(Earning.amount), 0),
            )
        )
        gross, creator = result.one()
        gross = Decimal(gross or 0)
        creator = Decimal(creator or 0)
        return {
            "gross_revenue": gross,
            "creator_earnings": creator,
            "platform_revenue": gross - creator,
        }


def build_event_bus(db: AsyncSession) -> EventBus:
    """Event bus with the earnings ledger subscribed to activations."""
    bus = EventBus()
    bus.subscribe(SubscriptionActivated, EarningsLedger(db).on_subscription_activated)
    return bus
