"""Subscription ledger: opens, reconciles and queries subscriptions.

The ledger is the only writer of ``Subscription`` rows. Methods flush but do
not commit; the caller owns the transaction.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.config import settings
from patronly.errors import AmountMismatch, DuplicateReference, UnknownReference
from patronly.models.subscription import Subscription, SubscriptionStatus
from patronly.services.events import EventBus, SubscriptionActivated

logger = logging.getLogger(__name__)


class SubscriptionLedger:
    """Owns the pending -> active transition of subscriptions."""

    def __init__(self, db: AsyncSession, events: EventBus):
        self.db = db
        self.events = events

    async def get_by_reference(self, reference: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.payment_reference == reference)
        )
        return result.scalar_one_or_none()

    async def open_pending(
        self,
        subscriber_id: str,
        owner_id: str,
        amount: Decimal,
        reference: str,
        currency: str | None = None,
    ) -> Subscription:
        """Create a pending subscription keyed by ``reference``.

        Raises DuplicateReference if the reference has ever been used.
        """
        if await self.get_by_reference(reference) is not None:
            raise DuplicateReference(f"Payment reference {reference} already exists")

        subscription = Subscription(
            subscriber_id=subscriber_id,
            owner_id=owner_id,
            amount_paid=Decimal(amount),
            currency=currency or settings.PAYMENT_CURRENCY,
            payment_reference=reference,
            status=SubscriptionStatus.PENDING.value,
        )
        self.db.add(subscription)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same reference
            await self.db.rollback()
            raise DuplicateReference(f"Payment reference {reference} already exists")

        logger.info(
            f"Opened pending subscription {subscription.uuid} "
            f"(subscriber={subscriber_id}, owner={owner_id}, amount={amount}, reference={reference})"
        )
        return subscription

    async def reconcile(
        self,
        reference: str,
        verified_amount: Decimal | None,
        now: datetime | None = None,
    ) -> Subscription:
        """Activate the subscription for ``reference`` at most once.

        Returns the subscription in its current state. Only the call whose
        conditional update moves the row out of ``pending`` publishes
        SubscriptionActivated; every other call returns the row unchanged.
        """
        subscription = await self.get_by_reference(reference)
        if subscription is None:
            raise UnknownReference(f"No subscription for payment reference {reference}")

        if subscription.status != SubscriptionStatus.PENDING.value:
            logger.info(f"Subscription {subscription.uuid} already {subscription.status}, skipping reconcile")
            return subscription

        if verified_amount is not None and Decimal(verified_amount) != subscription.amount_paid:
            message = (
                f"Amount mismatch for {reference}: gateway reported {verified_amount}, "
                f"stored {subscription.amount_paid}"
            )
            if settings.AMOUNT_MISMATCH_POLICY == "reject":
                logger.error(f"{message}; rejecting activation")
                raise AmountMismatch(message)
            logger.warning(f"{message}; activating with stored amount")

        now = now or datetime.utcnow()
        expires_at = now + timedelta(days=settings.SUBSCRIPTION_VALIDITY_DAYS)

        # Compare-and-set: only a row still pending can be activated
        result = await self.db.execute(
            update(Subscription)
            .where(
                Subscription.uuid == subscription.uuid,
                Subscription.status == SubscriptionStatus.PENDING.value,
            )
            .values(
                status=SubscriptionStatus.ACTIVE.value,
                activated_at=now,
                expires_at=expires_at,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(subscription)

        if result.rowcount != 1:
            logger.info(f"Subscription {subscription.uuid} was activated concurrently, skipping")
            return subscription

        logger.info(f"Activated subscription {subscription.uuid} until {expires_at.isoformat()}")
        await self.events.publish(
            SubscriptionActivated(
                subscription_id=subscription.uuid,
                owner_id=subscription.owner_id,
                amount=subscription.amount_paid,
                reference=reference,
            )
        )
        return subscription

    async def query_active_for(
        self,
        subscriber_id: str,
        owner_id: str,
        now: datetime | None = None,
    ) -> Optional[Subscription]:
        """Most recently activated, unexpired subscription for the pair, if any."""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.subscriber_id == subscriber_id,
                Subscription.owner_id == owner_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.expires_at > now,
            )
            .order_by(desc(Subscription.activated_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_subscriber(self, subscriber_id: str) -> List[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.subscriber_id == subscriber_id)
            .order_by(desc(Subscription.created_at))
        )
        return list(result.scalars().all())

    async def list_for_owner(self, owner_id: str) -> List[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.owner_id == owner_id)
            .order_by(desc(Subscription.created_at))
        )
        return list(result.scalars().all())

    async def expire_lapsed(self, now: datetime | None = None) -> int:
        """Eagerly mark active subscriptions past ``expires_at`` as expired.

        Readers never rely on this; it only keeps the stored status tidy.
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            update(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.expires_at <= now,
            )
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def stale_pending(self, older_than: datetime, newer_than: datetime) -> List[str]:
        """References of pending subscriptions created inside the given window."""
        result = await self.db.execute(
            select(Subscription.payment_reference).where(
                Subscription.status == SubscriptionStatus.PENDING.value,
                Subscription.created_at < older_than,
                Subscription.created_at > newer_than,
            )
        )
        return list(result.scalars().all())
