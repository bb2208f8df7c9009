"""Subscription fee configuration: global default with per-creator overrides."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.config import settings
from patronly.models.subscription_fee import SubscriptionFee

logger = logging.getLogger(__name__)


class FeeService:
    """Resolves what a subscriber pays for a creator: creator row, then global row, then default."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_global(self) -> Optional[SubscriptionFee]:
        result = await self.db.execute(select(SubscriptionFee).where(SubscriptionFee.is_global.is_(True)))
        return result.scalars().first()

    async def get_for_creator(self, creator_id: str) -> Optional[SubscriptionFee]:
        result = await self.db.execute(select(SubscriptionFee).where(SubscriptionFee.creator_id == creator_id))
        return result.scalar_one_or_none()

    async def effective_fee(self, creator_id: str) -> Decimal:
        fee = await self.get_for_creator(creator_id)
        if fee is None:
            fee = await self.get_global()
        if fee is None:
            return Decimal(settings.DEFAULT_SUBSCRIPTION_FEE)
        return Decimal(fee.amount)

    async def set_global(self, amount: Decimal) -> SubscriptionFee:
        fee = await self.get_global()
        if fee is None:
            fee = SubscriptionFee(is_global=True, amount=amount)
            self.db.add(fee)
        else:
            fee.amount = amount
            fee.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(fee)
        logger.info(f"Global subscription fee set to {amount}")
        return fee

    async def set_for_creator(self, creator_id: str, amount: Decimal) -> SubscriptionFee:
        fee = await self.get_for_creator(creator_id)
        if fee is None:
            fee = SubscriptionFee(creator_id=creator_id, is_global=False, amount=amount)
            self.db.add(fee)
        else:
            fee.amount = amount
            fee.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(fee)
        logger.info(f"Subscription fee for creator {creator_id} set to {amount}")
        return fee
