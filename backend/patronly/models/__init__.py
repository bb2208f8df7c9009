"""Database models for the Patronly API."""
from patronly.models.subscription import Subscription, SubscriptionStatus
from patronly.models.earning import Earning, EarningStatus
from patronly.models.withdrawal import Withdrawal, WithdrawalStatus
from patronly.models.subscription_fee import SubscriptionFee

__all__ = [
    "Subscription",
    "SubscriptionStatus",
    "Earning",
    "EarningStatus",
    "Withdrawal",
    "WithdrawalStatus",
    "SubscriptionFee",
]
