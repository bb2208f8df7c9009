"""Reconciliation orchestrator: checkout, callback and polling converge here.

Checkout creation, gateway callbacks and status polls all end in
``SubscriptionLedger.reconcile``, which activates a reference at most once.
Whichever path gets there first wins; the others find the subscription
already active and change nothing.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from patronly.config import settings
from patronly.errors import (
    AmountBelowFee, AmountMismatch, GatewayError, ReferenceNotFound, SelfSubscription, UnknownReference,
)
from patronly.models.subscription import Subscription, SubscriptionStatus
from patronly.services.earnings_ledger import build_event_bus
from patronly.services.events import EventBus, SubscriptionActivated
from patronly.services.fees import FeeService
from patronly.services.gateways.base import PayerIdentity, PaymentGateway, TransactionStatus
from patronly.services.subscription_ledger import SubscriptionLedger

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    ACTIVATED = "activated"
    ALREADY_ACTIVE = "already_active"
    PENDING = "pending"
    FAILED = "failed"
    UNKNOWN_REFERENCE = "unknown_reference"
    AMOUNT_MISMATCH = "amount_mismatch"


# Outcomes after which polling a reference is pointless
TERMINAL_OUTCOMES = {
    ReconcileOutcome.ACTIVATED,
    ReconcileOutcome.ALREADY_ACTIVE,
    ReconcileOutcome.FAILED,
    ReconcileOutcome.UNKNOWN_REFERENCE,
    ReconcileOutcome.AMOUNT_MISMATCH,
}


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    subscription: Optional[Subscription] = None


@dataclass(frozen=True)
class CheckoutResult:
    checkout_url: str
    reference: str
    subscription_id: str


def mint_reference() -> str:
    """Globally unique payment reference, minted before any gateway call."""
    return f"sub_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class ReconciliationOrchestrator:
    """Drives a subscription from checkout to verified activation.

    Each public method is one unit of work on ``db`` and commits it.
    """

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, events: EventBus | None = None):
        self.db = db
        self.gateway = gateway
        self.events = events or build_event_bus(db)
        self.ledger = SubscriptionLedger(db, self.events)
        self.fees = FeeService(db)

    async def initiate_subscription(
        self,
        payer: PayerIdentity,
        owner_id: str,
        amount: Decimal | None = None,
        callback_url: str | None = None,
    ) -> CheckoutResult:
        """
        Open a pending subscription and a gateway checkout for it.

        - Amount defaults to the creator's configured subscription fee
        - An explicit amount may exceed the fee but never undercut it
        - The pending row is committed before the gateway is contacted
        - On gateway failure the pending row stays; the error is re-raised
        """
        if payer.user_id == owner_id:
            raise SelfSubscription()

        fee = await self.fees.effective_fee(owner_id)
        amount = fee if amount is None else Decimal(amount)
        self.gateway.validate_amount(amount)
        if amount < fee:
            logger.info(f"Checkout refused for owner {owner_id}: amount {amount} below fee {fee}")
            raise AmountBelowFee(f"Amount {amount} is below the subscription fee of {fee}")

        reference = mint_reference()
        currency = settings.PAYMENT_CURRENCY
        subscription = await self.ledger.open_pending(payer.user_id, owner_id, amount, reference, currency)
        await self.db.commit()

        try:
            session = await self.gateway.create_checkout(
                payer,
                amount,
                currency,
                callback_url or f"{settings.FRONTEND_URL}/payment-callback",
                reference,
                metadata={"owner_id": owner_id, "subscription_id": subscription.uuid},
            )
        except GatewayError as e:
            logger.error(
                f"Checkout creation failed for {reference} ({type(e).__name__}); "
                f"pending subscription {subscription.uuid} kept for recovery"
            )
            raise

        logger.info(f"Checkout created for {reference} via {self.gateway.name}")
        return CheckoutResult(
            checkout_url=session.checkout_url,
            reference=reference,
            subscription_id=subscription.uuid,
        )

    async def handle_callback(self, reference: str) -> ReconcileResult:
        """Gateway told us about ``reference``. Never trusts the payload, always re-verifies."""
        return await self._verify_and_reconcile(reference, source="callback")

    async def poll_once(self, reference: str) -> ReconcileResult:
        """One polling attempt. Read-only at the gateway."""
        return await self._verify_and_reconcile(reference, source="poll")

    async def _verify_and_reconcile(self, reference: str, source: str) -> ReconcileResult:
        subscription = await self.ledger.get_by_reference(reference)
        if subscription is None:
            logger.warning(f"{source}: unknown payment reference {reference}, acknowledging without action")
            return ReconcileResult(ReconcileOutcome.UNKNOWN_REFERENCE)

        if subscription.status != SubscriptionStatus.PENDING.value:
            return ReconcileResult(ReconcileOutcome.ALREADY_ACTIVE, subscription)

        try:
            verification = await self.gateway.verify_transaction(reference)
        except ReferenceNotFound:
            logger.info(f"{source}: {reference} not yet known to {self.gateway.name}, still pending")
            return ReconcileResult(ReconcileOutcome.PENDING, subscription)

        if verification.status == TransactionStatus.PENDING:
            return ReconcileResult(ReconcileOutcome.PENDING, subscription)
        if verification.status == TransactionStatus.FAILED:
            logger.info(f"{source}: payment {reference} failed at {self.gateway.name}")
            return ReconcileResult(ReconcileOutcome.FAILED, subscription)

        if verification.currency and verification.currency.upper() != subscription.currency.upper():
            logger.warning(
                f"{source}: currency mismatch for {reference}: gateway {verification.currency}, "
                f"stored {subscription.currency}"
            )

        published_before = len(self.events.published)
        try:
            subscription = await self.ledger.reconcile(reference, verification.amount)
            await self.db.commit()
        except UnknownReference:
            await self.db.rollback()
            logger.warning(f"{source}: reference {reference} vanished during reconcile")
            return ReconcileResult(ReconcileOutcome.UNKNOWN_REFERENCE)
        except AmountMismatch:
            await self.db.rollback()
            # Rollback expired the instance; reload it for the caller
            subscription = await self.ledger.get_by_reference(reference)
            return ReconcileResult(ReconcileOutcome.AMOUNT_MISMATCH, subscription)
        except Exception:
            await self.db.rollback()
            raise

        activated = any(
            isinstance(event, SubscriptionActivated) and event.reference == reference
            for event in self.events.published[published_before:]
        )
        if activated:
            logger.info(f"{source}: activated {reference}")
            return ReconcileResult(ReconcileOutcome.ACTIVATED, subscription)
        return ReconcileResult(ReconcileOutcome.ALREADY_ACTIVE, subscription)
