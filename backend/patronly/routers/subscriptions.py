"""Subscriptions router: checkout, access checks and subscriber history."""
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.database import get_db
from patronly.config import settings
from patronly.rate_limit import limiter
from patronly.auth.dependencies import get_identity
from patronly.auth.security import Identity
from patronly.models.subscription import Subscription
from patronly.schemas.subscriptions import (
    SubscriptionCreateRequest, CheckoutResponse, SubscriptionResponse,
    SubscriptionListResponse, AccessResponse,
)
from patronly.schemas.fees import EffectiveFeeResponse
from patronly.services.earnings_ledger import build_event_bus
from patronly.services.fees import FeeService
from patronly.services.gateways import PayerIdentity, PaymentGateway, get_gateway
from patronly.services.orchestrator import ReconciliationOrchestrator
from patronly.services.subscription_ledger import SubscriptionLedger

logger = logging.getLogger(__name__)

router = APIRouter()


def subscription_response(subscription: Subscription, now: datetime | None = None) -> SubscriptionResponse:
    """Serialize a subscription with its derived (read-time) status."""
    response = SubscriptionResponse.model_validate(subscription)
    return response.model_copy(update={"status": subscription.effective_status(now)})


@router.post("/api/subscriptions", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT)
async def subscribe(
    request_data: SubscriptionCreateRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Start a subscription to a creator.

    - Opens a pending subscription keyed by a freshly minted reference
    - Creates a checkout session at the payment gateway
    - Starts server-side status polling for the reference when enabled
    """
    orchestrator = ReconciliationOrchestrator(db, gateway)
    checkout = await orchestrator.initiate_subscription(
        PayerIdentity(user_id=identity.user_id, email=identity.email, name=identity.name),
        request_data.owner_id,
        request_data.amount,
    )

    if settings.SERVER_SIDE_POLLING:
        request.app.state.pollers.start(checkout.reference)

    return CheckoutResponse(
        checkout_url=checkout.checkout_url,
        reference=checkout.reference,
        subscription_id=checkout.subscription_id,
    )


@router.get("/api/subscriptions/me", response_model=SubscriptionListResponse)
async def list_my_subscriptions(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's subscriptions, newest first, with derived status."""
    ledger = SubscriptionLedger(db, build_event_bus(db))
    subscriptions = await ledger.list_for_subscriber(identity.user_id)
    now = datetime.utcnow()
    return SubscriptionListResponse(
        items=[subscription_response(s, now) for s in subscriptions],
        total=len(subscriptions),
    )


@router.get("/api/subscriptions/access/{owner_id}", response_model=AccessResponse)
async def check_access(
    owner_id: str,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Whether the caller holds an active, unexpired subscription to ``owner_id``."""
    if identity.user_id == owner_id:
        return AccessResponse(owner_id=owner_id, has_access=True)

    ledger = SubscriptionLedger(db, build_event_bus(db))
    subscription = await ledger.query_active_for(identity.user_id, owner_id)
    return AccessResponse(
        owner_id=owner_id,
        has_access=subscription is not None,
        subscription=subscription_response(subscription) if subscription else None,
    )


@router.get("/api/subscription-fees/{creator_id}", response_model=EffectiveFeeResponse)
async def get_effective_fee(
    creator_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Subscription price currently charged for a creator."""
    amount = await FeeService(db).effective_fee(creator_id)
    return EffectiveFeeResponse(creator_id=creator_id, amount=amount, currency=settings.PAYMENT_CURRENCY)
