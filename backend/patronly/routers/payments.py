"""Payments router: status polling, manual verification and gateway webhooks."""
import json
import logging
import stripe
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.database import get_db
from patronly.config import settings
from patronly.rate_limit import limiter
from patronly.auth.dependencies import get_identity
from patronly.auth.security import Identity
from patronly.errors import GatewayRejected
from patronly.schemas.subscriptions import PaymentStatusResponse, PaymentVerifyRequest
from patronly.services.gateways import FlutterwaveGateway, PaymentGateway, StripeGateway, get_gateway
from patronly.services.earnings_ledger import build_event_bus
from patronly.services.orchestrator import ReconcileResult, ReconciliationOrchestrator
from patronly.services.subscription_ledger import SubscriptionLedger

logger = logging.getLogger(__name__)

router = APIRouter()


def status_response(reference: str, result: ReconcileResult) -> PaymentStatusResponse:
    subscription = result.subscription
    return PaymentStatusResponse(
        reference=reference,
        outcome=result.outcome.value,
        status=subscription.effective_status() if subscription else None,
        expires_at=subscription.expires_at if subscription else None,
    )


async def _reconcile_own_reference(
    reference: str,
    identity: Identity,
    db: AsyncSession,
    gateway: PaymentGateway,
) -> PaymentStatusResponse:
    orchestrator = ReconciliationOrchestrator(db, gateway)
    subscription = await orchestrator.ledger.get_by_reference(reference)
    if subscription is None or subscription.subscriber_id != identity.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found"
        )
    result = await orchestrator.poll_once(reference)
    return status_response(reference, result)


@router.get("/api/payments/{reference}/status", response_model=PaymentStatusResponse)
async def payment_status(
    reference: str,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Polling endpoint for the subscriber's client timer.

    Verifies the payment with the gateway if it is still pending, then returns
    the subscription's current status.
    """
    return await _reconcile_own_reference(reference, identity, db, gateway)


@router.post("/api/payments/verify", response_model=PaymentStatusResponse)
@limiter.limit(settings.RATE_LIMIT_VERIFY)
async def verify_payment(
    request_data: PaymentVerifyRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Manual verification, used by the payment callback page."""
    return await _reconcile_own_reference(request_data.reference, identity, db, gateway)


@router.delete("/api/payments/{reference}/poll")
async def cancel_polling(
    reference: str,
    request: Request,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    """Stop server-side polling for a reference. Has no effect on the payment itself."""
    ledger = SubscriptionLedger(db, build_event_bus(db))
    subscription = await ledger.get_by_reference(reference)
    if subscription is None or subscription.subscriber_id != identity.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found"
        )
    cancelled = request.app.state.pollers.cancel(reference)
    return {"reference": reference, "cancelled": cancelled}


async def _acknowledge_callback(reference: str | None, db: AsyncSession, gateway: PaymentGateway) -> dict:
    """Reconcile a callback and always answer with a benign acknowledgement.

    Unknown references and rejected verifications are logged, never surfaced,
    so the gateway stops redelivering. GatewayUnavailable propagates as a 503
    so the gateway retries later.
    """
    if not reference:
        return {"status": "ignored"}

    orchestrator = ReconciliationOrchestrator(db, gateway)
    try:
        result = await orchestrator.handle_callback(reference)
    except GatewayRejected as e:
        logger.error(f"Callback verification for {reference} rejected: {e.detail}")
        return {"status": "verification_rejected"}
    return {"status": result.outcome.value}


@router.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Handle Stripe webhook events.

    - Verifies webhook signature
    - Extracts the payment reference from checkout / payment intent events
    - Re-verifies the payment and reconciles it
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header"
        )

    # Verify webhook signature
    try:
        reference = StripeGateway.reference_from_webhook(payload, sig_header)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload"
        )
    except stripe.SignatureVerificationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    return await _acknowledge_callback(reference, db, gateway)


@router.post("/api/webhooks/flutterwave")
async def flutterwave_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Handle Flutterwave webhook events (``verif-hash`` authenticated)."""
    if not FlutterwaveGateway.verify_webhook_hash(request.headers.get("verif-hash")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    try:
        event = json.loads(await request.body())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload"
        )

    data = event.get("data") or {}
    reference = data.get("tx_ref") or data.get("txRef") or event.get("txRef")
    return await _acknowledge_callback(reference, db, gateway)
