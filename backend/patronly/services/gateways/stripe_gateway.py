"""Stripe Checkout adapter."""
import logging
from decimal import Decimal
from typing import Optional

import stripe

from patronly.config import settings
from patronly.errors import GatewayRejected, GatewayUnavailable, ReferenceNotFound
from patronly.services.gateways.base import (
    CheckoutSession, PayerIdentity, PaymentGateway, TransactionStatus, TransactionVerification,
)

logger = logging.getLogger(__name__)

# Currencies Stripe bills without a minor unit
ZERO_DECIMAL_CURRENCIES = {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}

_RETRYABLE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(amount))
    return int(Decimal(amount) * 100)


def from_minor_units(amount: int, currency: str) -> Decimal:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class StripeGateway(PaymentGateway):
    """Creates Stripe Checkout Sessions and verifies them by reference.

    The reference travels as ``client_reference_id`` and in the PaymentIntent
    metadata, and doubles as the Stripe idempotency key.
    """

    name = "stripe"

    def __init__(self, api_key: str | None = None):
        stripe.api_key = api_key or settings.STRIPE_SECRET_KEY

    async def create_checkout(
        self,
        payer: PayerIdentity,
        amount: Decimal,
        currency: str,
        callback_url: str,
        reference: str,
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        self.validate_amount(amount)
        meta = {"reference": reference, "subscriber_id": payer.user_id, **(metadata or {})}
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=payer.email,
                client_reference_id=reference,
                line_items=[{
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": to_minor_units(amount, currency),
                        "product_data": {"name": "Premium content subscription"},
                    },
                    "quantity": 1,
                }],
                metadata=meta,
                payment_intent_data={"metadata": meta},
                success_url=f"{callback_url}?reference={reference}",
                cancel_url=f"{callback_url}?reference={reference}&cancelled=1",
                idempotency_key=reference,
            )
        except _RETRYABLE_ERRORS as e:
            logger.warning(f"Stripe unavailable creating checkout for {reference}: {e}")
            raise GatewayUnavailable()
        except stripe.StripeError as e:
            logger.error(f"Stripe rejected checkout for {reference}: {e}")
            raise GatewayRejected(f"Payment could not be started: {e.user_message or str(e)}")

        return CheckoutSession(checkout_url=session.url, reference=reference)

    async def verify_transaction(self, reference: str) -> TransactionVerification:
        try:
            # Search is eventually consistent; a fresh payment may not be indexed yet
            result = stripe.PaymentIntent.search(query=f"metadata['reference']:'{reference}'", limit=1)
        except _RETRYABLE_ERRORS as e:
            logger.warning(f"Stripe unavailable verifying {reference}: {e}")
            raise GatewayUnavailable()
        except stripe.StripeError as e:
            logger.error(f"Stripe rejected verification of {reference}: {e}")
            raise GatewayRejected(str(e))

        if not result.data:
            raise ReferenceNotFound(f"Stripe has no payment for {reference}")

        intent = result.data[0]
        if intent.status == "succeeded":
            status = TransactionStatus.SUCCESSFUL
        elif intent.status == "canceled":
            status = TransactionStatus.FAILED
        else:
            status = TransactionStatus.PENDING

        currency = (intent.currency or "").upper()
        amount = intent.amount_received if status == TransactionStatus.SUCCESSFUL else intent.amount
        return TransactionVerification(
            status=status,
            amount=from_minor_units(amount, currency) if amount is not None else None,
            currency=currency or None,
        )

    @staticmethod
    def reference_from_webhook(payload: bytes, signature: str) -> Optional[str]:
        """Verify a Stripe webhook signature and pull the payment reference out of it.

        Raises ValueError for an invalid payload and
        stripe.SignatureVerificationError for a bad signature.
        """
        event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
        obj = event["data"]["object"]
        if event["type"] in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            return obj.get("client_reference_id") or (obj.get("metadata") or {}).get("reference")
        if event["type"] in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            return (obj.get("metadata") or {}).get("reference")
        return None
