"""Payment gateway adapters."""
from patronly.config import settings
from patronly.services.gateways.base import (
    CheckoutSession, PayerIdentity, PaymentGateway, TransactionStatus, TransactionVerification,
)
from patronly.services.gateways.flutterwave import FlutterwaveGateway
from patronly.services.gateways.stripe_gateway import StripeGateway


def get_gateway() -> PaymentGateway:
    """FastAPI dependency returning the configured payment gateway adapter."""
    if settings.PAYMENT_PROVIDER == "flutterwave":
        return FlutterwaveGateway()
    return StripeGateway()


__all__ = [
    "CheckoutSession",
    "PayerIdentity",
    "PaymentGateway",
    "TransactionStatus",
    "TransactionVerification",
    "FlutterwaveGateway",
    "StripeGateway",
    "get_gateway",
]
