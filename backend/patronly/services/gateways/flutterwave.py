"""Flutterwave Standard checkout adapter."""
import hmac
import logging
from decimal import Decimal
from typing import Optional

import httpx

from patronly.config import settings
from patronly.errors import GatewayRejected, GatewayUnavailable, ReferenceNotFound
from patronly.services.gateways.base import (
    CheckoutSession, PayerIdentity, PaymentGateway, TransactionStatus, TransactionVerification,
)

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "successful": TransactionStatus.SUCCESSFUL,
    "failed": TransactionStatus.FAILED,
    "cancelled": TransactionStatus.FAILED,
}


class FlutterwaveGateway(PaymentGateway):
    """Talks to the Flutterwave v3 REST API with ``tx_ref`` as the reference."""

    name = "flutterwave"

    def __init__(self, secret_key: str | None = None, base_url: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.secret_key = secret_key or settings.FLUTTERWAVE_SECRET_KEY
        self.base_url = (base_url or settings.FLUTTERWAVE_BASE_URL).rstrip("/")
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.secret_key}"},
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, reference: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"Flutterwave unreachable for {reference}: {e}")
            raise GatewayUnavailable()

        if response.status_code >= 500:
            logger.warning(f"Flutterwave {response.status_code} for {reference}")
            raise GatewayUnavailable()
        return response

    @staticmethod
    def _payload(response: httpx.Response) -> dict:
        """JSON body of a response. WAF pages and plain-text errors give an empty dict."""
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

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
        body = {
            "tx_ref": reference,
            "amount": str(amount),
            "currency": currency.upper(),
            "redirect_url": callback_url,
            "customer": {"email": payer.email, "name": payer.name or "User"},
            "customizations": {
                "title": "Premium Content Subscription",
                "description": "Subscription to premium content",
            },
            "meta": {"subscriber_id": payer.user_id, **(metadata or {})},
        }
        response = await self._request("POST", "/v3/payments", reference, json=body)
        data = self._payload(response)

        if response.status_code >= 400 or data.get("status") != "success":
            logger.error(f"Flutterwave rejected checkout for {reference}: {data.get('message')}")
            raise GatewayRejected(f"Payment could not be started: {data.get('message', 'rejected')}")

        return CheckoutSession(checkout_url=data["data"]["link"], reference=reference)

    async def verify_transaction(self, reference: str) -> TransactionVerification:
        response = await self._request(
            "GET", "/v3/transactions/verify_by_reference", reference, params={"tx_ref": reference}
        )
        if response.status_code == 404:
            raise ReferenceNotFound(f"Flutterwave has no transaction for {reference}")

        data = self._payload(response)
        if response.status_code >= 400 or data.get("status") != "success":
            message = str(data.get("message", ""))
            if "no transaction" in message.lower():
                raise ReferenceNotFound(f"Flutterwave has no transaction for {reference}")
            raise GatewayRejected(message or "Verification rejected")

        tx = data.get("data") or {}
        status = _STATUS_MAP.get(str(tx.get("status", "")).lower(), TransactionStatus.PENDING)
        amount = tx.get("amount")
        return TransactionVerification(
            status=status,
            amount=Decimal(str(amount)) if amount is not None else None,
            currency=tx.get("currency"),
        )

    @staticmethod
    def verify_webhook_hash(header_value: Optional[str]) -> bool:
        """Flutterwave signs webhooks by echoing the configured secret hash."""
        expected = settings.FLUTTERWAVE_WEBHOOK_HASH
        return bool(expected) and bool(header_value) and hmac.compare_digest(header_value, expected)
