"""Payment gateway contract shared by all provider adapters."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from patronly.errors import GatewayRejected


class TransactionStatus(str, Enum):
    SUCCESSFUL = "successful"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class PayerIdentity:
    """Who is paying, as supplied by the identity provider."""
    user_id: str
    email: str
    name: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    """Gateway-side checkout artifact. Never persisted."""
    checkout_url: str
    reference: str


@dataclass(frozen=True)
class TransactionVerification:
    status: TransactionStatus
    amount: Optional[Decimal]
    currency: Optional[str]


class PaymentGateway(ABC):
    """Stateless adapter over a payment provider.

    ``create_checkout`` raises GatewayUnavailable (retryable) or
    GatewayRejected (terminal). ``verify_transaction`` is read-only and raises
    ReferenceNotFound while the provider has no record of the reference.
    """

    name: str = "gateway"

    @abstractmethod
    async def create_checkout(
        self,
        payer: PayerIdentity,
        amount: Decimal,
        currency: str,
        callback_url: str,
        reference: str,
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        ...

    @abstractmethod
    async def verify_transaction(self, reference: str) -> TransactionVerification:
        ...

    @staticmethod
    def validate_amount(amount: Decimal) -> None:
        if amount is None or Decimal(amount) <= 0:
            raise GatewayRejected("Payment amount must be greater than zero")
