"""Domain errors raised by the subscription, earnings and withdrawal services.

Each error carries the HTTP status and the user-facing detail the API returns
for it, so services stay free of FastAPI imports.
"""
from fastapi import status


class PatronlyError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "Request could not be processed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.detail
        super().__init__(self.detail)


class DuplicateReference(PatronlyError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Payment reference already exists"


class UnknownReference(PatronlyError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Unknown payment reference"


class AmountMismatch(PatronlyError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Verified amount does not match the subscription amount"


class SelfSubscription(PatronlyError):
    detail = "You cannot subscribe to yourself"


class AmountBelowFee(PatronlyError):
    detail = "Amount is below the creator's subscription fee"


class GatewayError(PatronlyError):
    """Base class for payment gateway failures."""

    retryable: bool = False


class GatewayUnavailable(GatewayError):
    """Network failure or 5xx from the gateway. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    detail = "Payment provider is unavailable, please try again"
    retryable = True


class GatewayRejected(GatewayError):
    """The gateway refused the request. Retrying the same request will not help."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    detail = "Payment could not be started"


class ReferenceNotFound(GatewayError):
    """The gateway has no record of the reference yet.

    Gateways are eventually consistent, so callers treat this as "not settled yet".
    """

    status_code = status.HTTP_404_NOT_FOUND
    detail = "Transaction not found at payment provider"
    retryable = True


class InsufficientBalance(PatronlyError):
    detail = "Pending balance is below the minimum withdrawal amount"


class WithdrawalNotFound(PatronlyError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Withdrawal not found"


class AlreadyDecided(PatronlyError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Withdrawal has already been decided"


class WithdrawalConflict(PatronlyError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Another withdrawal claimed these earnings, please retry"
