"""
Billing error kinds.

Every error carries an error_code and an HTTP status so the API layer can
render it with a single exception handler.
"""

from typing import Optional

from common.core.exceptions import (
    AppException,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
)

GENERIC_PAYMENT_ERROR_MESSAGE = (
    "We couldn't process your payment. Please try again or use a different card."
)

# Gateway error code -> message safe to show to the subscriber
GATEWAY_ERROR_MESSAGES = {
    "card_declined": "Your card was declined. Please contact your card issuer or use a different card.",
    "expired_card": "Your card has expired. Please register a new card.",
    "incorrect_cvc": "The card security code is incorrect.",
    "insufficient_funds": "Your card has insufficient funds.",
    "processing_error": "The card issuer could not process the payment. Please try again later.",
    "authentication_required": "Your card issuer requires additional authentication. Please register your card again.",
    "card_not_supported": "This card type is not supported. Please use a different card.",
    "rate_limit": "Too many payment attempts. Please try again later.",
    "authentication_error": "Payment service configuration error. Please contact support.",
    "invalid_request_error": "The payment request was invalid. Please contact support.",
    "credential_missing": "No card is registered. Please register a card to continue.",
    "GATEWAY_TIMEOUT": "The payment is taking longer than expected. We'll update your subscription once it completes.",
}


def user_message_for(code: Optional[str]) -> str:
    """Translate a gateway error code into a subscriber-facing message."""
    if code is None:
        return GENERIC_PAYMENT_ERROR_MESSAGE
    return GATEWAY_ERROR_MESSAGES.get(code, GENERIC_PAYMENT_ERROR_MESSAGE)


class BillingError(AppException):
    """Base billing exception."""

    error_code = "BILLING_ERROR"


class InsufficientBalanceError(BillingError):
    """Not enough tokens left for this request."""

    status_code = 402
    error_code = "INSUFFICIENT_BALANCE"

    def __init__(self, required: int, balance: int):
        super().__init__(
            f"This request needs {required} tokens but only {balance} remain."
        )
        self.required = required
        self.balance = balance


class DailyCapExceededError(BillingError):
    """Daily usage cap reached."""

    status_code = 429
    error_code = "DAILY_CAP_EXCEEDED"

    def __init__(self, requested: int, used_today: int, daily_cap: int):
        super().__init__(
            f"Daily limit of {daily_cap} units reached ({used_today} used today)."
        )
        self.requested = requested
        self.used_today = used_today
        self.daily_cap = daily_cap


class SubscriptionNotFoundError(NotFoundError):
    """Subscription not found."""

    error_code = "SUBSCRIPTION_NOT_FOUND"


class LedgerEntryNotFoundError(NotFoundError):
    """Ledger entry not found."""

    error_code = "LEDGER_ENTRY_NOT_FOUND"


class CredentialNotBoundError(ConflictError):
    """No billing credential is bound to the subscription."""

    error_code = "CREDENTIAL_NOT_BOUND"


class InvalidLedgerTransitionError(ConflictError):
    """Ledger entry cannot move to the requested status."""

    error_code = "INVALID_LEDGER_TRANSITION"


class GatewayError(BillingError):
    """The payment gateway rejected or failed a request."""

    status_code = 502
    error_code = "GATEWAY_ERROR"

    def __init__(self, code: Optional[str], message: str = ""):
        super().__init__(message or f"Payment gateway error: {code}")
        self.code = code

    @property
    def user_message(self) -> str:
        return user_message_for(self.code)


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer within the charge timeout."""

    status_code = 504
    error_code = "GATEWAY_TIMEOUT"

    def __init__(self, message: str = ""):
        super().__init__("GATEWAY_TIMEOUT", message or "Payment gateway timed out")


class SignatureVerificationError(UnauthorizedError):
    """Webhook signature missing or invalid."""

    error_code = "SIGNATURE_VERIFICATION_FAILED"
