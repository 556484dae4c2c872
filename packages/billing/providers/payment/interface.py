"""
Interface for payment gateways.

Abstracts the billing-credential gateway away from a specific platform. The
rest of the billing package talks to this contract only: authorize a
credential, charge it, refund a charge, and parse signed event callbacks.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from packages.billing.models.domain.enums import SubscriptionTier
from packages.billing.models.domain.events import GatewayEvent


class AuthorizationSession(BaseModel):
    """Hosted page where the subscriber authorizes a billing credential."""

    session_ref: str
    redirect_url: str
    customer_ref: str


class IssuedCredential(BaseModel):
    credential_ref: str
    customer_ref: Optional[str] = None


class ChargeReceipt(BaseModel):
    """
    Gateway answer to a charge.

    settled is False when the gateway accepted the charge but has not
    captured it yet; the outcome then arrives as an event.
    """

    payment_ref: str
    settled: bool = True


class PaymentGatewayInterface(ABC):
    """Abstract interface for payment gateways."""

    @abstractmethod
    async def find_or_create_customer(self, customer_key: str) -> str:
        """
        Get the gateway customer for a deterministic customer key.

        Returns:
            customer_ref: Gateway customer ID
        """
        pass

    @abstractmethod
    async def create_authorization_session(
        self,
        customer_key: str,
        customer_ref: str,
        tier: SubscriptionTier,
        success_url: str,
        cancel_url: str,
    ) -> AuthorizationSession:
        """Start the one-time credential authorization flow."""
        pass

    @abstractmethod
    async def retrieve_issued_credential(self, session_ref: str) -> IssuedCredential:
        """
        Get the credential issued by a completed authorization session.

        Raises:
            GatewayError: If the session did not issue a credential
        """
        pass

    @abstractmethod
    async def charge(
        self,
        credential_ref: str,
        customer_ref: Optional[str],
        amount_minor_units: int,
        charge_ref: str,
        plan_tier: Optional[SubscriptionTier] = None,
    ) -> ChargeReceipt:
        """
        Charge a bound credential off-session.

        charge_ref is sent as the idempotency key and as metadata so the
        resulting events can be matched back to the ledger entry.

        Raises:
            GatewayError: If the gateway declines or fails the charge
        """
        pass

    @abstractmethod
    async def refund(
        self,
        payment_ref: str,
        amount_minor_units: Optional[int],
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> str:
        """
        Cancel or refund a captured payment.

        Returns:
            refund_ref: Gateway refund ID
        """
        pass

    @abstractmethod
    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        """
        Verify and normalize an event callback.

        Raises:
            SignatureVerificationError: If the signature is missing or invalid
            ValidationError: If the payload is malformed
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the payment backend is available and healthy.

        Returns:
            True if healthy, False otherwise
        """
        pass
