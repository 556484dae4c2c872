"""Payment gateways - credential authorization, charges, refunds and events."""

from packages.billing.providers.payment.interface import (
    AuthorizationSession,
    ChargeReceipt,
    IssuedCredential,
    PaymentGatewayInterface,
)
from packages.billing.providers.payment.factory import build_payment_gateway

__all__ = [
    "AuthorizationSession",
    "ChargeReceipt",
    "IssuedCredential",
    "PaymentGatewayInterface",
    "build_payment_gateway",
]
