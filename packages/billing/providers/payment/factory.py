"""
Factory for building the payment gateway.
"""

from common.core.config import Settings
from packages.billing.providers.payment.interface import PaymentGatewayInterface
from packages.billing.providers.payment.stripe_payment import StripePaymentGateway


def build_payment_gateway(settings: Settings) -> PaymentGatewayInterface:
    """
    Build the payment gateway from configuration.

    Stripe is the only gateway; the interface keeps the rest of the package
    independent of it.
    """
    return StripePaymentGateway(settings)
