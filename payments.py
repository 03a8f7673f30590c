"""
Payment gateway client

Thin wrapper over the Stripe SDK. The server only creates payment intents;
confirmation happens client-side with the returned client secret.
"""
import logging
import os
from typing import Optional

import stripe
from fastapi import Request

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects or fails a request."""


class PaymentGateway:
    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def create_payment_intent(self, amount: int, currency: str = "usd") -> str:
        """Create an intent for ``amount`` minor units and return its client secret."""
        if not self.api_key:
            raise PaymentGatewayError("Payment gateway is not configured")
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                payment_method_types=["card"],
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise PaymentGatewayError(str(exc)) from exc
        logger.info(f"Created payment intent for {amount} {currency}")
        return intent.client_secret


def to_minor_units(price: float) -> int:
    return int(round(price * 100))


def gateway_from_env() -> PaymentGateway:
    return PaymentGateway(os.getenv("STRIPE_SECRET_KEY"))


def get_payment_gateway(request: Request) -> PaymentGateway:
    """FastAPI dependency for the process-wide gateway client."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = gateway_from_env()
        request.app.state.payment_gateway = gateway
    return gateway
