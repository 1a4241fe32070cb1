"""
Stripe Payment Service Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

The browser confirms the PaymentIntent with Stripe Elements; the server
retrieves the intent and only accepts it when Stripe reports `succeeded`
for the order total.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
"""

import logging
from typing import Optional

import stripe

from ordertrack.core.config import get_settings
from ordertrack.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


class StripePaymentService(BasePaymentService):
    """
    Production Stripe payment confirmation.

    Example:
        >>> service = StripePaymentService()
        >>> result = await service.confirm_payment("pi_3Nx...", amount=29.99)
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        self._currency = settings.stripe_currency

        logger.info("StripePaymentService initialized")

    @property
    def provider_name(self) -> str:
        return "stripe"

    def _convert_to_cents(self, amount: float) -> int:
        """Stripe expects amounts in the smallest currency unit."""
        return int(round(amount * 100))

    async def confirm_payment(
        self,
        payment_id: str,
        amount: float,
        provider_order_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> PaymentResult:
        """Retrieve the PaymentIntent and check status and amount."""
        try:
            intent = stripe.PaymentIntent.retrieve(payment_id)

        except stripe.InvalidRequestError as e:
            logger.warning(f"Stripe: Unknown PaymentIntent {payment_id} - {e}")
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                error_message="Unknown payment",
                error_code="invalid_request",
                provider="stripe",
            )

        except stripe.AuthenticationError as e:
            logger.critical(f"Stripe: Authentication failed - {e}")
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                error_message="Payment service configuration error",
                error_code="authentication_error",
                provider="stripe",
            )

        except stripe.StripeError as e:
            logger.error(f"Stripe: Error retrieving {payment_id} - {e}")
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                error_message="Payment service temporarily unavailable",
                error_code="stripe_error",
                provider="stripe",
            )

        if intent.status != "succeeded":
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                status=intent.status,
                error_message=f"Payment is {intent.status}",
                error_code="payment_incomplete",
                provider="stripe",
            )

        if intent.amount_received != self._convert_to_cents(amount):
            logger.warning(
                f"Stripe: Amount mismatch for {payment_id} - "
                f"received={intent.amount_received} expected={self._convert_to_cents(amount)}"
            )
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                status=intent.status,
                error_message="Payment amount does not match order total",
                error_code="amount_mismatch",
                provider="stripe",
            )

        return PaymentResult(
            success=True,
            payment_id=payment_id,
            amount=intent.amount_received / 100.0,
            currency=intent.currency,
            status=intent.status,
            provider="stripe",
        )

    async def health_check(self) -> bool:
        """Make a lightweight API call to verify credentials and connectivity."""
        try:
            stripe.Account.retrieve()
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
