"""
Mock Payment Service Implementation

Simulates provider-side payment confirmation without making real API calls.
Used in development mode (ENV_MODE=development) to:
    - Test the complete checkout → tracking flow locally
    - Develop without internet connectivity

Behavior:
    - Simulates response times between min_latency and max_latency
    - Declines any payment whose id starts with "fail_"
    - Declines non-positive amounts
"""

import asyncio
import logging
import random
from typing import Optional

from ordertrack.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment service.

    Attributes:
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
        currency: Currency reported on results

    Example:
        >>> service = MockPaymentService(min_latency=0, max_latency=0)
        >>> (await service.confirm_payment("pay_1", 12.5)).success
        True
        >>> (await service.confirm_payment("fail_1", 12.5)).success
        False
    """

    DECLINE_PREFIX = "fail_"

    def __init__(
        self,
        min_latency: float = 0.05,
        max_latency: float = 0.2,
        currency: str = "usd",
    ):
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.currency = currency

        logger.info(
            f"MockPaymentService initialized "
            f"(latency={min_latency:.2f}-{max_latency:.2f}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    async def confirm_payment(
        self,
        payment_id: str,
        amount: float,
        provider_order_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> PaymentResult:
        """Simulate a provider lookup of the payment."""
        await self._simulate_latency()

        if amount <= 0:
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
                provider="mock",
            )

        if payment_id.startswith(self.DECLINE_PREFIX):
            logger.warning(f"Mock payment {payment_id} declined (simulated)")
            return PaymentResult(
                success=False,
                payment_id=payment_id,
                status="failed",
                error_message="Your card was declined.",
                error_code="card_declined",
                provider="mock",
            )

        logger.info(f"Mock payment {payment_id} confirmed for {amount:.2f} {self.currency}")
        return PaymentResult(
            success=True,
            payment_id=payment_id,
            amount=round(amount, 2),
            currency=self.currency,
            status="succeeded",
            provider="mock",
        )

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
