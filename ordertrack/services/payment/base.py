"""
Payment Service Abstract Base Class

Defines the interface contract for payment confirmation. Payment capture
happens in the customer's browser with the provider; the server only asks
the provider whether a payment really succeeded before it creates the order.

Design Pattern: Strategy Pattern
    - Allows runtime switching between payment providers
    - Facilitates testing with mock implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PaymentResult:
    """
    Standardized result from payment confirmation.

    Attributes:
        success: Whether the provider reports the payment as captured
        payment_id: Provider identifier of the payment
        amount: Amount captured, in major currency units
        currency: Currency code (e.g., "usd")
        status: Provider-specific payment status
        error_message: Error description if confirmation failed
        error_code: Machine-readable error code
        provider: Which provider answered
    """
    success: bool
    payment_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "usd"
    status: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    provider: str = "unknown"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "payment_id": self.payment_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "provider": self.provider,
        }


class BasePaymentService(ABC):
    """
    Abstract base class for payment services.

    Example:
        >>> service = get_payment_service()  # Returns Mock or Stripe
        >>> result = await service.confirm_payment("pi_123", amount=29.99)
        >>> if result.success:
        ...     print(f"Captured {result.amount}")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the payment provider (e.g., "mock", "stripe")."""
        pass

    @abstractmethod
    async def confirm_payment(
        self,
        payment_id: str,
        amount: float,
        provider_order_id: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> PaymentResult:
        """
        Confirm that a payment was captured for the expected amount.

        Args:
            payment_id: Provider payment identifier reported by the client
            amount: Order total the payment must cover, in major units
            provider_order_id: Provider-side order reference, if any
            signature: Client-reported signature, if the provider issues one

        Returns:
            PaymentResult: success is True only for a captured, matching payment
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the payment service."""
        pass
