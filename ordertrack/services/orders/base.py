"""
Order Store Abstract Base Class

Defines the interface contract for order persistence. The tracking core
only depends on this contract; InMemoryOrderStore and SQLOrderStore are
interchangeable implementations.

Design Pattern: Strategy Pattern
    - The store is chosen at startup from ORDER_STORE_BACKEND
    - Tests inject a store directly into the application factory
"""

from abc import ABC, abstractmethod
from typing import Optional

from ordertrack.models import OrderStatus
from ordertrack.schemas import Order, OrderCreate, PaymentDetails


class BaseOrderStore(ABC):
    """
    Abstract base class for order stores.

    Implementations raise StorageFailure for any persistence error so the
    lifecycle can surface it to the caller without publishing.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the backend name (e.g. "memory", "sql")."""
        pass

    async def init(self) -> None:
        """Prepare the backend (create tables, open pools)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def create_order(
        self,
        draft: OrderCreate,
        customer_id: str,
        payment: Optional[PaymentDetails] = None,
    ) -> Order:
        """
        Persist a new order in the Pending state with version 1.

        Args:
            draft: Validated checkout payload
            customer_id: Owning customer
            payment: Confirmed payment, if the order was prepaid

        Returns:
            Order: The stored projection
        """
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        """Return the order, or None if it does not exist."""
        pass

    @abstractmethod
    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        expected_status: OrderStatus,
    ) -> Optional[Order]:
        """
        Compare-and-set the order status.

        The write only happens if the stored status still equals
        `expected_status`; it bumps `version` by one.

        Returns:
            Order: The updated projection, or None if the stored status
            no longer matched (or the order vanished)
        """
        pass

    @abstractmethod
    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        """Return the order created for this payment, if any."""
        pass

    @abstractmethod
    async def list_orders_for_user(self, user_id: str) -> list[Order]:
        """Orders placed by a customer, newest first."""
        pass

    @abstractmethod
    async def list_orders_for_restaurant(self, restaurant_id: str) -> list[Order]:
        """Orders placed at a restaurant, newest first."""
        pass

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]:
        """Number of orders per status value."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check backend connectivity."""
        pass
