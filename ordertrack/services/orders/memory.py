"""
In-Memory Order Store

Keeps orders in a dict for development and tests. Nothing survives a
restart, which matches how live connections behave anyway.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from ordertrack.models import OrderStatus
from ordertrack.schemas import Order, OrderCreate, PaymentDetails
from ordertrack.services.orders.base import BaseOrderStore

logger = logging.getLogger(__name__)


class InMemoryOrderStore(BaseOrderStore):
    """Dict-backed order store."""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._by_payment: dict[str, str] = {}

    @property
    def provider_name(self) -> str:
        return "memory"

    async def create_order(
        self,
        draft: OrderCreate,
        customer_id: str,
        payment: Optional[PaymentDetails] = None,
    ) -> Order:
        order = Order(
            id=uuid.uuid4().hex,
            customer_id=customer_id,
            restaurant_id=draft.restaurant_id,
            status=OrderStatus.PENDING,
            version=1,
            items=draft.items,
            total_amount=draft.total_amount,
            delivery_address=draft.delivery_address,
            payment=payment,
            created_at=datetime.now(timezone.utc),
        )
        self._orders[order.id] = order
        if payment is not None:
            self._by_payment[payment.payment_id] = order.id

        logger.debug(f"Stored order #{order.id} for restaurant {order.restaurant_id}")
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        expected_status: OrderStatus,
    ) -> Optional[Order]:
        current = self._orders.get(order_id)
        if current is None or current.status != expected_status:
            return None

        updated = current.model_copy(update={
            "status": new_status,
            "version": current.version + 1,
            "updated_at": datetime.now(timezone.utc),
        })
        self._orders[order_id] = updated
        return updated

    async def find_by_payment_id(self, payment_id: str) -> Optional[Order]:
        order_id = self._by_payment.get(payment_id)
        return self._orders.get(order_id) if order_id else None

    async def list_orders_for_user(self, user_id: str) -> list[Order]:
        return self._newest_first(o for o in self._orders.values() if o.customer_id == user_id)

    async def list_orders_for_restaurant(self, restaurant_id: str) -> list[Order]:
        return self._newest_first(
            o for o in self._orders.values() if o.restaurant_id == restaurant_id
        )

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OrderStatus}
        for order in self._orders.values():
            counts[order.status.value] += 1
        return counts

    async def health_check(self) -> bool:
        return True

    @staticmethod
    def _newest_first(orders) -> list[Order]:
        return sorted(orders, key=lambda o: o.created_at, reverse=True)
