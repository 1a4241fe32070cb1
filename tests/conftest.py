"""Shared fixtures: an in-memory tracking core and recording transports."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from ordertrack.models import OrderStatus
from ordertrack.realtime.registry import ConnectionRegistry
from ordertrack.realtime.router import EventPublisher
from ordertrack.schemas import (
    DeliveryAddress,
    Identity,
    Order,
    OrderCreate,
    OrderItem,
    Role,
)
from ordertrack.services.lifecycle import LifecycleStateMachine
from ordertrack.services.orders.memory import InMemoryOrderStore

RESTAURANT_ID = "r_1"
OTHER_RESTAURANT_ID = "r_2"


class FakeTransport:
    """Records what the registry writes; optionally fails every write."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail
        self.close_code: Optional[int] = None

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def events(self, kind: Optional[str] = None) -> list[dict]:
        return [m for m in self.sent if kind is None or m.get("event") == kind]


def make_draft(restaurant_id: str = RESTAURANT_ID) -> OrderCreate:
    return OrderCreate(
        restaurant_id=restaurant_id,
        items=[
            OrderItem(name="Paneer Tikka", price=249.0, quantity=2),
            OrderItem(name="Garlic Naan", price=60.0, quantity=1),
        ],
        delivery_address=DeliveryAddress(street="12 MG Road", city="Pune", pincode="411001"),
    )


def make_order(
    order_id: str = "o_1",
    status: OrderStatus = OrderStatus.PENDING,
    version: int = 1,
    restaurant_id: str = RESTAURANT_ID,
    customer_id: str = "c_1",
) -> Order:
    draft = make_draft(restaurant_id)
    return Order(
        id=order_id,
        customer_id=customer_id,
        restaurant_id=restaurant_id,
        status=status,
        version=version,
        items=draft.items,
        total_amount=draft.total_amount,
        delivery_address=draft.delivery_address,
        created_at=datetime.now(timezone.utc),
    )


async def settle() -> None:
    """Let background tasks (writers, transport closes) run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def customer() -> Identity:
    return Identity(role=Role.CUSTOMER, user_id="c_1")


@pytest.fixture
def other_customer() -> Identity:
    return Identity(role=Role.CUSTOMER, user_id="c_2")


@pytest.fixture
def operator() -> Identity:
    return Identity(role=Role.RESTAURANT_ADMIN, user_id="op_1", restaurant_id=RESTAURANT_ID)


@pytest.fixture
def other_operator() -> Identity:
    return Identity(role=Role.RESTAURANT_ADMIN, user_id="op_2", restaurant_id=OTHER_RESTAURANT_ID)


@pytest.fixture
def superadmin() -> Identity:
    return Identity(role=Role.SUPERADMIN, user_id="admin")


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry(outbound_queue_size=16)


@pytest.fixture
def publisher(registry) -> EventPublisher:
    return EventPublisher(registry)


@pytest.fixture
def lifecycle(store, publisher) -> LifecycleStateMachine:
    return LifecycleStateMachine(store, publisher)


@pytest.fixture
async def placed_order(store, customer) -> Order:
    return await store.create_order(make_draft(), customer_id=customer.user_id)
