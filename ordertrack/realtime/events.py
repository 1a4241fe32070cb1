"""
Domain events and their wire shapes.

Domain events are what the lifecycle and admin paths report; wire events
are what a connection actually receives. Every order-carrying wire event
embeds the full order projection so viewers replace their copy instead of
merging fields.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional, Union

from pydantic import Field

from ordertrack.models import OrderStatus
from ordertrack.schemas import Order, RestaurantStatus, WireModel


# =============================================================================
# DOMAIN EVENTS
# =============================================================================

@dataclass(frozen=True)
class OrderStatusChanged:
    order: Order
    previous_status: OrderStatus


@dataclass(frozen=True)
class OrderPlaced:
    order: Order


@dataclass(frozen=True)
class RestaurantStatusChanged:
    restaurant_id: str
    status: RestaurantStatus
    previous_status: Optional[RestaurantStatus] = None


DomainEvent = Union[OrderStatusChanged, OrderPlaced, RestaurantStatusChanged]


# =============================================================================
# WIRE EVENTS
# =============================================================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatusUpdatedEvent(WireModel):
    event: Literal["order_status_updated"] = "order_status_updated"
    order_id: str
    restaurant_id: str
    status: OrderStatus
    previous_status: OrderStatus
    version: int
    order: Order
    timestamp: datetime = Field(default_factory=_now)


class NewOrderEvent(WireModel):
    event: Literal["new_order"] = "new_order"
    order_id: str
    restaurant_id: str
    status: OrderStatus
    version: int
    order: Order
    timestamp: datetime = Field(default_factory=_now)


class RestaurantStatusUpdatedEvent(WireModel):
    event: Literal["restaurant_status_updated"] = "restaurant_status_updated"
    restaurant_id: str
    status: RestaurantStatus
    previous_status: Optional[RestaurantStatus] = None
    timestamp: datetime = Field(default_factory=_now)


class StatsTickEvent(WireModel):
    """Lightweight nudge for aggregate views; they re-query the numbers."""
    event: Literal["system_stats_update"] = "system_stats_update"
    type: Literal["newOrder", "orderStatusChanged"]
    order_id: Optional[str] = None
    restaurant_id: Optional[str] = None
    status: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
