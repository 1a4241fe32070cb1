"""
Topic Router and Event Publisher

TopicRouter is a pure translation from domain events to
(topic, wire event) pairs:

    OrderStatusChanged       → order:<id>, restaurant:<restaurantId>
    OrderPlaced              → restaurant:<restaurantId>
    RestaurantStatusChanged  → restaurant:<restaurantId>, system:stats

Aggregate views additionally get a lightweight tick on system:stats for
order events (see `stats_tick`). EventPublisher feeds both into the
ConnectionRegistry.
"""

import logging
from typing import Optional

from ordertrack.realtime.events import (
    DomainEvent,
    NewOrderEvent,
    OrderPlaced,
    OrderStatusChanged,
    OrderStatusUpdatedEvent,
    RestaurantStatusChanged,
    RestaurantStatusUpdatedEvent,
    StatsTickEvent,
)
from ordertrack.realtime.registry import ConnectionRegistry
from ordertrack.realtime.topics import SYSTEM_STATS, order_topic, restaurant_topic

logger = logging.getLogger(__name__)

Delivery = tuple[str, dict]


class TopicRouter:
    """Maps domain events to topics. Holds no state."""

    def route(self, event: DomainEvent) -> list[Delivery]:
        if isinstance(event, OrderStatusChanged):
            order = event.order
            wire = OrderStatusUpdatedEvent(
                order_id=order.id,
                restaurant_id=order.restaurant_id,
                status=order.status,
                previous_status=event.previous_status,
                version=order.version,
                order=order,
            ).to_wire()
            return [
                (order_topic(order.id), wire),
                (restaurant_topic(order.restaurant_id), wire),
            ]

        if isinstance(event, OrderPlaced):
            order = event.order
            wire = NewOrderEvent(
                order_id=order.id,
                restaurant_id=order.restaurant_id,
                status=order.status,
                version=order.version,
                order=order,
            ).to_wire()
            return [(restaurant_topic(order.restaurant_id), wire)]

        if isinstance(event, RestaurantStatusChanged):
            wire = RestaurantStatusUpdatedEvent(
                restaurant_id=event.restaurant_id,
                status=event.status,
                previous_status=event.previous_status,
            ).to_wire()
            return [
                (restaurant_topic(event.restaurant_id), wire),
                (SYSTEM_STATS, wire),
            ]

        raise TypeError(f"Unroutable event: {type(event).__name__}")

    def stats_tick(self, event: DomainEvent) -> Optional[Delivery]:
        """The system:stats nudge for order events; None when route() already covers it."""
        if isinstance(event, OrderStatusChanged):
            tick = StatsTickEvent(
                type="orderStatusChanged",
                order_id=event.order.id,
                restaurant_id=event.order.restaurant_id,
                status=event.order.status.value,
            )
        elif isinstance(event, OrderPlaced):
            tick = StatsTickEvent(
                type="newOrder",
                order_id=event.order.id,
                restaurant_id=event.order.restaurant_id,
                status=event.order.status.value,
            )
        else:
            return None
        return SYSTEM_STATS, tick.to_wire()


class EventPublisher:
    """
    Routes a domain event and hands every delivery to the registry.

    This is the single seam between the lifecycle and the transport; a
    shared backplane for multi-process deployments would plug in here.
    """

    def __init__(self, registry: ConnectionRegistry, router: Optional[TopicRouter] = None):
        self._registry = registry
        self._router = router or TopicRouter()

    def publish(self, event: DomainEvent) -> int:
        """
        Publish a domain event.

        Returns:
            int: Total number of connection deliveries queued
        """
        deliveries = self._router.route(event)
        tick = self._router.stats_tick(event)
        if tick is not None:
            deliveries.append(tick)

        total = 0
        for topic, wire in deliveries:
            total += self._registry.publish(topic, wire)

        logger.debug(f"Published {type(event).__name__} to {len(deliveries)} topics ({total} deliveries)")
        return total
