"""
Subscription management.

SubscriptionGate (server side) turns a client's join/leave control message
into registry membership, after checking that the caller's identity is
entitled to the topic. Client-supplied order or restaurant ids are never
trusted on their own:

    order:<id>       the customer who placed the order (or a superadmin)
    restaurant:<id>  that restaurant's operator (or a superadmin)
    system:stats     superadmins

ClientSubscriptionManager (viewer side) keeps a viewer joined to exactly
the topics of what is on screen and holds the local copies of the orders
being displayed.
"""

import logging
from typing import Awaitable, Callable, Literal, Optional

from pydantic import Field, ValidationError

from ordertrack.core.exceptions import TopicAuthorizationDenied
from ordertrack.realtime.registry import ConnectionRegistry
from ordertrack.realtime.topics import (
    SYSTEM_STATS,
    order_topic,
    parse_topic,
    restaurant_topic,
)
from ordertrack.schemas import Identity, WireModel
from ordertrack.services.orders.base import BaseOrderStore

logger = logging.getLogger(__name__)


class ControlMessage(WireModel):
    action: Literal[
        "join_order_room",
        "leave_order_room",
        "join_restaurant_room",
        "leave_restaurant_room",
        "join_stats_room",
        "leave_stats_room",
        "ping",
    ]
    order_id: Optional[str] = Field(None, min_length=1, max_length=64)
    restaurant_id: Optional[str] = Field(None, min_length=1, max_length=64)


def _error(message: str) -> dict:
    return {"event": "error", "message": message}


# =============================================================================
# SERVER SIDE
# =============================================================================

class SubscriptionGate:
    """Validates and applies control messages for one process's registry."""

    def __init__(self, registry: ConnectionRegistry, store: BaseOrderStore):
        self._registry = registry
        self._store = store

    async def handle(
        self,
        connection_id: str,
        identity: Optional[Identity],
        payload: object,
    ) -> Optional[dict]:
        """
        Apply one control message.

        Returns:
            The reply to send back to this connection, or None when the
            request is ignored (denied joins are logged, not answered).
        """
        try:
            message = ControlMessage.model_validate(payload)
        except ValidationError as e:
            logger.debug(f"Malformed control message from {connection_id}: {e.errors()}")
            return _error("Malformed control message")

        if message.action == "ping":
            return {"event": "pong"}

        action, _, kind = message.action.partition("_")
        topic = self._topic_for(message, kind)
        if topic is None:
            return _error(f"{message.action} requires an id")

        if action == "leave":
            self._registry.leave(connection_id, topic)
            return {"event": "room_left", "topic": topic}

        try:
            await self.authorize(identity, topic)
        except TopicAuthorizationDenied as e:
            who = f"{identity.role.value}:{identity.user_id}" if identity else "anonymous"
            logger.warning(f"⚠️ Join denied for {connection_id} ({who}): {e.message}")
            return None

        self._registry.join(connection_id, topic)
        return {"event": "room_joined", "topic": topic}

    @staticmethod
    def _topic_for(message: ControlMessage, kind: str) -> Optional[str]:
        if kind == "order_room":
            return order_topic(message.order_id) if message.order_id else None
        if kind == "restaurant_room":
            return restaurant_topic(message.restaurant_id) if message.restaurant_id else None
        return SYSTEM_STATS

    async def authorize(self, identity: Optional[Identity], topic: str) -> None:
        """
        Raise TopicAuthorizationDenied unless `identity` may join `topic`.
        """
        if identity is None:
            raise TopicAuthorizationDenied("Anonymous connections cannot join topics", topic)

        ref = parse_topic(topic)
        if ref is None:
            raise TopicAuthorizationDenied(f"Unknown topic {topic!r}", topic)

        if identity.is_superadmin:
            return

        if ref.kind == "restaurant" and identity.operates(ref.key):
            return

        if ref.kind == "order":
            order = await self._store.get_order(ref.key)
            if order is not None and order.customer_id == identity.user_id:
                return

        raise TopicAuthorizationDenied(f"Not entitled to {topic}", topic)


# =============================================================================
# VIEWER SIDE
# =============================================================================

SendControl = Callable[[dict], Awaitable[None]]
FetchOrder = Callable[[str], Awaitable[dict]]
FetchRestaurantOrders = Callable[[str], Awaitable[list[dict]]]


class ClientSubscriptionManager:
    """
    Joins the topics for what a viewer has mounted and keeps local state.

    Order copies are whole projections (camelCase wire dicts) and are only
    ever replaced, never merged. Each carries a `version`; an event whose
    version is not the next one after the local copy triggers a snapshot
    re-fetch instead of being applied.

    Example:
        >>> manager = ClientSubscriptionManager(send, fetch_order, fetch_restaurant_orders)
        >>> await manager.mount_order("42")
        >>> await manager.handle_event(message)   # for every message received
        >>> manager.orders["42"]["status"]
        'Confirmed'
    """

    def __init__(
        self,
        send: SendControl,
        fetch_order: FetchOrder,
        fetch_restaurant_orders: FetchRestaurantOrders,
    ):
        self._send = send
        self._fetch_order = fetch_order
        self._fetch_restaurant_orders = fetch_restaurant_orders

        self.orders: dict[str, dict] = {}
        self.dashboards: dict[str, dict[str, dict]] = {}
        self.joined: set[str] = set()
        self._mounted_orders: set[str] = set()
        self._mounted_dashboards: set[str] = set()

    # =========================================================================
    # MOUNT / UNMOUNT
    # =========================================================================

    async def mount_order(self, order_id: str) -> dict:
        """Show an order's tracking screen: join, then load the snapshot."""
        self._mounted_orders.add(order_id)
        await self._send({"action": "join_order_room", "orderId": order_id})
        snapshot = await self._fetch_order(order_id)
        if order_id in self._mounted_orders:
            self._store_order(self.orders, snapshot)
        return self.orders.get(order_id, snapshot)

    async def unmount_order(self, order_id: str) -> None:
        if order_id not in self._mounted_orders:
            return
        self._mounted_orders.discard(order_id)
        self.orders.pop(order_id, None)
        await self._send({"action": "leave_order_room", "orderId": order_id})

    async def mount_restaurant_dashboard(self, restaurant_id: str) -> dict[str, dict]:
        """Show a restaurant's live dashboard: join, then load its orders."""
        self._mounted_dashboards.add(restaurant_id)
        await self._send({"action": "join_restaurant_room", "restaurantId": restaurant_id})
        await self._load_dashboard(restaurant_id)
        return self.dashboards.get(restaurant_id, {})

    async def unmount_restaurant_dashboard(self, restaurant_id: str) -> None:
        if restaurant_id not in self._mounted_dashboards:
            return
        self._mounted_dashboards.discard(restaurant_id)
        self.dashboards.pop(restaurant_id, None)
        await self._send({"action": "leave_restaurant_room", "restaurantId": restaurant_id})

    async def unmount_all(self) -> None:
        """Navigation away, tab close or logout."""
        for order_id in list(self._mounted_orders):
            await self.unmount_order(order_id)
        for restaurant_id in list(self._mounted_dashboards):
            await self.unmount_restaurant_dashboard(restaurant_id)

    async def handle_reconnect(self) -> None:
        """
        A new transport session replaced the old one.

        Server-side membership did not survive, and nothing missed while
        disconnected will be replayed: re-join everything mounted and
        replace local state with fresh snapshots.
        """
        self.joined.clear()
        for order_id in list(self._mounted_orders):
            await self._send({"action": "join_order_room", "orderId": order_id})
            self.orders.pop(order_id, None)
            self._store_order(self.orders, await self._fetch_order(order_id))
        for restaurant_id in list(self._mounted_dashboards):
            await self._send({"action": "join_restaurant_room", "restaurantId": restaurant_id})
            self.dashboards.pop(restaurant_id, None)
            await self._load_dashboard(restaurant_id)

    async def _load_dashboard(self, restaurant_id: str) -> None:
        orders = await self._fetch_restaurant_orders(restaurant_id)
        if restaurant_id not in self._mounted_dashboards:
            return
        board = self.dashboards.setdefault(restaurant_id, {})
        for order in orders:
            self._store_order(board, order)

    # =========================================================================
    # INCOMING EVENTS
    # =========================================================================

    async def handle_event(self, message: dict) -> bool:
        """
        Apply one message received from the server.

        Returns:
            bool: True if local state changed
        """
        kind = message.get("event")

        if kind == "room_joined":
            self.joined.add(message.get("topic"))
            return False
        if kind == "room_left":
            self.joined.discard(message.get("topic"))
            return False
        if kind not in ("order_status_updated", "new_order"):
            return False

        order = message.get("order")
        if not isinstance(order, dict):
            return False

        changed = False
        order_id = order.get("id")
        if order_id in self._mounted_orders:
            changed |= await self._apply(self.orders, order)

        restaurant_id = order.get("restaurantId")
        if restaurant_id in self._mounted_dashboards:
            changed |= await self._apply(self.dashboards.setdefault(restaurant_id, {}), order)

        return changed

    async def _apply(self, local: dict[str, dict], incoming: dict) -> bool:
        order_id = incoming["id"]
        current = local.get(order_id)

        if current is None or incoming.get("version", 0) == current.get("version", 0) + 1:
            local[order_id] = incoming
            return True

        if incoming.get("version", 0) <= current.get("version", 0):
            # Already reflected by the snapshot
            return False

        logger.info(
            f"Missed updates for order {order_id} "
            f"(have v{current.get('version')}, got v{incoming.get('version')}); re-fetching"
        )
        local[order_id] = await self._fetch_order(order_id)
        return True

    @staticmethod
    def _store_order(local: dict[str, dict], snapshot: dict) -> None:
        """Keep whichever of snapshot / already-applied event is newer."""
        current = local.get(snapshot["id"])
        if current is None or snapshot.get("version", 0) >= current.get("version", 0):
            local[snapshot["id"]] = snapshot
