import pytest

from ordertrack.models import OrderStatus
from ordertrack.realtime.subscriptions import ClientSubscriptionManager, SubscriptionGate

from tests.conftest import RESTAURANT_ID, FakeTransport, make_order


@pytest.fixture
def gate(registry, store):
    return SubscriptionGate(registry, store)


@pytest.fixture
def connect(registry):
    def _connect(identity, connection_id="c1"):
        registry.register(connection_id, identity, FakeTransport())
        return connection_id
    return _connect


class TestSubscriptionGate:

    async def test_owner_joins_order_room(self, gate, registry, connect, customer, placed_order):
        cid = connect(customer)

        reply = await gate.handle(cid, customer, {"action": "join_order_room", "orderId": placed_order.id})

        assert reply == {"event": "room_joined", "topic": f"order:{placed_order.id}"}
        assert registry.members(f"order:{placed_order.id}") == [cid]

    async def test_other_customer_is_silently_denied(
        self, gate, registry, connect, other_customer, placed_order
    ):
        cid = connect(other_customer)

        reply = await gate.handle(
            cid, other_customer, {"action": "join_order_room", "orderId": placed_order.id}
        )

        assert reply is None
        assert registry.topics_of(cid) == frozenset()

    async def test_unknown_order_is_denied(self, gate, connect, customer):
        cid = connect(customer)
        assert await gate.handle(cid, customer, {"action": "join_order_room", "orderId": "nope"}) is None

    async def test_anonymous_cannot_join(self, gate, connect, placed_order):
        cid = connect(None)
        reply = await gate.handle(cid, None, {"action": "join_restaurant_room", "restaurantId": RESTAURANT_ID})
        assert reply is None

    async def test_operator_joins_own_restaurant_only(self, gate, registry, connect, operator):
        cid = connect(operator)

        joined = await gate.handle(cid, operator, {"action": "join_restaurant_room", "restaurantId": RESTAURANT_ID})
        denied = await gate.handle(cid, operator, {"action": "join_restaurant_room", "restaurantId": "r_other"})

        assert joined["event"] == "room_joined"
        assert denied is None
        assert registry.topics_of(cid) == frozenset({f"restaurant:{RESTAURANT_ID}"})

    async def test_operator_uses_restaurant_room_not_order_room(
        self, gate, connect, operator, placed_order
    ):
        cid = connect(operator)
        reply = await gate.handle(cid, operator, {"action": "join_order_room", "orderId": placed_order.id})
        assert reply is None

    async def test_stats_room_is_superadmin_only(self, gate, connect, superadmin, customer):
        admin_id = connect(superadmin, "admin")
        customer_id = connect(customer, "cust")

        assert (await gate.handle(admin_id, superadmin, {"action": "join_stats_room"}))["topic"] == "system:stats"
        assert await gate.handle(customer_id, customer, {"action": "join_stats_room"}) is None

    async def test_superadmin_may_watch_anything(self, gate, connect, superadmin, placed_order):
        cid = connect(superadmin)
        reply = await gate.handle(cid, superadmin, {"action": "join_order_room", "orderId": placed_order.id})
        assert reply["event"] == "room_joined"

    async def test_leave(self, gate, registry, connect, customer, placed_order):
        cid = connect(customer)
        await gate.handle(cid, customer, {"action": "join_order_room", "orderId": placed_order.id})

        reply = await gate.handle(cid, customer, {"action": "leave_order_room", "orderId": placed_order.id})

        assert reply == {"event": "room_left", "topic": f"order:{placed_order.id}"}
        assert registry.topics_of(cid) == frozenset()

    @pytest.mark.parametrize("payload", [
        {"action": "subscribe_everything"},
        {"orderId": "o_1"},
        "join_order_room",
        {"action": "join_order_room", "orderId": ""},
    ])
    async def test_malformed_messages(self, gate, connect, customer, payload):
        cid = connect(customer)
        reply = await gate.handle(cid, customer, payload)
        assert reply["event"] == "error"

    async def test_missing_id(self, gate, connect, customer):
        cid = connect(customer)
        reply = await gate.handle(cid, customer, {"action": "join_restaurant_room"})
        assert reply["event"] == "error"

    async def test_ping(self, gate, connect, customer):
        cid = connect(customer)
        assert await gate.handle(cid, customer, {"action": "ping"}) == {"event": "pong"}


# =============================================================================
# VIEWER SIDE
# =============================================================================

def wire(order_id="o_1", status=OrderStatus.PENDING, version=1, restaurant_id=RESTAURANT_ID):
    return make_order(order_id, status=status, version=version, restaurant_id=restaurant_id).to_wire()


def status_event(order):
    return {
        "event": "order_status_updated",
        "orderId": order["id"],
        "restaurantId": order["restaurantId"],
        "status": order["status"],
        "order": order,
    }


class FakeServer:
    """Stands in for the REST snapshot endpoints and the control channel."""

    def __init__(self):
        self.sent: list[dict] = []
        self.snapshots: dict[str, dict] = {}
        self.fetches = 0

    async def send(self, message):
        self.sent.append(message)

    async def fetch_order(self, order_id):
        self.fetches += 1
        return self.snapshots[order_id]

    async def fetch_restaurant_orders(self, restaurant_id):
        return [o for o in self.snapshots.values() if o["restaurantId"] == restaurant_id]


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def manager(server):
    return ClientSubscriptionManager(server.send, server.fetch_order, server.fetch_restaurant_orders)


class TestClientSubscriptionManager:

    async def test_mount_joins_then_loads_snapshot(self, manager, server):
        server.snapshots["o_1"] = wire()

        await manager.mount_order("o_1")

        assert server.sent == [{"action": "join_order_room", "orderId": "o_1"}]
        assert manager.orders["o_1"]["status"] == "Pending"

    async def test_next_version_replaces_local_copy(self, manager, server):
        server.snapshots["o_1"] = wire()
        await manager.mount_order("o_1")

        changed = await manager.handle_event(status_event(wire(status=OrderStatus.CONFIRMED, version=2)))

        assert changed
        assert manager.orders["o_1"]["status"] == "Confirmed"
        assert server.fetches == 1

    async def test_stale_event_is_ignored(self, manager, server):
        server.snapshots["o_1"] = wire(status=OrderStatus.PREPARING, version=3)
        await manager.mount_order("o_1")

        changed = await manager.handle_event(status_event(wire(status=OrderStatus.CONFIRMED, version=2)))

        assert not changed
        assert manager.orders["o_1"]["status"] == "Preparing"

    async def test_version_gap_refetches_snapshot(self, manager, server):
        server.snapshots["o_1"] = wire()
        await manager.mount_order("o_1")
        server.snapshots["o_1"] = wire(status=OrderStatus.OUT_FOR_DELIVERY, version=4)

        changed = await manager.handle_event(status_event(wire(status=OrderStatus.PREPARING, version=3)))

        assert changed
        assert server.fetches == 2
        assert manager.orders["o_1"]["version"] == 4

    async def test_events_for_unmounted_orders_are_ignored(self, manager, server):
        server.snapshots["o_1"] = wire()
        await manager.mount_order("o_1")
        await manager.unmount_order("o_1")

        assert server.sent[-1] == {"action": "leave_order_room", "orderId": "o_1"}
        assert not await manager.handle_event(status_event(wire(status=OrderStatus.CONFIRMED, version=2)))
        assert manager.orders == {}

    async def test_dashboard_collects_new_orders(self, manager, server):
        server.snapshots["o_1"] = wire("o_1")
        await manager.mount_restaurant_dashboard(RESTAURANT_ID)

        new = wire("o_2")
        changed = await manager.handle_event({"event": "new_order", "order": new})

        assert changed
        assert set(manager.dashboards[RESTAURANT_ID]) == {"o_1", "o_2"}

    async def test_room_acks_track_joined_topics(self, manager):
        await manager.handle_event({"event": "room_joined", "topic": "order:o_1"})
        assert manager.joined == {"order:o_1"}
        await manager.handle_event({"event": "room_left", "topic": "order:o_1"})
        assert manager.joined == set()

    async def test_reconnect_rejoins_and_refreshes(self, manager, server):
        server.snapshots["o_1"] = wire()
        await manager.mount_order("o_1")
        await manager.mount_restaurant_dashboard(RESTAURANT_ID)
        server.sent.clear()
        server.snapshots["o_1"] = wire(status=OrderStatus.DELIVERED, version=5)

        await manager.handle_reconnect()

        assert {"action": "join_order_room", "orderId": "o_1"} in server.sent
        assert {"action": "join_restaurant_room", "restaurantId": RESTAURANT_ID} in server.sent
        assert manager.orders["o_1"]["status"] == "Delivered"
        assert manager.dashboards[RESTAURANT_ID]["o_1"]["version"] == 5

    async def test_unmount_all(self, manager, server):
        server.snapshots["o_1"] = wire()
        await manager.mount_order("o_1")
        await manager.mount_restaurant_dashboard(RESTAURANT_ID)

        await manager.unmount_all()

        assert manager.orders == {} and manager.dashboards == {}
        assert server.sent[-2:] == [
            {"action": "leave_order_room", "orderId": "o_1"},
            {"action": "leave_restaurant_room", "restaurantId": RESTAURANT_ID},
        ]
